"""
This submodule contains :class:`FlagCatalog`, the read-only table of flag definitions.
"""

from typing import Iterable, Iterator, List, Optional

from flagengine.impl.model import FlagDefinition
from flagengine.impl.util import FlagConfigurationError, log


class FlagCatalog:
    """An immutable, in-memory table of flag definitions, keyed by flag name.

    A catalog is validated completely when it is constructed: any malformed definition raises
    :class:`flagengine.FlagConfigurationError`, so an application refuses to start instead of
    evaluating flags from a configuration it has misread. After construction the catalog is never
    modified, so it can be read from any number of threads without locking. To reload flags, build a
    new catalog and pass it to :func:`flagengine.engine.EvaluationEngine.replace_catalog()`.
    """

    def __init__(self, flags: Iterable[FlagDefinition] = ()):
        items = {}
        for flag in flags:
            if not isinstance(flag, FlagDefinition):
                raise FlagConfigurationError('catalog items must be FlagDefinition instances, not %s' % flag.__class__.__name__)
            if flag.name in items:
                raise FlagConfigurationError('defined more than once', flag.name)
            items[flag.name] = flag
        self.__items = items
        log.debug("Created flag catalog with %d flags", len(items))

    @staticmethod
    def from_dict(data: dict) -> 'FlagCatalog':
        """Decodes a catalog from parsed JSON or YAML.

        The flags may be given as ``{"flags": {name: definition}}``, as ``{"flags": [definition, ...]}``,
        or as a bare ``{name: definition}`` mapping. When a definition is keyed by name, its ``name``
        property may be omitted.
        """
        if not isinstance(data, dict):
            raise FlagConfigurationError('flag data should be an object but was %s' % data.__class__.__name__)
        flags = data['flags'] if 'flags' in data else data
        return FlagCatalog(decode_flag_definitions(flags))

    def get(self, name: str) -> Optional[FlagDefinition]:
        """Returns the definition of a flag, or None if the catalog has no flag with that name."""
        return self.__items.get(name)

    def all_names(self) -> List[str]:
        return list(self.__items.keys())

    def to_json_dict(self) -> dict:
        return {'flags': dict((name, flag.to_json_dict()) for name, flag in self.__items.items())}

    def __len__(self) -> int:
        return len(self.__items)

    def __contains__(self, name) -> bool:
        return name in self.__items

    def __iter__(self) -> Iterator[FlagDefinition]:
        return iter(list(self.__items.values()))


def decode_flag_definitions(flags) -> List[FlagDefinition]:
    if isinstance(flags, list):
        return [FlagDefinition(item) for item in flags]
    if not isinstance(flags, dict):
        raise FlagConfigurationError('"flags" should be a list or an object but was %s' % flags.__class__.__name__)
    ret = []
    for name, item in flags.items():
        if not isinstance(item, dict):
            raise FlagConfigurationError('definition should be an object but was %s' % item.__class__.__name__, name)
        declared = item.get('name')
        if declared is None:
            item = dict(item, name=name)
        elif declared != name:
            raise FlagConfigurationError('definition is keyed as "%s" but declares name "%s"' % (name, declared), name)
        ret.append(FlagDefinition(item))
    return ret
