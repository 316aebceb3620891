import os
from typing import Dict, List, Optional, Sequence

import yaml

from flagengine.catalog import FlagCatalog, decode_flag_definitions
from flagengine.impl.repeating_task import RepeatingTask
from flagengine.impl.util import FlagConfigurationError, log


def _parse_content(content: str, path: str):
    try:
        return yaml.safe_load(content)  # pyyaml correctly parses JSON too
    except yaml.YAMLError as e:
        raise FlagConfigurationError('cannot parse "%s": %s' % (path, e)) from e


def load_catalog(paths: Sequence[str]) -> FlagCatalog:
    """Reads flag definitions from one or more JSON or YAML files.

    Each file holds a ``flags`` property with either a mapping of flag names to definitions or a list
    of definitions. A flag that is defined in more than one file is an error.
    """
    flags = []
    sources = {}  # type: Dict[str, str]
    for path in paths:
        try:
            with open(path, 'r') as f:
                content = f.read()
        except (IOError, OSError) as e:
            raise FlagConfigurationError('cannot read "%s": %s' % (path, e)) from e
        parsed = _parse_content(content, path)
        if parsed is None:
            continue
        if not isinstance(parsed, dict):
            raise FlagConfigurationError('"%s" should contain an object at the top level' % path)
        for flag in decode_flag_definitions(parsed.get('flags', {})):
            if flag.name in sources:
                raise FlagConfigurationError('defined in both "%s" and "%s"' % (sources[flag.name], path), flag.name)
            sources[flag.name] = path
            flags.append(flag)
    return FlagCatalog(flags)


class FileCatalogWatcher:
    """Reloads a catalog into an engine whenever one of its source files changes.

    Changes are detected by polling file modification times. A reload that fails, for instance
    because a file is half-written or invalid, is logged and the engine keeps its current catalog.
    """

    def __init__(self, engine, paths: Sequence[str], poll_interval: float):
        self._engine = engine
        self._paths = list(paths)
        self._poll_interval = poll_interval
        self._file_times = self._check_file_times()
        self._timer = None  # type: Optional[RepeatingTask]

    def start(self):
        if self._timer is None:
            self._timer = RepeatingTask("flagengine.catalog.file.poll", self._poll_interval, self._poll_interval, self._poll)
            self._timer.start()

    def stop(self):
        if self._timer is not None:
            self._timer.stop()

    def reload(self) -> bool:
        """Loads the files now and replaces the engine's catalog; returns False if loading failed."""
        try:
            catalog = load_catalog(self._paths)
        except FlagConfigurationError as e:
            log.warning('Keeping the current flag catalog because reloading it failed: %s' % e)
            return False
        self._engine.replace_catalog(catalog)
        log.info('Reloaded %d flags from %s', len(catalog), ', '.join(self._paths))
        return True

    def _poll(self):
        new_times = self._check_file_times()
        changed = new_times != self._file_times
        self._file_times = new_times
        if changed:
            self.reload()

    def _check_file_times(self) -> Dict[str, Optional[float]]:
        ret = {}
        for path in self._resolved_paths():
            try:
                ret[path] = os.path.getmtime(path)
            except OSError:
                ret[path] = None
        return ret

    def _resolved_paths(self) -> List[str]:
        return [os.path.realpath(path) for path in self._paths]
