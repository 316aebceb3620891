import copy
import json
from typing import Any, Optional, Union

from flagengine.impl.util import FlagConfigurationError

# Support code for the data model classes.
#
# FlagDefinition subclasses ModelEntity: it is decoded from a dict that corresponds to the JSON/YAML
# representation, the constructors of the model classes capture and validate individual properties,
# and ModelEntity keeps a copy of the original dict so the definition can be re-serialized. Decoded
# collections are exposed as read-only views and tuples, so a loaded catalog cannot be changed.
#
# Every property read goes through the opt_ and req_ functions, so a value of the wrong type
# rejects the whole catalog at load time instead of surfacing later in the evaluation logic.


def _type_name(desired_type) -> str:
    if isinstance(desired_type, tuple):
        return ' or '.join(t.__name__ for t in desired_type)
    return desired_type.__name__


def opt_type(data: dict, name: str, desired_type) -> Any:
    value = data.get(name)
    # bool is a subclass of int, which must not let True pass as a number
    if value is not None and (not isinstance(value, desired_type) or (isinstance(value, bool) and desired_type is not bool)):
        raise FlagConfigurationError('property "%s" should be type %s but was %s' % (name, _type_name(desired_type), value.__class__.__name__))
    return value


def opt_bool(data: dict, name: str) -> Optional[bool]:
    return opt_type(data, name, bool)


def opt_dict(data: dict, name: str) -> Optional[dict]:
    return opt_type(data, name, dict)


def opt_number(data: dict, name: str) -> Optional[Union[int, float]]:
    return opt_type(data, name, (int, float))


def opt_str(data: dict, name: str) -> Optional[str]:
    return opt_type(data, name, str)


def req_type(data: dict, name: str, desired_type) -> Any:
    value = opt_type(data, name, desired_type)
    if value is None:
        raise FlagConfigurationError('required property "%s" is missing' % name)
    return value


def req_bool(data: dict, name: str) -> bool:
    return req_type(data, name, bool)


def req_dict(data: dict, name: str) -> dict:
    return req_type(data, name, dict)


def req_str(data: dict, name: str) -> str:
    return req_type(data, name, str)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_percentage(value: Any, description: str) -> Union[int, float]:
    if not is_number(value):
        raise FlagConfigurationError('%s should be a number but was %s' % (description, value.__class__.__name__))
    if value < 0 or value > 100:
        raise FlagConfigurationError('%s should be between 0 and 100 but was %s' % (description, value))
    return value


def validate_str_keys(mapping: dict, name: str) -> dict:
    for key in mapping:
        if not isinstance(key, str):
            raise FlagConfigurationError('property "%s" should have string keys but had %r' % (name, key))
    return mapping


class ModelEntity:
    def __init__(self, data: dict):
        # private copy; the source dict stays with the caller
        self._data = copy.deepcopy(data)

    def to_json_dict(self) -> dict:
        return copy.deepcopy(self._data)

    def __eq__(self, other) -> bool:
        return self.__class__ == other.__class__ and self._data == other._data

    def __repr__(self) -> str:
        return json.dumps(self._data, separators=(',', ':'))
