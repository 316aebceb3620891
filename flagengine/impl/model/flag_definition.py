import copy
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from flagengine.impl.bucketer import BUCKET_COUNT
from flagengine.impl.model.entity import *
from flagengine.impl.util import FlagConfigurationError

# Context attributes a rule can consult, in the order they appear in a cache fingerprint.
USER_ID = 'user_id'
SEGMENT = 'segment'
REGION = 'region'

# Every kind-specific rule property; a kind may accept only some of them.
RULE_PROPERTIES = ('percentage', 'regions', 'userSegments', 'variants')

# Slack for float percentages such as 33.3 + 33.3 + 33.4.
PERCENTAGE_TOLERANCE = 1e-9

RegionValue = Union[bool, int, float]


class FlagKind(str, Enum):
    BOOLEAN = 'boolean'
    PERCENTAGE = 'percentage'
    REGIONAL = 'regional'
    USER_SEGMENT = 'user_segment'
    AB_TEST = 'a_b_test'
    KILL_SWITCH = 'kill_switch'

    @staticmethod
    def from_str(value: str) -> Optional['FlagKind']:
        for kind in FlagKind:
            if kind.value == value:
                return kind
        return None


class Variant:
    __slots__ = ['_name', '_percentage', '_payload', '_cumulative']

    def __init__(self, data: dict, cumulative: Union[int, float]):
        self._name = req_str(data, 'name')
        self._percentage = validate_percentage(data.get('percentage'), 'percentage of variant "%s"' % self._name)
        payload = data.get('payload')
        if payload is None:
            payload = data.get('features')
        if payload is None:
            payload = []
        if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
            raise FlagConfigurationError('payload of variant "%s" should be a list of strings' % self._name)
        self._payload = tuple(payload)
        self._cumulative = cumulative

    @property
    def name(self) -> str:
        return self._name

    @property
    def percentage(self) -> Union[int, float]:
        return self._percentage

    @property
    def payload(self) -> Tuple[str, ...]:
        return self._payload

    @property
    def cumulative(self) -> Union[int, float]:
        """Exclusive upper bound of the buckets that select this variant."""
        return self._cumulative


def _parse_variants(value) -> Tuple[Variant, ...]:
    # Variants can be an ordered list of {name, percentage, payload} or a mapping of name to
    # {percentage, payload}; mappings keep their declaration order.
    if isinstance(value, dict):
        items = []
        for name, body in validate_str_keys(value, 'variants').items():
            if not isinstance(body, dict):
                raise FlagConfigurationError('variant "%s" should be an object' % name)
            items.append(dict(body, name=name))
    elif isinstance(value, list):
        items = value
    else:
        raise FlagConfigurationError('property "variants" should be a list or an object')
    if len(items) == 0:
        raise FlagConfigurationError('property "variants" must not be empty')

    variants = []
    names = set()
    cumulative = 0
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise FlagConfigurationError('variant at position %d should be an object' % index)
        cumulative += validate_percentage(item.get('percentage'), 'percentage of variant at position %d' % index)
        if cumulative > BUCKET_COUNT + PERCENTAGE_TOLERANCE:
            raise FlagConfigurationError('variant percentages add up to more than 100')
        is_last = index == len(items) - 1
        variant = Variant(item, BUCKET_COUNT if is_last else cumulative)
        if variant.name in names:
            raise FlagConfigurationError('variant "%s" is defined more than once' % variant.name)
        names.add(variant.name)
        variants.append(variant)
    return tuple(variants)


def _parse_regions(regions: dict) -> Mapping[str, RegionValue]:
    for region, value in validate_str_keys(regions, 'regions').items():
        if not isinstance(value, bool):
            validate_percentage(value, 'value of region "%s"' % region)
    return MappingProxyType(dict(regions))


def _parse_user_segments(segments: dict) -> Mapping[str, bool]:
    for segment, value in validate_str_keys(segments, 'userSegments').items():
        if not isinstance(value, bool):
            raise FlagConfigurationError('value of segment "%s" should be a boolean but was %s' % (segment, value.__class__.__name__))
    return MappingProxyType(dict(segments))


class EnvironmentRule:
    """The rule for one environment of a boolean, regional or user-segment flag.

    Subclasses add the fields of the percentage and A/B-test kinds and restrict the kill-switch
    kind to ``enabled`` alone. A rule that populates a field its kind does not accept is rejected.
    """

    __slots__ = ['_data', '_enabled', '_regions', '_user_segments', '_context_fields']

    accepted_properties = frozenset(['regions', 'userSegments'])

    def __init__(self, kind: FlagKind, data: dict):
        for name in RULE_PROPERTIES:
            if data.get(name) is not None and name not in self.accepted_properties:
                raise FlagConfigurationError('property "%s" is not allowed for a %s flag' % (name, kind.value))
        self._data = data
        self._enabled = req_bool(data, 'enabled')
        regions = opt_dict(data, 'regions')
        self._regions = None if regions is None else _parse_regions(regions)
        segments = opt_dict(data, 'userSegments')
        self._user_segments = None if segments is None else _parse_user_segments(segments)
        self._decode_kind_properties(data)
        self._context_fields = self._compute_context_fields()

    def _decode_kind_properties(self, data: dict):
        pass

    def _buckets_by_user(self) -> bool:
        return False

    def _compute_context_fields(self) -> Tuple[str, ...]:
        if not self._enabled:
            return ()
        fields = []
        regional_rollout = self._regions is not None and any(not isinstance(v, bool) for v in self._regions.values())
        if self._buckets_by_user() or regional_rollout:
            fields.append(USER_ID)
        if self._user_segments is not None:
            fields.append(SEGMENT)
        if self._regions is not None:
            fields.append(REGION)
        return tuple(fields)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def regions(self) -> Optional[Mapping[str, RegionValue]]:
        return self._regions

    @property
    def user_segments(self) -> Optional[Mapping[str, bool]]:
        return self._user_segments

    @property
    def percentage(self) -> Optional[Union[int, float]]:
        return None

    @property
    def variants(self) -> Optional[Tuple[Variant, ...]]:
        return None

    @property
    def context_fields(self) -> Tuple[str, ...]:
        """The context attributes this rule can consult during evaluation."""
        return self._context_fields

    def to_json_dict(self) -> dict:
        return copy.deepcopy(self._data)


class PercentageRule(EnvironmentRule):
    __slots__ = ['_percentage']

    accepted_properties = frozenset(['percentage', 'regions', 'userSegments'])

    def _decode_kind_properties(self, data: dict):
        percentage = data.get('percentage')
        self._percentage = None if percentage is None else validate_percentage(percentage, 'property "percentage"')

    def _buckets_by_user(self) -> bool:
        return self._percentage is not None

    @property
    def percentage(self) -> Optional[Union[int, float]]:
        return self._percentage


class ABTestRule(EnvironmentRule):
    __slots__ = ['_variants']

    accepted_properties = frozenset(['variants', 'regions', 'userSegments'])

    def _decode_kind_properties(self, data: dict):
        variants = data.get('variants')
        self._variants = None if variants is None else _parse_variants(variants)

    def _buckets_by_user(self) -> bool:
        return self._variants is not None

    @property
    def variants(self) -> Optional[Tuple[Variant, ...]]:
        return self._variants

    @property
    def total_percentage(self) -> Union[int, float]:
        return sum(v.percentage for v in self._variants or [])


class KillSwitchRule(EnvironmentRule):
    __slots__ = []

    accepted_properties = frozenset()


_RULE_CLASSES = {
    FlagKind.BOOLEAN: EnvironmentRule,
    FlagKind.REGIONAL: EnvironmentRule,
    FlagKind.USER_SEGMENT: EnvironmentRule,
    FlagKind.PERCENTAGE: PercentageRule,
    FlagKind.AB_TEST: ABTestRule,
    FlagKind.KILL_SWITCH: KillSwitchRule,
}


class FlagDefinition(ModelEntity):
    __slots__ = ['_data', '_name', '_kind', '_description', '_display_name', '_salt', '_environments']

    def __init__(self, data: dict):
        if not isinstance(data, dict):
            raise FlagConfigurationError('flag definition should be an object but was %s' % data.__class__.__name__)
        super().__init__(data)
        data = self._data
        self._name = req_str(data, 'name')
        try:
            kind_name = req_str(data, 'kind')
            kind = FlagKind.from_str(kind_name)
            if kind is None:
                raise FlagConfigurationError('unknown kind "%s"' % kind_name)
            self._kind = kind
            self._description = opt_str(data, 'description') or ''
            self._display_name = opt_str(data, 'displayName')
            self._salt = opt_str(data, 'salt') or self._name
            environments = {}
            for env, rule_data in validate_str_keys(req_dict(data, 'environments'), 'environments').items():
                if not isinstance(rule_data, dict):
                    raise FlagConfigurationError('rule for environment "%s" should be an object' % env)
                try:
                    environments[env] = _RULE_CLASSES[kind](kind, rule_data)
                except FlagConfigurationError as e:
                    raise FlagConfigurationError('environment "%s": %s' % (env, e)) from e
            self._environments = MappingProxyType(environments)
        except FlagConfigurationError as e:
            raise FlagConfigurationError(str(e), self._name) from e

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> FlagKind:
        return self._kind

    @property
    def description(self) -> str:
        return self._description

    @property
    def display_name(self) -> str:
        return self._display_name or self._name

    @property
    def salt(self) -> str:
        return self._salt

    @property
    def environments(self) -> Mapping[str, EnvironmentRule]:
        return self._environments

    def rule_for(self, environment: str) -> Optional[EnvironmentRule]:
        return self._environments.get(environment)
