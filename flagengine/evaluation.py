"""
This submodule contains the public types returned by flag evaluation.
"""

import copy
import json
from typing import Any, Dict, Optional, Sequence


class EvaluationResult:
    """
    The outcome of evaluating one flag for one context, together with an explanation of how it
    was reached.
    """

    def __init__(self, enabled: bool, reason: dict, variant: Optional[str] = None, payload: Sequence[str] = (),
                 deterministic: bool = True, is_ab_test: bool = False):
        self.__enabled = enabled
        self.__variant = variant
        self.__payload = tuple(payload)
        self.__reason = dict(reason)
        self.__deterministic = deterministic
        self.__is_ab_test = is_ab_test

    @property
    def enabled(self) -> bool:
        """Whether the capability is active for the context."""
        return self.__enabled

    @property
    def variant(self) -> Optional[str]:
        """The name of the selected A/B-test variant, or None if no variant was selected."""
        return self.__variant

    @property
    def payload(self) -> tuple:
        """The payload (feature names) of the selected variant; empty if no variant was selected."""
        return self.__payload

    @property
    def reason(self) -> dict:
        """A dictionary describing the main factor that influenced the result.

        * ``kind``: one of ``"OFF"``, ``"REGION_OVERRIDE"``, ``"REGION_ROLLOUT"``,
          ``"SEGMENT_NOT_ELIGIBLE"``, ``"ROLLOUT"``, ``"VARIANT"``, ``"FALLTHROUGH"`` or ``"ERROR"``
        * ``region``: the region that decided the result, for the region kinds
        * ``segment``: the segment that was not eligible, for ``"SEGMENT_NOT_ELIGIBLE"``
        * ``bucket``: the bucket the context hashed to, for rollouts and variants; None when the
          decision was randomly sampled
        * ``variant``: the selected variant, for ``"VARIANT"``
        * ``errorKind``: ``"FLAG_NOT_FOUND"``, ``"ENVIRONMENT_NOT_FOUND"`` or ``"MALFORMED_FLAG"``,
          for ``"ERROR"``

        Each call returns a new dictionary, so changing it does not affect this result or any
        cached copy of it.
        """
        return dict(self.__reason)

    @property
    def deterministic(self) -> bool:
        """False if the result was decided by random sampling because the context had no user id.

        Such results may differ from one call to the next and are never cached.
        """
        return self.__deterministic

    @property
    def value(self) -> Any:
        """The result in its general form: a plain boolean, or for A/B-test flags a dict with the
        keys ``enabled``, ``variant`` and ``payload``.
        """
        if self.__is_ab_test:
            return {'enabled': self.__enabled, 'variant': self.__variant, 'payload': list(self.__payload)}
        return self.__enabled

    def is_error(self) -> bool:
        return self.__reason.get('kind') == 'ERROR'

    def to_json_dict(self) -> dict:
        ret = {'enabled': self.__enabled, 'reason': dict(self.__reason), 'deterministic': self.__deterministic}
        if self.__is_ab_test:
            ret['variant'] = self.__variant
            ret['payload'] = list(self.__payload)
        return ret

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, EvaluationResult)
            and self.__enabled == other.__enabled
            and self.__variant == other.__variant
            and self.__payload == other.__payload
            and self.__reason == other.__reason
            and self.__deterministic == other.__deterministic
            and self.__is_ab_test == other.__is_ab_test
        )

    def __ne__(self, other) -> bool:
        return not self.__eq__(other)

    def __str__(self) -> str:
        return "(enabled=%s, variant=%s, reason=%s)" % (self.__enabled, self.__variant, self.__reason)

    def __repr__(self) -> str:
        return self.__str__()


class FlagsState:
    """
    A snapshot of the state of every flag in the catalog for one context, returned by
    :func:`flagengine.engine.EvaluationEngine.all_flags_state()`. Meant for reporting and debugging
    views rather than for making decisions.
    """

    def __init__(self, environment: str, context_dict: dict):
        self.__environment = environment
        self.__context = context_dict
        self.__flags = {}  # type: Dict[str, dict]

    # Used internally to build the state map
    def add_flag(self, name: str, kind: str, result: EvaluationResult, with_reasons: bool):
        data = {'kind': kind, 'value': result.value, 'deterministic': result.deterministic}
        if with_reasons:
            data['reason'] = result.reason
        self.__flags[name] = data

    @property
    def environment(self) -> str:
        return self.__environment

    def get_flag_value(self, name: str) -> Any:
        """Returns the value of an individual flag, or None if it is not in the snapshot."""
        data = self.__flags.get(name)
        return None if data is None else copy.deepcopy(data['value'])

    def get_flag_reason(self, name: str) -> Optional[dict]:
        """Returns the evaluation reason for an individual flag, if reasons were requested."""
        data = self.__flags.get(name)
        return None if data is None else copy.deepcopy(data.get('reason'))

    def is_enabled(self, name: str) -> bool:
        value = self.get_flag_value(name)
        if isinstance(value, dict):
            return value['enabled']
        return value is True

    def to_values_map(self) -> dict:
        """Returns a dictionary of flag names to flag values."""
        return dict((name, copy.deepcopy(data['value'])) for name, data in self.__flags.items())

    def summary(self) -> dict:
        """Returns counts suitable for a reporting view."""
        total = len(self.__flags)
        enabled = len([name for name in self.__flags if self.is_enabled(name)])
        nondeterministic = len([data for data in self.__flags.values() if not data['deterministic']])
        return {
            'totalFeatures': total,
            'enabledFeatures': enabled,
            'enabledPercentage': int(round(enabled * 100.0 / total)) if total else 0,
            'nonDeterministic': nondeterministic,
        }

    def to_json_dict(self) -> dict:
        """Returns a dictionary form of the snapshot, including per-flag metadata and the summary."""
        return {
            'environment': self.__environment,
            'context': dict(self.__context),
            'flags': copy.deepcopy(self.__flags),
            'summary': self.summary(),
        }

    def to_json_string(self) -> str:
        return json.dumps(self.to_json_dict())

    def __getstate__(self) -> dict:
        """Equivalent to to_json_dict(); used if the application serializes the object with jsonpickle."""
        return self.to_json_dict()
