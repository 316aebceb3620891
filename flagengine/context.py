"""
This submodule defines :class:`EvaluationContext`, the per-call input to flag evaluation.
"""

from typing import Any, Optional


def _normalize(value: Any, name: str) -> Optional[str]:
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise TypeError('%s must be a string, got %s' % (name, value.__class__.__name__))
    return value


class EvaluationContext:
    """The attributes of the caller that flag rules can consult.

    All attributes are optional; an empty string is treated the same as an absent value. A
    context without a ``user_id`` can still be evaluated, but percentage and A/B-test decisions for
    it fall back to random sampling and are not reproducible.

    Instances are immutable and hashable.
    ::

        context = EvaluationContext(user_id='user-42', segment='beta_users', region='eu-west-1')
    """

    __slots__ = ['_user_id', '_segment', '_region']

    def __init__(self, user_id: Optional[str] = None, segment: Optional[str] = None, region: Optional[str] = None):
        self._user_id = _normalize(user_id, 'user_id')
        self._segment = _normalize(segment, 'segment')
        self._region = _normalize(region, 'region')

    @classmethod
    def from_dict(cls, props: dict) -> 'EvaluationContext':
        """Creates a context from a dict such as the one a web session provides.

        Both ``userId`` and ``user_id`` spellings of the user key are recognized; other keys are
        ignored.
        """
        user_id = props.get('userId')
        if user_id is None:
            user_id = props.get('user_id')
        return cls(user_id=user_id, segment=props.get('segment'), region=props.get('region'))

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def segment(self) -> Optional[str]:
        return self._segment

    @property
    def region(self) -> Optional[str]:
        return self._region

    def to_dict(self) -> dict:
        ret = {}
        if self._user_id is not None:
            ret['userId'] = self._user_id
        if self._segment is not None:
            ret['segment'] = self._segment
        if self._region is not None:
            ret['region'] = self._region
        return ret

    def __eq__(self, other) -> bool:
        if not isinstance(other, EvaluationContext):
            return False
        return (self._user_id, self._segment, self._region) == (other._user_id, other._segment, other._region)

    def __ne__(self, other) -> bool:
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self._user_id, self._segment, self._region))

    def __repr__(self) -> str:
        return 'EvaluationContext(user_id=%r, segment=%r, region=%r)' % (self._user_id, self._segment, self._region)
