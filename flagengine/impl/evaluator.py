from typing import Optional, Tuple

from flagengine.config import REGION_GLOBAL
from flagengine.context import EvaluationContext
from flagengine.evaluation import EvaluationResult
from flagengine.impl.bucketer import BUCKET_COUNT, Bucketer
from flagengine.impl.model import *
from flagengine.impl.sampler import Sampler
from flagengine.impl.util import log

# For an explanation of how evaluation reasons are represented, see the reason property of
# EvaluationResult in flagengine/evaluation.py.


def error_reason(error_kind: str) -> dict:
    return {'kind': 'ERROR', 'errorKind': error_kind}


def flag_not_found_result() -> EvaluationResult:
    return EvaluationResult(False, error_reason('FLAG_NOT_FOUND'))


class Evaluator:
    """
    Applies a flag's rule for the current environment to an evaluation context.

    The cascade short-circuits in this order: missing environment rule, disabled rule, region
    override or regional rollout, user-segment allow-list, percentage rollout, A/B-test variant, and
    finally the fallthrough, which enables the flag. Data problems never raise; they produce a
    disabled result with an ERROR reason.
    """

    def __init__(self, environment: str, bucketer: Bucketer, sampler: Sampler, default_region: Optional[str] = None):
        """
        :param environment: the environment whose rules are applied
        :param bucketer: maps user ids to stable buckets
        :param sampler: random fallback for contexts without a user id
        :param default_region: the region to use when the context does not specify one
        """
        self.__environment = environment
        self.__bucketer = bucketer
        self.__sampler = sampler
        self.__default_region = default_region

    @property
    def environment(self) -> str:
        return self.__environment

    def effective_region(self, context: EvaluationContext) -> Optional[str]:
        region = context.region or self.__default_region
        return None if region == REGION_GLOBAL else region

    def fingerprint(self, flag: FlagDefinition, context: EvaluationContext) -> Tuple:
        """Returns the values of only those context attributes the flag's current rule consults."""
        rule = flag.rule_for(self.__environment)
        if rule is None:
            return ()
        values = []
        for field in rule.context_fields:
            if field == USER_ID:
                values.append(context.user_id)
            elif field == SEGMENT:
                values.append(context.segment)
            else:
                values.append(self.effective_region(context))
        return tuple(values)

    def evaluate(self, flag: FlagDefinition, context: EvaluationContext) -> EvaluationResult:
        is_ab_test = flag.kind == FlagKind.AB_TEST

        def result(enabled: bool, reason: dict, deterministic: bool = True) -> EvaluationResult:
            return EvaluationResult(enabled, reason, deterministic=deterministic, is_ab_test=is_ab_test)

        rule = flag.rule_for(self.__environment)
        if rule is None:
            log.debug("Flag \"%s\" has no rule for environment \"%s\"", flag.name, self.__environment)
            return result(False, error_reason('ENVIRONMENT_NOT_FOUND'))

        if not rule.enabled:
            return result(False, {'kind': 'OFF'})

        region = self.effective_region(context)
        if rule.regions is not None and region is not None and region in rule.regions:
            value = rule.regions[region]
            if isinstance(value, bool):
                return result(value, {'kind': 'REGION_OVERRIDE', 'region': region})
            bucket = self.__bucketer.bucket(context.user_id or region, flag.salt)
            return result(bucket < value, {'kind': 'REGION_ROLLOUT', 'region': region, 'bucket': bucket})

        if rule.user_segments is not None and context.segment is not None:
            # allow-list: a segment that is not listed is not eligible
            if not rule.user_segments.get(context.segment, False):
                return result(False, {'kind': 'SEGMENT_NOT_ELIGIBLE', 'segment': context.segment})

        if flag.kind == FlagKind.PERCENTAGE and rule.percentage is not None:
            if context.user_id is None:
                return result(self.__sampler.sample_percentage(rule.percentage), {'kind': 'ROLLOUT', 'bucket': None}, False)
            bucket = self.__bucketer.bucket(context.user_id, flag.salt)
            return result(bucket < rule.percentage, {'kind': 'ROLLOUT', 'bucket': bucket})

        if is_ab_test and rule.variants:
            return self._evaluate_variants(flag, rule, context)

        return result(True, {'kind': 'FALLTHROUGH'})

    def _evaluate_variants(self, flag: FlagDefinition, rule: EnvironmentRule, context: EvaluationContext) -> EvaluationResult:
        if rule.total_percentage > BUCKET_COUNT + PERCENTAGE_TOLERANCE or rule.variants[-1].cumulative < BUCKET_COUNT:
            # rejected at load time, so this can only mean the definition was altered afterward
            return EvaluationResult(False, error_reason('MALFORMED_FLAG'), is_ab_test=True)
        deterministic = context.user_id is not None
        if deterministic:
            bucket = self.__bucketer.bucket(context.user_id, flag.salt)
        else:
            bucket = self.__sampler.random_bucket()
        for variant in rule.variants:
            if bucket < variant.cumulative:
                reason = {'kind': 'VARIANT', 'variant': variant.name, 'bucket': bucket if deterministic else None}
                return EvaluationResult(True, reason, variant.name, variant.payload, deterministic, is_ab_test=True)
        # unreachable: the last cumulative bound is always 100
        return EvaluationResult(False, error_reason('MALFORMED_FLAG'), is_ab_test=True)
