"""
This submodule contains the engine class that provides flag evaluation.
"""

import traceback
from typing import Dict, Optional, Union

from flagengine.catalog import FlagCatalog
from flagengine.config import Config
from flagengine.context import EvaluationContext
from flagengine.evaluation import EvaluationResult, FlagsState
from flagengine.impl.bucketer import Bucketer
from flagengine.impl.evaluator import Evaluator, flag_not_found_result
from flagengine.impl.model import FlagDefinition, FlagKind
from flagengine.impl.repeating_task import RepeatingTask
from flagengine.impl.result_cache import ResultCache
from flagengine.impl.rwlock import ReadWriteLock
from flagengine.impl.sampler import Sampler
from flagengine.impl.util import log

ContextLike = Union[EvaluationContext, dict, None]


def _to_context(context: ContextLike) -> EvaluationContext:
    if context is None:
        return EvaluationContext()
    if isinstance(context, EvaluationContext):
        return context
    if isinstance(context, dict):
        return EvaluationContext.from_dict(context)
    raise TypeError('context must be an EvaluationContext or a dict, not %s' % context.__class__.__name__)


class EvaluationEngine:
    """Evaluates feature flags from a :class:`flagengine.catalog.FlagCatalog` for one environment.

    Construct one engine at startup and share it with every caller; all methods are safe to call
    from any number of threads. The engine never raises for flags that are unknown or that have no
    rule for the environment: such flags evaluate as disabled.
    ::

        catalog = Files.load_catalog('flags.yaml')
        engine = EvaluationEngine(catalog, Config(environment='production'))
        if engine.is_enabled('NEW_DASHBOARD_DESIGN', EvaluationContext(user_id='user-42')):
            ...
    """

    def __init__(self, catalog: FlagCatalog, config: Optional[Config] = None,
                 bucketer: Optional[Bucketer] = None, sampler: Optional[Sampler] = None):
        """Constructs a new engine.

        :param catalog: the flag definitions to evaluate
        :param config: the engine configuration; defaults to ``Config()``
        :param bucketer: the hash used for rollouts and variants
        :param sampler: the random fallback for contexts without a user id
        """
        if not isinstance(catalog, FlagCatalog):
            raise TypeError('catalog must be a FlagCatalog, not %s' % catalog.__class__.__name__)
        self._config = config or Config()
        self._bucketer = bucketer or Bucketer()
        self._evaluator = Evaluator(self._config.environment, self._bucketer, sampler or Sampler(), self._config.default_region)

        # Covers self._catalog; evaluations hold the read side for their whole duration
        self._lock = ReadWriteLock()
        self._catalog = catalog

        cache_config = self._config.cache
        self._cache = ResultCache(cache_config.ttl, cache_config.capacity) if cache_config.enabled else None
        self._sweeper = None  # type: Optional[RepeatingTask]
        if self._cache is not None and cache_config.sweep_interval > 0:
            self._sweeper = RepeatingTask("flagengine.cache.sweep", cache_config.sweep_interval, cache_config.sweep_interval, self._cache.sweep)
            self._sweeper.start()

        log.info("Started flag evaluation engine for environment \"%s\" with %d flags", self._config.environment, len(catalog))

    @property
    def config(self) -> Config:
        return self._config

    @property
    def catalog(self) -> FlagCatalog:
        with self._lock.read():
            return self._catalog

    def close(self):
        """Stops the background cache sweep, if one was configured."""
        log.info("Closing flag evaluation engine")
        if self._sweeper is not None:
            self._sweeper.stop()

    # These magic methods allow an engine object to be automatically cleaned up by the "with" scope operator
    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.close()

    def is_enabled(self, name: str, context: ContextLike = None) -> bool:
        """Returns whether a flag is enabled for the given context.

        For A/B-test flags this is True when the context was assigned a variant (or the flag has
        no variants for the environment); use :func:`evaluate()` to find out which variant.

        :param name: the name of the flag
        :param context: the evaluation context, as an EvaluationContext or a dict
        """
        return self.evaluate(name, context).enabled

    def is_killed(self, name: str, context: ContextLike = None) -> bool:
        """Returns whether the feature guarded by a kill-switch flag is switched off.

        Kill-switch flags are armed with ``enabled: true`` while the guarded feature may run, and
        operators set ``enabled: false`` to pull the switch. This is simply the inverse of
        :func:`is_enabled()`, so an unknown flag also counts as pulled.
        """
        return not self.is_enabled(name, context)

    def evaluate(self, name: str, context: ContextLike = None) -> EvaluationResult:
        """Evaluates a flag and returns the result together with the reason for it.

        :param name: the name of the flag
        :param context: the evaluation context, as an EvaluationContext or a dict
        :return: an :class:`flagengine.evaluation.EvaluationResult`; never None
        """
        context = _to_context(context)
        with self._lock.read():
            flag = self._catalog.get(name)
            if flag is None:
                log.warning("Unknown feature flag \"%s\"; returning disabled", name)
                return flag_not_found_result()
            return self._evaluate_cached(flag, context)

    def all_enabled(self, context: ContextLike = None) -> Dict[str, bool]:
        """Evaluates every flag in the catalog for one context.

        :return: a dictionary of flag names to whether they are enabled
        """
        context = _to_context(context)
        with self._lock.read():
            return dict((flag.name, self._evaluate_cached(flag, context).enabled) for flag in self._catalog)

    def all_flags_state(self, context: ContextLike = None, with_reasons: bool = False) -> FlagsState:
        """Returns a snapshot of every flag's value for one context, with summary counts, for
        reporting and debugging views.

        :param context: the evaluation context, as an EvaluationContext or a dict
        :param with_reasons: set to True to include the evaluation reason of each flag
        """
        context = _to_context(context)
        state = FlagsState(self._config.environment, context.to_dict())
        with self._lock.read():
            for flag in self._catalog:
                state.add_flag(flag.name, flag.kind.value, self._evaluate_cached(flag, context), with_reasons)
        return state

    def clear_cache(self):
        """Discards every cached evaluation result. Safe to call while evaluations are in progress."""
        if self._cache is not None:
            self._cache.clear()
            log.debug("Cleared evaluation result cache")

    def replace_catalog(self, catalog: FlagCatalog):
        """Atomically replaces the flag definitions and discards all cached results.

        Evaluations that are in progress finish against the previous catalog; every evaluation
        that starts afterward sees only the new one.
        """
        if not isinstance(catalog, FlagCatalog):
            raise TypeError('catalog must be a FlagCatalog, not %s' % catalog.__class__.__name__)
        with self._lock.write():
            self._catalog = catalog
            if self._cache is not None:
                self._cache.clear()
        log.debug("Replaced flag catalog; now %d flags", len(catalog))

    def flag_info(self, name: str) -> Optional[dict]:
        """Describes a flag and its rule for the current environment, for diagnostic views.

        :return: a dictionary, or None if the flag is unknown
        """
        flag = self.catalog.get(name)
        if flag is None:
            return None
        rule = flag.rule_for(self._config.environment)
        return {
            'name': flag.name,
            'displayName': flag.display_name,
            'kind': flag.kind.value,
            'description': flag.description,
            'environment': self._config.environment,
            'defaultRegion': self._config.default_region,
            'currentConfig': None if rule is None else rule.to_json_dict(),
        }

    def rollout_status(self, name: str, context: ContextLike = None) -> dict:
        """Summarizes how far a flag is rolled out in the current environment.

        The ``status`` is ``unknown`` for a flag not in the catalog, ``disabled`` if it has no rule
        or is switched off, ``gradual_rollout`` if a percentage below 100 applies, and otherwise
        ``fully_enabled``. The result also names the ``environment`` and the effective ``region``
        (None for no region). If a context is given, ``isEnabled`` tells whether the flag is enabled
        for it.

        :param name: the name of the flag
        :param context: an optional evaluation context, as an EvaluationContext or a dict
        """
        ctx = _to_context(context)
        flag = self.catalog.get(name)
        ret = {
            'status': 'unknown',
            'percentage': 0,
            'kind': None,
            'environment': self._config.environment,
            'region': self._evaluator.effective_region(ctx),
        }
        if flag is not None:
            rule = flag.rule_for(self._config.environment)
            ret['kind'] = flag.kind.value
            if rule is None or not rule.enabled:
                ret['status'] = 'disabled'
            else:
                ret['percentage'] = 100 if rule.percentage is None else rule.percentage
                ret['status'] = 'fully_enabled' if ret['percentage'] >= 100 else 'gradual_rollout'
        if context is not None:
            ret['isEnabled'] = False if flag is None else self.is_enabled(name, ctx)
        return ret

    def _evaluate_cached(self, flag: FlagDefinition, context: EvaluationContext) -> EvaluationResult:
        # Kill switches are read from the catalog on every call so that pulling one takes effect
        # immediately, whatever is in the cache.
        if self._cache is None or flag.kind == FlagKind.KILL_SWITCH:
            return self._evaluator.evaluate(flag, context)

        key = (flag.name, self._evaluator.fingerprint(flag, context))
        try:
            cached, hit = self._cache.get(key)
            if hit:
                return cached
        except Exception as e:
            log.error("Unexpected error while reading cached result for flag \"%s\": %s" % (flag.name, repr(e)))
            log.debug(traceback.format_exc())

        result = self._evaluator.evaluate(flag, context)
        # a randomly sampled result must not be handed to other contexts
        if result.deterministic:
            self._cache.put(key, result)
        return result
