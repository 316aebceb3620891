"""
This submodule contains the :class:`Config` class for configuring an evaluation engine.
"""

import os
from typing import Mapping, Optional

from flagengine.impl.util import log

ENV_DEVELOPMENT = 'development'
ENV_STAGING = 'staging'
ENV_PRODUCTION = 'production'
ENV_TEST = 'test'

# A region value meaning "not in any particular region"; regional rules are not applied to it.
REGION_GLOBAL = 'global'

ENVIRONMENT_VARIABLE = 'FLAGENGINE_ENVIRONMENT'
REGION_VARIABLE = 'FLAGENGINE_REGION'
CACHE_TTL_VARIABLE = 'FLAGENGINE_CACHE_TTL'
CACHE_SWEEP_INTERVAL_VARIABLE = 'FLAGENGINE_CACHE_SWEEP_INTERVAL'


class CacheConfig:
    """Encapsulates the parameters of the evaluation result cache.
    """

    DEFAULT_TTL = 300.0
    DEFAULT_CAPACITY = 10000

    def __init__(self,
                 ttl: float = DEFAULT_TTL,
                 capacity: int = DEFAULT_CAPACITY,
                 sweep_interval: float = 0):
        """Constructs an instance of CacheConfig.

        :param ttl: the time in seconds for which an evaluation result is reused. If it is less than
          or equal to zero, caching is disabled.
        :param capacity: the maximum number of cached results, which must be positive; the oldest are
          discarded first
        :param sweep_interval: if greater than zero, expired results are also dropped in the
          background at this interval in seconds, instead of only when they are next read
        """
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValueError('capacity must be a positive integer')
        self.__ttl = ttl
        self.__capacity = capacity
        self.__sweep_interval = sweep_interval

    @staticmethod
    def default() -> 'CacheConfig':
        """Returns an instance of CacheConfig with default properties: a five minute TTL and no
        background sweep.
        """
        return CacheConfig()

    @staticmethod
    def disabled() -> 'CacheConfig':
        """Returns an instance of CacheConfig specifying that caching should be disabled.
        """
        return CacheConfig(ttl=0)

    @property
    def enabled(self) -> bool:
        return self.__ttl > 0

    @property
    def ttl(self) -> float:
        return self.__ttl

    @property
    def capacity(self) -> int:
        return self.__capacity

    @property
    def sweep_interval(self) -> float:
        return self.__sweep_interval


class Config:
    """Advanced configuration options for the evaluation engine.

    The environment selects which rule of each flag is applied. It is fixed for the lifetime of an
    engine; a process that needs to evaluate flags for several environments creates one engine per
    environment.
    """

    def __init__(self,
                 environment: str = ENV_DEVELOPMENT,
                 default_region: Optional[str] = None,
                 cache: Optional[CacheConfig] = None):
        """
        :param environment: the deployment environment, for example ``production``
        :param default_region: the region assumed for contexts that do not specify one, typically
          the region the process is deployed in. ``global`` or None means no region.
        :param cache: the result cache parameters; defaults to :func:`CacheConfig.default()`
        """
        if not environment:
            raise ValueError('environment must be a non-empty string')
        self.__environment = environment
        self.__default_region = default_region or None
        self.__cache = cache or CacheConfig.default()

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """Creates a configuration from process environment variables.

        ``FLAGENGINE_ENVIRONMENT`` selects the environment (default ``development``),
        ``FLAGENGINE_REGION`` the default region, and ``FLAGENGINE_CACHE_TTL`` and
        ``FLAGENGINE_CACHE_SWEEP_INTERVAL`` the cache parameters in seconds. Unparseable numbers
        are logged and replaced by the defaults.

        :param environ: the variables to read; defaults to ``os.environ``
        """
        environ = os.environ if environ is None else environ
        cache = CacheConfig(
            ttl=_float_setting(environ, CACHE_TTL_VARIABLE, CacheConfig.DEFAULT_TTL),
            sweep_interval=_float_setting(environ, CACHE_SWEEP_INTERVAL_VARIABLE, 0),
        )
        return cls(
            environment=environ.get(ENVIRONMENT_VARIABLE) or ENV_DEVELOPMENT,
            default_region=environ.get(REGION_VARIABLE),
            cache=cache,
        )

    def copy_with(self, **changes) -> 'Config':
        """Returns a new Config with the same properties except for the given ones."""
        return Config(
            environment=changes.get('environment', self.__environment),
            default_region=changes.get('default_region', self.__default_region),
            cache=changes.get('cache', self.__cache),
        )

    @property
    def environment(self) -> str:
        return self.__environment

    @property
    def default_region(self) -> Optional[str]:
        return self.__default_region

    @property
    def cache(self) -> CacheConfig:
        return self.__cache


def _float_setting(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(name)
    if value is None or value == '':
        return default
    try:
        return float(value)
    except ValueError:
        log.warning('Ignoring invalid value "%s" for %s; using %s', value, name, default)
        return default
