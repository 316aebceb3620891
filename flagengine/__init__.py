"""
The flagengine module contains the most common top-level entry points for evaluating feature flags.
"""

from flagengine.impl.util import FlagConfigurationError, log
from flagengine.version import VERSION

from .config import *
from .context import *
from .evaluation import *
from .catalog import *
from .engine import *
from .integrations import *

__version__ = VERSION
