"""zerox-harness: readiness-aware 0x API test harness and meta-tx runner."""

__version__ = "0.1.0"

from .exceptions import (
    ConfigError,
    DeploymentError,
    HarnessError,
    MetaTxError,
    QuoteError,
    ReadinessTimeout,
    SigningError,
    SubmitError,
)
from .readiness import ReadinessWatcher, WatchState, wait_for_patterns

__all__ = [
    "__version__",
    "HarnessError",
    "ReadinessTimeout",
    "DeploymentError",
    "ConfigError",
    "MetaTxError",
    "QuoteError",
    "SubmitError",
    "SigningError",
    "ReadinessWatcher",
    "WatchState",
    "wait_for_patterns",
]
