"""Custom exception hierarchy for zerox-harness.

All zerox-harness exceptions inherit from HarnessError, allowing callers
to catch broad or specific errors:

    try:
        session = await setup_api(config)
    except ReadinessTimeout as e:
        print(f"API never came up: {e}")
    except HarnessError as e:
        print(f"zerox-harness error: {e}")
"""

from __future__ import annotations

from collections.abc import Iterable


class HarnessError(Exception):
    """Base exception for all zerox-harness errors."""


class ReadinessTimeout(HarnessError):
    """Raised when a process did not log every readiness pattern in time.

    ``str(error)`` is exactly the caller-supplied message. ``pending`` lists
    the sources of the patterns that were still unmatched.
    """

    def __init__(self, message: str, pending: Iterable[str] = ()):
        super().__init__(message)
        self.pending: tuple[str, ...] = tuple(pending)


class DeploymentError(HarnessError):
    """Raised when starting or tearing down a managed process fails."""


class ConfigError(HarnessError):
    """Raised when configuration is invalid or missing."""


class MetaTxError(HarnessError):
    """Raised when a meta-transaction step fails."""


class QuoteError(MetaTxError):
    """Raised when the quote endpoint rejects the request or returns junk."""


class SubmitError(MetaTxError):
    """Raised when the submit endpoint rejects the signed transaction."""

    def __init__(self, message: str, status: int = 0, body: object = None):
        super().__init__(message)
        self.status = status
        self.body = body


class SigningError(MetaTxError):
    """Raised when the signature does not recover to the taker address."""
