"""
Error taxonomy for edge provisioning.

Every fatal failure is a ProvisioningError; the orchestrator stops at the first
one and reports the step it was raised in.
"""

from typing import Any, Optional


class ProvisioningError(Exception):
    """Base class for fatal provisioning failures."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.step: Optional[str] = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class InputValidationError(ProvisioningError):
    """Malformed subdomain or API token."""


class ExternalAPIError(ProvisioningError):
    """An external service failed or answered without a success indicator."""

    def __init__(self, message: str, response: Any = None):
        detail = None if response is None else str(response)
        super().__init__(message, detail)
        self.response = response


class ExternalCommandError(ExternalAPIError):
    """An external process (certbot, installer, compose, crontab) failed."""

    def __init__(self, message: str, outcome):
        super().__init__(message, outcome.describe())
        self.outcome = outcome


class PreconditionMissingError(ProvisioningError):
    """A required file (template, certificate, descriptor, installer) is absent."""


class HostEnvironmentError(ProvisioningError):
    """The host lacks something the run needs (docker, compose, root)."""


class BestEffortFailure(Exception):
    """A non-fatal hook failed. Logged by the caller, never propagated."""
