"""Exception hierarchy shared by the engine components.

Routers translate these into HTTP responses; nothing below the turn engine
decides user-facing text.
"""

from __future__ import annotations


class SupportEngineError(RuntimeError):
    """Base class for failures surfaced to an entry point."""

    status_code = 500


class ConfigurationError(SupportEngineError):
    """A mandatory mapping or record is missing; terminal for the request."""

    status_code = 404


class OrganizationNotFoundError(ConfigurationError):
    """Raised when the organization (store profile) does not exist."""


class AccountNotMappedError(ConfigurationError):
    """Raised when an external helpdesk account has no organization mapping."""


class ContactNotMappedError(ConfigurationError):
    """Raised when an external helpdesk contact has no customer mapping."""


class UpstreamServiceError(SupportEngineError):
    """A collaborator (LLM service, data store read) failed; recoverable."""

    status_code = 503


class ContextUnavailableError(UpstreamServiceError):
    """Raised when the mandatory store profile could not be fetched."""


class SignatureVerificationError(SupportEngineError):
    """Raised when a webhook signature is missing or does not match."""

    status_code = 401


class SessionNotFoundError(SupportEngineError):
    """Raised when a chat session id does not exist."""

    status_code = 404


class InvalidPayloadError(SupportEngineError):
    """Raised when a request body cannot be parsed into the expected shape."""

    status_code = 400
