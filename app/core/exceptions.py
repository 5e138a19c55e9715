"""
Error taxonomy shared by services and the API layer.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer should answer with.
"""
from typing import Any


class CRMError(Exception):
    """Base class for all domain errors."""

    code = "crm_error"
    status_code = 500

    def __init__(self, message: str, *, detail: Any = None, context: dict[str, Any] | None = None):
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)


class ValidationError(CRMError):
    """Required lead data is missing or malformed. No side effects were performed."""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any):
        self.field = field
        super().__init__(message, **kwargs)
        if field is not None:
            self.context.setdefault("field", field)


class AuthenticationError(CRMError):
    """Webhook shared secret is missing or wrong."""

    code = "invalid_webhook_token"
    status_code = 401

    def __init__(self, message: str, *, code: str | None = None, **kwargs: Any):
        if code is not None:
            self.code = code
        super().__init__(message, **kwargs)


class NotFoundError(CRMError):
    """Unknown workspace, lead or configuration record."""

    code = "not_found"
    status_code = 404


class ConfigurationError(CRMError):
    """Workspace is not set up well enough to complete the request."""

    code = "configuration_error"
    status_code = 400


class NoMembersError(ConfigurationError):
    code = "no_workspace_members"


class DependencyError(CRMError):
    """Outbound provider or stored configuration could not be used."""

    code = "dependency_error"
    status_code = 502


class ConcurrencyError(CRMError):
    """Optimistic update on an assignment rule lost the race."""

    code = "concurrency_conflict"
    status_code = 409
