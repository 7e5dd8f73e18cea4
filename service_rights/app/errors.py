"""
Error kinds raised by the Rights service.

Every kind is caller-facing and deterministic; none of them is retried.
"""

from typing import Any, Dict, Iterable, Optional

from shared.errors import AccessLayerException


class RightsError(AccessLayerException):
    """Base class for rights errors; the class name is the error kind."""

    status_code = 400
    default_message = "Rights operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(type(self).__name__, message or self.default_message, details)


class ApplicationNotFound(RightsError):
    status_code = 404
    default_message = "Application not found"


class AccountNotFound(RightsError):
    status_code = 404
    default_message = "Account not found"


class RightNotFound(RightsError):
    status_code = 404
    default_message = "Rights not found"


class DuplicatePair(RightsError):
    status_code = 409
    default_message = (
        "Rights already exist for this application and account combination. "
        "Each account can have only one rights record per application."
    )


class DuplicateApplication(RightsError):
    status_code = 409
    default_message = "An application with this external application id already exists"


class RightsStillReferenced(RightsError):
    status_code = 409
    default_message = "Entity is still referenced by rights and cannot be deleted"


class InvalidPermissionSet(RightsError):
    status_code = 422
    default_message = "Invalid permission set"

    @classmethod
    def for_values(cls, invalid: Iterable[str]) -> "InvalidPermissionSet":
        invalid = sorted(invalid)
        return cls(f"Invalid permissions: {', '.join(invalid)}", {"invalid": invalid})


class TokenMalformed(RightsError):
    status_code = 401
    default_message = "Entitlement token is malformed"


class TokenSignatureInvalid(RightsError):
    status_code = 401
    default_message = "Entitlement token signature is invalid"


class TokenExpired(RightsError):
    status_code = 401
    default_message = "Entitlement token has expired"


class ExternalIdentityUnverified(RightsError):
    status_code = 401
    default_message = "External identity could not be verified"


class SigningKeyUnavailable(RightsError):
    status_code = 503
    default_message = "Identity provider signing keys are unavailable"
