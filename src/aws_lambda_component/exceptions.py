"""Exceptions for aws-lambda-component."""

from typing import Any

from botocore.exceptions import ClientError

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class LambdaComponentError(Exception):
    """
    Base exception for all aws-lambda-component errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Configuration Exceptions
# ---------------------------------------------------------------------------


class ConfigurationError(LambdaComponentError):
    """
    Raised when the desired state is invalid or contradictory.

    Never retried. Raised before any provider call is made.

    Attributes:
        field: The input key that failed validation (if applicable)
        value: The rejected value (if applicable)
        reason: Human-readable explanation
    """

    def __init__(self, reason: str, field: str | None = None, value: Any = None) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        if field is not None:
            super().__init__(f"Invalid {field} {value!r}: {reason}")
        else:
            super().__init__(reason)


class FunctionNotDeployedError(ConfigurationError):
    """Raised when an operation needs a function that was never deployed."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: no function has been deployed for this instance")


class ImmutableFieldChangedError(LambdaComponentError):
    """
    Raised when the name or region of an existing function changes.

    Renaming or moving a live function would delete the old one; that must be
    an explicit operator decision, so the pass is rejected instead.
    """

    def __init__(self, field: str, previous: str, requested: str) -> None:
        self.field = field
        self.previous = previous
        self.requested = requested
        super().__init__(
            f"Cannot change {field} from '{previous}' to '{requested}' on an existing "
            f"function. Run 'remove' first, then deploy with the new {field}."
        )


class RoleNotFoundError(LambdaComponentError):
    """Raised when a user-supplied execution role does not exist."""

    def __init__(self, role_reference: str) -> None:
        self.role_reference = role_reference
        super().__init__(f"Execution role not found: {role_reference}")


# ---------------------------------------------------------------------------
# Provider Exceptions
# ---------------------------------------------------------------------------


class ProviderError(LambdaComponentError):
    """
    Raised when a provider (AWS) call fails.

    Attributes:
        operation: The provider operation that failed (e.g. 'CreateFunction')
        code: Provider-supplied error code (e.g. 'AccessDeniedException')
        provider_message: Provider-supplied error message, verbatim
    """

    def __init__(self, operation: str, code: str, provider_message: str) -> None:
        self.operation = operation
        self.code = code
        self.provider_message = provider_message
        super().__init__(f"{operation} failed ({code}): {provider_message}")


class TransientProviderError(ProviderError):
    """
    Raised for eventual-consistency races that are expected to clear.

    The reconciler retries these with a bounded policy; callers only see
    one after the retries are exhausted.

    Attributes:
        attempts: Number of attempts made before giving up (0 if not retried)
    """

    def __init__(
        self, operation: str, code: str, provider_message: str, attempts: int = 0
    ) -> None:
        self.attempts = attempts
        super().__init__(operation, code, provider_message)


class RemovalIncompleteError(ProviderError):
    """
    Raised when teardown finished but some secondary resources remain.

    The remaining resources are kept in persisted state so that the next
    removal retries them.

    Attributes:
        remaining: ARNs of the resources that could not be deleted
        errors: The underlying failures, in the order they happened
    """

    def __init__(self, remaining: list[str], errors: list[ProviderError]) -> None:
        self.remaining = remaining
        self.errors = errors
        first = errors[0] if errors else None
        super().__init__(
            operation=first.operation if first else "Remove",
            code=first.code if first else "Unknown",
            provider_message=(
                f"{len(remaining)} resource(s) left behind: {', '.join(remaining)}"
            ),
        )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Lambda rejects CreateFunction with this message while a freshly created
# IAM role has not propagated yet.
ROLE_NOT_ASSUMABLE_CODE = "InvalidParameterValueException"
ROLE_NOT_ASSUMABLE_MESSAGE = "cannot be assumed by Lambda"

NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NoSuchEntity",
        "ProvisionedConcurrencyConfigNotFoundException",
    }
)


def error_code(error: ClientError) -> str:
    """Return the provider error code of a botocore ClientError."""
    return str(error.response.get("Error", {}).get("Code", "Unknown"))


def is_not_found(error: ClientError) -> bool:
    """True if the provider reported that the resource does not exist."""
    return error_code(error) in NOT_FOUND_CODES


def classify_client_error(error: ClientError, operation: str) -> ProviderError:
    """
    Map a botocore ClientError to the typed provider taxonomy.

    This is the only place that inspects provider error payloads; callers
    branch on the returned type, never on message text.

    Args:
        error: The botocore error
        operation: Provider operation name for the error message

    Returns:
        TransientProviderError for known eventual-consistency races,
        ProviderError otherwise
    """
    details = error.response.get("Error", {})
    code = str(details.get("Code", "Unknown"))
    message = str(details.get("Message", str(error)))

    if code == ROLE_NOT_ASSUMABLE_CODE and ROLE_NOT_ASSUMABLE_MESSAGE in message:
        return TransientProviderError(operation, code, message)

    return ProviderError(operation, code, message)
