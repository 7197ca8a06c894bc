"""Resource naming utilities.

Function names follow Lambda's rules (letters, digits, hyphens and
underscores, at most 64 characters). Role names are derived from the
function name and must fit IAM's 64-character limit, so function names that
own an auto-created role are limited to 54 characters (64 minus the
``-meta-role`` suffix).
"""

import re

from .exceptions import ConfigurationError

FUNCTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
ALIAS_NAME_PATTERN = re.compile(r"^(?!^[0-9]+$)[A-Za-z0-9_-]+$")
HANDLER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)+$")

MAX_FUNCTION_NAME_LENGTH = 64
MAX_ALIAS_NAME_LENGTH = 128
MAX_ROLE_NAME_LENGTH = 64

EXECUTION_ROLE_SUFFIX = "-role"
META_ROLE_SUFFIX = "-meta-role"

DEFAULT_NAME_PREFIX = "lambda-component"


def validate_function_name(name: str) -> None:
    """
    Validate a Lambda function name.

    Args:
        name: The user-provided function name

    Raises:
        ConfigurationError: If the name is empty, too long, or has invalid characters
    """
    if not name:
        raise ConfigurationError("Name cannot be empty", field="name", value=name)

    if "." in name or " " in name:
        raise ConfigurationError(
            "Contains a period or spaces. Use hyphens instead (e.g., 'my-api' not 'my.api')",
            field="name",
            value=name,
        )

    if not FUNCTION_NAME_PATTERN.match(name):
        raise ConfigurationError(
            "Only letters, digits, hyphens and underscores are allowed",
            field="name",
            value=name,
        )

    if len(name) > MAX_FUNCTION_NAME_LENGTH - len(META_ROLE_SUFFIX):
        raise ConfigurationError(
            f"Too long. Name exceeds {MAX_FUNCTION_NAME_LENGTH - len(META_ROLE_SUFFIX)} "
            "characters (IAM role name constraints).",
            field="name",
            value=name,
        )


def validate_alias_name(name: str) -> None:
    """
    Validate a Lambda alias name.

    Alias names cannot be purely numeric, since those are version numbers.

    Raises:
        ConfigurationError: If the alias name is invalid
    """
    if not name or len(name) > MAX_ALIAS_NAME_LENGTH or not ALIAS_NAME_PATTERN.match(name):
        raise ConfigurationError(
            "Must be 1-128 letters, digits, hyphens or underscores and not purely numeric",
            field="alias",
            value=name,
        )


def validate_handler(handler: str) -> None:
    """
    Validate a handler identifier of the form ``module.function``.

    The module part may be dotted (``pkg.module.function``); every part must
    be a valid Python identifier.

    Raises:
        ConfigurationError: If the identifier is malformed
    """
    if not handler or not HANDLER_PATTERN.match(handler):
        raise ConfigurationError(
            "Must look like 'module.function' (e.g. 'handler.handler')",
            field="handler",
            value=handler,
        )


def default_function_name(stage: str) -> str:
    """Name used when neither the inputs nor the persisted state name the function."""
    return f"{DEFAULT_NAME_PREFIX}-{stage}"


def execution_role_name(function_name: str) -> str:
    """Deterministic name of the auto-created execution role."""
    return f"{function_name}{EXECUTION_ROLE_SUFFIX}"


def meta_role_name(function_name: str) -> str:
    """Deterministic name of the read-only observability role."""
    return f"{function_name}{META_ROLE_SUFFIX}"


def role_name_from_arn(role_reference: str) -> str:
    """
    Extract the role name from a role ARN.

    Accepts a bare role name as well, and strips any IAM path
    (``arn:aws:iam::123:role/service-role/name`` → ``name``).
    """
    if not role_reference.startswith("arn:"):
        return role_reference
    resource = role_reference.split(":", 5)[-1]
    return resource.split("/")[-1]


def account_id_from_arn(arn: str) -> str | None:
    """Return the account id field of an ARN, or None if it has none."""
    parts = arn.split(":")
    if len(parts) < 6 or not parts[4]:
        return None
    return parts[4]
