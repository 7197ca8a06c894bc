"""Input normalization: raw user inputs + persisted state → DesiredState.

``normalize_inputs`` is a pure function. It performs no I/O and no provider
calls, so every configuration error surfaces before anything is touched.

Defaults, per input key:

- ``name``: persisted name, else ``lambda-component-<stage>``
- ``stage``: ``dev`` (only used to derive the default name)
- ``region``: persisted region, else ``us-east-1``
- ``description``: ``AWS Lambda Component``
- ``memory``: ``512`` (MB, 128-10240)
- ``timeout``: ``10`` (seconds, 1-900)
- ``handler``: ``handler.handler``
- ``runtime``: ``python3.12``
- ``env``: ``{}``
- ``layers``: ``[]``
- ``vpc_config``: none (``security_group_ids`` + ``subnet_ids``)
- ``role_arn``: none, an execution role is created
- ``alias``: none
- ``provisioned_concurrency``: none (requires ``alias``)
- ``monitoring``: ``False`` (creates the read-only meta role)
- ``src``: ``.``
- ``shims``: ``[]``
- ``bucket``: none (code is sent inline)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError
from .models import DesiredState, NetworkConfig, PersistedState
from .naming import (
    default_function_name,
    validate_alias_name,
    validate_function_name,
    validate_handler,
)

DEFAULT_STAGE = "dev"
DEFAULT_REGION = "us-east-1"
DEFAULT_DESCRIPTION = "AWS Lambda Component"
DEFAULT_MEMORY = 512
DEFAULT_TIMEOUT = 10
DEFAULT_HANDLER = "handler.handler"
DEFAULT_RUNTIME = "python3.12"
DEFAULT_SRC = "."

MEMORY_RANGE = (128, 10240)
TIMEOUT_RANGE = (1, 900)

KNOWN_INPUTS = frozenset(
    {
        "name",
        "stage",
        "region",
        "description",
        "memory",
        "timeout",
        "handler",
        "runtime",
        "env",
        "layers",
        "vpc_config",
        "role_arn",
        "alias",
        "provisioned_concurrency",
        "monitoring",
        "src",
        "shims",
        "bucket",
    }
)


def normalize_inputs(
    inputs: dict[str, Any] | None,
    persisted: PersistedState | None = None,
) -> DesiredState:
    """
    Merge raw inputs with defaults and persisted state into a DesiredState.

    Args:
        inputs: Raw user configuration (e.g. parsed from YAML)
        persisted: State recorded by the previous successful pass

    Returns:
        Fully populated DesiredState (without a code artifact)

    Raises:
        ConfigurationError: If the inputs are invalid or contradictory
    """
    inputs = dict(inputs or {})
    persisted = persisted or PersistedState()

    unknown = sorted(set(inputs) - KNOWN_INPUTS)
    if unknown:
        raise ConfigurationError(f"Unknown input(s): {', '.join(unknown)}")

    stage = _string(inputs, "stage", DEFAULT_STAGE)
    name = _optional_string(inputs, "name") or persisted.name or default_function_name(stage)
    validate_function_name(name)
    region = _optional_string(inputs, "region") or persisted.region or DEFAULT_REGION

    alias_name = _optional_string(inputs, "alias")
    if alias_name is not None:
        validate_alias_name(alias_name)

    provisioned_concurrency = inputs.get("provisioned_concurrency")
    if provisioned_concurrency is not None:
        if alias_name is None:
            raise ConfigurationError(
                "provisioned_concurrency requires an alias name",
                field="provisioned_concurrency",
                value=provisioned_concurrency,
            )
        _check_positive_int("provisioned_concurrency", provisioned_concurrency)

    role_reference = _optional_string(inputs, "role_arn")
    if role_reference is None and persisted.role_arn and not persisted.role_is_auto_created:
        raise ConfigurationError(
            "Switching from a user-supplied role to an auto-created role is not "
            "supported. Run 'remove' first, or keep 'role_arn' set.",
            field="role_arn",
            value=None,
        )

    memory = inputs.get("memory", DEFAULT_MEMORY)
    _check_range("memory", memory, MEMORY_RANGE)
    timeout = inputs.get("timeout", DEFAULT_TIMEOUT)
    _check_range("timeout", timeout, TIMEOUT_RANGE)

    handler = _string(inputs, "handler", DEFAULT_HANDLER)
    runtime = _string(inputs, "runtime", DEFAULT_RUNTIME)
    if runtime.startswith("python"):
        validate_handler(handler)

    env = inputs.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigurationError("Must be a mapping", field="env", value=env)

    return DesiredState(
        name=name,
        region=region,
        description=_string(inputs, "description", DEFAULT_DESCRIPTION, allow_empty=True),
        memory_size=memory,
        timeout=timeout,
        handler=handler,
        runtime=runtime,
        environment={str(k): str(v) for k, v in env.items()},
        layers=_string_list(inputs, "layers"),
        network_config=_network_config(inputs.get("vpc_config")),
        role_reference=role_reference,
        alias_name=alias_name,
        provisioned_concurrency=provisioned_concurrency,
        monitoring=bool(inputs.get("monitoring", False)),
        src=_string(inputs, "src", DEFAULT_SRC),
        shims=_string_list(inputs, "shims"),
        bucket=_optional_string(inputs, "bucket"),
    )


def load_inputs(path: str | Path) -> dict[str, Any]:
    """
    Load raw inputs from a YAML file.

    The file may either hold the inputs at top level or under an ``inputs:``
    key (component-instance file layout).
    """
    import yaml

    data = yaml.safe_load(Path(path).read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping in {path}")
    if "inputs" in data:
        data = data["inputs"] or {}
    return data


def _string(
    inputs: dict[str, Any], key: str, default: str, allow_empty: bool = False
) -> str:
    value = inputs.get(key)
    if value is None or (value == "" and not allow_empty):
        return default
    if not isinstance(value, str):
        raise ConfigurationError("Must be a string", field=key, value=value)
    return value


def _optional_string(inputs: dict[str, Any], key: str) -> str | None:
    value = inputs.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConfigurationError("Must be a string", field=key, value=value)
    return value


def _string_list(inputs: dict[str, Any], key: str) -> tuple[str, ...]:
    value = inputs.get(key) or []
    if isinstance(value, str) or not isinstance(value, list | tuple):
        raise ConfigurationError("Must be a list of strings", field=key, value=value)
    return tuple(str(v) for v in value)


def _check_range(key: str, value: Any, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError("Must be an integer", field=key, value=value)
    if not low <= value <= high:
        raise ConfigurationError(f"Must be between {low} and {high}", field=key, value=value)


def _check_positive_int(key: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError("Must be a positive integer", field=key, value=value)


def _network_config(raw: Any) -> NetworkConfig | None:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError("Must be a mapping", field="vpc_config", value=raw)

    security_group_ids = raw.get("security_group_ids") or []
    subnet_ids = raw.get("subnet_ids") or []
    if bool(security_group_ids) != bool(subnet_ids):
        raise ConfigurationError(
            "security_group_ids and subnet_ids must be set together",
            field="vpc_config",
            value=raw,
        )
    if not security_group_ids:
        return None
    return NetworkConfig(
        security_group_ids=tuple(security_group_ids),
        subnet_ids=tuple(subnet_ids),
    )
