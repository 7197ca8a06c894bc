"""Core models for aws-lambda-component."""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class CodeArtifact:
    """
    A packaged deployment artifact.

    Attributes:
        path: Local path of the zip file
        code_hash: Base64 SHA-256 of the zip (same encoding as Lambda's CodeSha256)
        bucket: Optional S3 bucket the artifact is uploaded to
    """

    path: Path
    code_hash: str
    bucket: str | None = None

    @property
    def s3_key(self) -> str:
        """Object key used when the artifact is uploaded to ``bucket``."""
        return self.path.name

    def code_location(self) -> dict[str, Any]:
        """Build the ``Code`` parameter for CreateFunction / UpdateFunctionCode."""
        if self.bucket:
            return {"S3Bucket": self.bucket, "S3Key": self.s3_key}
        return {"ZipFile": self.path.read_bytes()}


@dataclass(frozen=True)
class NetworkConfig:
    """VPC attachment: both id lists are always set together."""

    security_group_ids: tuple[str, ...]
    subnet_ids: tuple[str, ...]

    def to_vpc_config(self) -> dict[str, list[str]]:
        return {
            "SecurityGroupIds": list(self.security_group_ids),
            "SubnetIds": list(self.subnet_ids),
        }


@dataclass(frozen=True)
class DesiredState:
    """
    Canonical target configuration for one function instance.

    Produced by ``normalize_inputs``; every optional input already carries
    its default here. ``code_artifact`` is attached after packaging.
    """

    name: str
    region: str
    description: str
    memory_size: int
    timeout: int
    handler: str
    runtime: str
    environment: dict[str, str]
    layers: tuple[str, ...]
    network_config: NetworkConfig | None
    role_reference: str | None
    alias_name: str | None
    provisioned_concurrency: int | None
    monitoring: bool
    src: str
    shims: tuple[str, ...]
    bucket: str | None
    code_artifact: CodeArtifact | None = None

    @property
    def wants_alias(self) -> bool:
        """True when an alias with provisioned concurrency is requested."""
        return self.alias_name is not None and self.provisioned_concurrency is not None

    @property
    def security_group_ids(self) -> list[str]:
        return list(self.network_config.security_group_ids) if self.network_config else []

    @property
    def subnet_ids(self) -> list[str]:
        return list(self.network_config.subnet_ids) if self.network_config else []

    def with_artifact(self, artifact: CodeArtifact) -> "DesiredState":
        """Return a copy with the packaged artifact attached."""
        return replace(self, code_artifact=artifact)

    def comparable(self, role_arn: str) -> dict[str, Any]:
        """
        Project onto the fixed set of fields used for change detection.

        Args:
            role_arn: The resolved execution role ARN
        """
        return {
            "description": self.description,
            "runtime": self.runtime,
            "role": role_arn,
            "handler": self.handler,
            "memory_size": self.memory_size,
            "timeout": self.timeout,
            "environment": dict(self.environment),
            "code_hash": self.code_artifact.code_hash if self.code_artifact else None,
            "security_group_ids": sorted(self.security_group_ids),
            "subnet_ids": sorted(self.subnet_ids),
            "layers": list(self.layers),
        }


@dataclass(frozen=True)
class ObservedState:
    """Live function configuration as reported by Lambda."""

    name: str
    function_arn: str
    description: str
    runtime: str
    role: str
    handler: str
    memory_size: int
    timeout: int
    environment: dict[str, str]
    code_hash: str
    security_group_ids: tuple[str, ...]
    subnet_ids: tuple[str, ...]
    layers: tuple[str, ...]
    current_version: str | None = None

    @classmethod
    def from_configuration(cls, config: dict[str, Any]) -> "ObservedState":
        """Build from a GetFunctionConfiguration response."""
        vpc = config.get("VpcConfig") or {}
        env = config.get("Environment") or {}
        return cls(
            name=config["FunctionName"],
            function_arn=config["FunctionArn"],
            description=config.get("Description", ""),
            runtime=config.get("Runtime", ""),
            role=config.get("Role", ""),
            handler=config.get("Handler", ""),
            memory_size=int(config.get("MemorySize", 0)),
            timeout=int(config.get("Timeout", 0)),
            environment=dict(env.get("Variables") or {}),
            code_hash=config.get("CodeSha256", ""),
            security_group_ids=tuple(vpc.get("SecurityGroupIds") or ()),
            subnet_ids=tuple(vpc.get("SubnetIds") or ()),
            layers=tuple(layer["Arn"] for layer in config.get("Layers") or ()),
        )

    def comparable(self) -> dict[str, Any]:
        """Project onto the same field set as ``DesiredState.comparable``."""
        return {
            "description": self.description,
            "runtime": self.runtime,
            "role": self.role,
            "handler": self.handler,
            "memory_size": self.memory_size,
            "timeout": self.timeout,
            "environment": dict(self.environment),
            "code_hash": self.code_hash,
            "security_group_ids": sorted(self.security_group_ids),
            "subnet_ids": sorted(self.subnet_ids),
            "layers": list(self.layers),
        }


@dataclass
class PersistedState:
    """
    Durable record of the resources this component owns.

    This is the only source of truth for removal: an empty ``name`` means
    nothing was deployed (or everything was already removed).
    """

    name: str | None = None
    region: str | None = None
    function_arn: str | None = None
    role_arn: str | None = None
    role_is_auto_created: bool = False
    meta_role_arn: str | None = None
    alias_name: str | None = None
    current_version: str | None = None
    code_hash: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PersistedState":
        """Deserialize from dictionary, ignoring unknown keys."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class RoleHandle:
    """An execution or meta role resolved for this pass."""

    arn: str
    name: str
    auto_created: bool
    created: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with fixed backoff for eventual-consistency races.

    Attributes:
        max_attempts: Total attempts including the first one
        delay_seconds: Fixed sleep between attempts
    """

    max_attempts: int = 10
    delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be non-negative")


@dataclass(frozen=True)
class ReconcilerOptions:
    """
    Engine options, passed explicitly to every component.

    Attributes:
        retry: Policy for the role-propagation race on CreateFunction
        wait: Use Lambda waiters after create/update before the next dependent call
    """

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    wait: bool = True


@dataclass
class DeployResult:
    """Outputs of a successful deploy."""

    name: str
    arn: str
    version: str | None
    provisioned_concurrency: int | None
    security_group_ids: list[str]
    subnet_ids: list[str]
    alias: str | None = None
    role_arn: str | None = None
    meta_role_arn: str | None = None
    operations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MetricPoint:
    """One datapoint of a function metric series."""

    timestamp: datetime
    value: float
