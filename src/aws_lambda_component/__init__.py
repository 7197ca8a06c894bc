"""
aws-lambda-component: Declarative deployment of a single AWS Lambda function.

Reconciles one function, its execution role, an optional read-only meta
role and an optional alias with provisioned concurrency against a desired
state, issuing only the provider calls the difference requires.

Example:
    from aws_lambda_component import JsonFileStateStore, LambdaComponent

    component = LambdaComponent(JsonFileStateStore(".aws-lambda-component/state.json"))
    result = await component.deploy(
        {
            "name": "orders-api",
            "src": "./app",
            "handler": "app.handler",
            "memory": 1024,
            "alias": "live",
            "provisioned_concurrency": 2,
        }
    )
    print(result.arn, result.version)

    await component.remove()
"""

from importlib.metadata import PackageNotFoundError, version

from .component import LambdaComponent
from .exceptions import (
    ConfigurationError,
    FunctionNotDeployedError,
    ImmutableFieldChangedError,
    LambdaComponentError,
    ProviderError,
    RemovalIncompleteError,
    RoleNotFoundError,
    TransientProviderError,
)
from .infra.clients import AwsClients, Credentials
from .models import (
    CodeArtifact,
    DeployResult,
    DesiredState,
    MetricPoint,
    NetworkConfig,
    ObservedState,
    PersistedState,
    ReconcilerOptions,
    RetryPolicy,
)
from .normalizer import load_inputs, normalize_inputs
from .packaging import Packager, hash_file, pack
from .state import JsonFileStateStore, MemoryStateStore, StateStore

try:
    __version__ = version("aws-lambda-component")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "LambdaComponent",
    "AwsClients",
    "Credentials",
    # State
    "StateStore",
    "JsonFileStateStore",
    "MemoryStateStore",
    # Models
    "CodeArtifact",
    "DeployResult",
    "DesiredState",
    "MetricPoint",
    "NetworkConfig",
    "ObservedState",
    "PersistedState",
    "ReconcilerOptions",
    "RetryPolicy",
    # Inputs and packaging
    "normalize_inputs",
    "load_inputs",
    "Packager",
    "pack",
    "hash_file",
    # Exceptions
    "LambdaComponentError",
    "ConfigurationError",
    "FunctionNotDeployedError",
    "ImmutableFieldChangedError",
    "RoleNotFoundError",
    "ProviderError",
    "TransientProviderError",
    "RemovalIncompleteError",
]
