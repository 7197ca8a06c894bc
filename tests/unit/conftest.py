"""Unit test fixtures: moto for IAM, in-memory fakes for Lambda."""

import asyncio
import base64
import hashlib
from collections.abc import Awaitable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aioboto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from aws_lambda_component.models import CodeArtifact, PersistedState
from aws_lambda_component.normalizer import normalize_inputs
from aws_lambda_component.packaging import hash_file

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError with the given code."""
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


def role_not_assumable() -> ClientError:
    return client_error(
        "InvalidParameterValueException",
        "The role defined for the function cannot be assumed by Lambda.",
        "CreateFunction",
    )


def make_desired(
    tmp_path, persisted: PersistedState | None = None, code: bytes = b"v1", **inputs: Any
):
    """Normalize ``inputs`` and attach an artifact holding ``code``."""
    inputs.setdefault("name", "orders")
    desired = normalize_inputs(inputs, persisted)
    path = tmp_path / f"{hashlib.sha256(code).hexdigest()[:16]}.zip"
    path.write_bytes(code)
    artifact = CodeArtifact(path=path, code_hash=hash_file(path), bucket=desired.bucket)
    return desired.with_artifact(artifact)


# ---------------------------------------------------------------------------
# moto
# ---------------------------------------------------------------------------


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    # Roles get AWS managed policies attached
    monkeypatch.setenv("MOTO_IAM_LOAD_MANAGED_POLICIES", "true")
    # Unset AWS_ENDPOINT_URL to ensure moto intercepts requests
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mock_iam(aws_credentials):
    """Mock IAM and STS for tests."""
    with mock_aws():
        yield


def _patch_aiobotocore_response():
    """
    Patch aiobotocore to work with moto's sync responses.

    Moto returns botocore.awsrequest.AWSResponse which has sync content,
    but aiobotocore expects async content. This patch wraps the response
    handling to convert sync content to async.

    See: https://github.com/aio-libs/aiobotocore/discussions/1300
    """
    from aiobotocore import endpoint

    original_convert = endpoint.convert_to_response_dict

    async def patched_convert(http_response, operation_model):
        # If content is not awaitable (moto's sync response), wrap it
        if hasattr(http_response, "_content") and not isinstance(http_response._content, Awaitable):
            fut: asyncio.Future[bytes] = asyncio.Future()
            fut.set_result(http_response.content)
            http_response._content = fut
        return await original_convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", patched_convert)


@pytest.fixture
async def moto_clients(mock_iam):
    """Real aioboto3 IAM and STS clients backed by moto."""
    with _patch_aiobotocore_response():
        session = aioboto3.Session()
        async with (
            session.client("iam", region_name=REGION) as iam,
            session.client("sts", region_name=REGION) as sts,
        ):
            yield iam, sts


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


def _tracked(impl):
    """Wrap an async implementation so calls can be asserted like any AsyncMock."""
    return AsyncMock(side_effect=impl)


class FakeLambda:
    """Stateful stand-in for the Lambda API surface the reconcilers use."""

    def __init__(self) -> None:
        self.functions: dict[str, dict[str, Any]] = {}
        self.versions: dict[str, list[str]] = {}
        self.aliases: dict[tuple[str, str], dict[str, Any]] = {}
        self.concurrency: dict[tuple[str, str], int] = {}
        self.waiter = MagicMock()
        self.waiter.wait = AsyncMock()

        for name in (
            "get_function_configuration",
            "create_function",
            "update_function_code",
            "update_function_configuration",
            "publish_version",
            "list_versions_by_function",
            "delete_function",
            "get_alias",
            "create_alias",
            "update_alias",
            "delete_alias",
            "get_provisioned_concurrency_config",
            "put_provisioned_concurrency_config",
            "delete_provisioned_concurrency_config",
        ):
            setattr(self, name, _tracked(getattr(self, f"_{name}")))
        self.get_waiter = MagicMock(return_value=self.waiter)

    def mutating_calls(self) -> list[str]:
        names = [
            "create_function",
            "update_function_code",
            "update_function_configuration",
            "publish_version",
            "delete_function",
            "create_alias",
            "update_alias",
            "delete_alias",
            "put_provisioned_concurrency_config",
            "delete_provisioned_concurrency_config",
        ]
        return [name for name in names if getattr(self, name).await_count]

    def reset_calls(self) -> None:
        for value in vars(self).values():
            if isinstance(value, AsyncMock):
                value.reset_mock()

    def _require(self, name: str) -> dict[str, Any]:
        if name not in self.functions:
            raise client_error("ResourceNotFoundException", f"Function not found: {name}")
        return self.functions[name]

    def _publish(self, name: str) -> str:
        versions = self.versions.setdefault(name, [])
        versions.append(str(len(versions) + 1))
        return versions[-1]

    @staticmethod
    def _code_hash(params: dict[str, Any]) -> str:
        data = params.get("ZipFile") or params.get("S3Key", "").encode()
        return base64.b64encode(hashlib.sha256(data).digest()).decode()

    async def _get_function_configuration(self, FunctionName: str) -> dict[str, Any]:
        return dict(self._require(FunctionName))

    async def _create_function(self, **params: Any) -> dict[str, Any]:
        name = params["FunctionName"]
        config = {
            "FunctionName": name,
            "FunctionArn": f"arn:aws:lambda:{REGION}:{ACCOUNT_ID}:function:{name}",
            "Description": params.get("Description", ""),
            "Runtime": params["Runtime"],
            "Role": params["Role"],
            "Handler": params["Handler"],
            "MemorySize": params.get("MemorySize", 128),
            "Timeout": params.get("Timeout", 3),
            "Environment": {"Variables": dict(params.get("Environment", {}).get("Variables", {}))},
            "CodeSha256": self._code_hash(params["Code"]),
            "Layers": [{"Arn": arn} for arn in params.get("Layers", [])],
            "VpcConfig": params.get("VpcConfig", {"SecurityGroupIds": [], "SubnetIds": []}),
        }
        self.functions[name] = config
        version = self._publish(name) if params.get("Publish") else "$LATEST"
        return {**config, "Version": version}

    async def _update_function_code(self, **params: Any) -> dict[str, Any]:
        config = self._require(params["FunctionName"])
        config["CodeSha256"] = self._code_hash(params)
        version = self._publish(config["FunctionName"]) if params.get("Publish") else "$LATEST"
        return {**config, "Version": version}

    async def _update_function_configuration(self, **params: Any) -> dict[str, Any]:
        config = self._require(params["FunctionName"])
        for key in ("Description", "Runtime", "Role", "Handler", "MemorySize", "Timeout"):
            if key in params:
                config[key] = params[key]
        if "Environment" in params:
            config["Environment"] = {"Variables": dict(params["Environment"]["Variables"])}
        if "Layers" in params:
            config["Layers"] = [{"Arn": arn} for arn in params["Layers"]]
        if "VpcConfig" in params:
            config["VpcConfig"] = dict(params["VpcConfig"])
        return dict(config)

    async def _publish_version(self, FunctionName: str) -> dict[str, Any]:
        self._require(FunctionName)
        return {"Version": self._publish(FunctionName)}

    async def _list_versions_by_function(self, FunctionName: str, **_: Any) -> dict[str, Any]:
        self._require(FunctionName)
        versions = ["$LATEST", *self.versions.get(FunctionName, [])]
        return {"Versions": [{"Version": v} for v in versions]}

    async def _delete_function(self, FunctionName: str) -> dict[str, Any]:
        self._require(FunctionName)
        del self.functions[FunctionName]
        self.versions.pop(FunctionName, None)
        return {}

    async def _get_alias(self, FunctionName: str, Name: str) -> dict[str, Any]:
        if (FunctionName, Name) not in self.aliases:
            raise client_error("ResourceNotFoundException", f"Alias not found: {Name}")
        return dict(self.aliases[(FunctionName, Name)])

    async def _create_alias(self, FunctionName: str, Name: str, FunctionVersion: str):
        self._require(FunctionName)
        self.aliases[(FunctionName, Name)] = {"Name": Name, "FunctionVersion": FunctionVersion}
        return dict(self.aliases[(FunctionName, Name)])

    async def _update_alias(self, FunctionName: str, Name: str, FunctionVersion: str):
        alias = await self._get_alias(FunctionName, Name)
        alias["FunctionVersion"] = FunctionVersion
        self.aliases[(FunctionName, Name)] = alias
        return dict(alias)

    async def _delete_alias(self, FunctionName: str, Name: str) -> dict[str, Any]:
        await self._get_alias(FunctionName, Name)
        del self.aliases[(FunctionName, Name)]
        return {}

    async def _get_provisioned_concurrency_config(self, FunctionName: str, Qualifier: str):
        if (FunctionName, Qualifier) not in self.concurrency:
            raise client_error("ProvisionedConcurrencyConfigNotFoundException")
        value = self.concurrency[(FunctionName, Qualifier)]
        return {"RequestedProvisionedConcurrentExecutions": value}

    async def _put_provisioned_concurrency_config(
        self, FunctionName: str, Qualifier: str, ProvisionedConcurrentExecutions: int
    ) -> dict[str, Any]:
        await self._get_alias(FunctionName, Qualifier)
        self.concurrency[(FunctionName, Qualifier)] = ProvisionedConcurrentExecutions
        return {"RequestedProvisionedConcurrentExecutions": ProvisionedConcurrentExecutions}

    async def _delete_provisioned_concurrency_config(self, FunctionName: str, Qualifier: str):
        if (FunctionName, Qualifier) not in self.concurrency:
            raise client_error("ProvisionedConcurrencyConfigNotFoundException")
        del self.concurrency[(FunctionName, Qualifier)]
        return {}


class FakeIAM:
    """Stateful stand-in for the IAM role operations."""

    def __init__(self) -> None:
        self.roles: dict[str, dict[str, Any]] = {}
        self.attached: dict[str, list[str]] = {}
        self.inline: dict[str, list[str]] = {}

        for name in (
            "get_role",
            "create_role",
            "attach_role_policy",
            "list_attached_role_policies",
            "detach_role_policy",
            "list_role_policies",
            "delete_role_policy",
            "delete_role",
        ):
            setattr(self, name, _tracked(getattr(self, f"_{name}")))

    def add_role(self, name: str) -> str:
        arn = f"arn:aws:iam::{ACCOUNT_ID}:role/{name}"
        self.roles[name] = {"RoleName": name, "Arn": arn}
        self.attached.setdefault(name, [])
        return arn

    def _require(self, name: str) -> dict[str, Any]:
        if name not in self.roles:
            raise client_error("NoSuchEntity", f"The role with name {name} cannot be found.")
        return self.roles[name]

    async def _get_role(self, RoleName: str) -> dict[str, Any]:
        return {"Role": dict(self._require(RoleName))}

    async def _create_role(self, RoleName: str, **_: Any) -> dict[str, Any]:
        if RoleName in self.roles:
            raise client_error("EntityAlreadyExists", f"Role with name {RoleName} already exists.")
        self.add_role(RoleName)
        return {"Role": dict(self.roles[RoleName])}

    async def _attach_role_policy(self, RoleName: str, PolicyArn: str) -> dict[str, Any]:
        self._require(RoleName)
        if PolicyArn not in self.attached[RoleName]:
            self.attached[RoleName].append(PolicyArn)
        return {}

    async def _list_attached_role_policies(self, RoleName: str, **_: Any) -> dict[str, Any]:
        self._require(RoleName)
        return {
            "AttachedPolicies": [{"PolicyArn": arn} for arn in self.attached[RoleName]],
            "IsTruncated": False,
        }

    async def _detach_role_policy(self, RoleName: str, PolicyArn: str) -> dict[str, Any]:
        self.attached[RoleName].remove(PolicyArn)
        return {}

    async def _list_role_policies(self, RoleName: str) -> dict[str, Any]:
        self._require(RoleName)
        return {"PolicyNames": list(self.inline.get(RoleName, []))}

    async def _delete_role_policy(self, RoleName: str, PolicyName: str) -> dict[str, Any]:
        self.inline[RoleName].remove(PolicyName)
        return {}

    async def _delete_role(self, RoleName: str) -> dict[str, Any]:
        self._require(RoleName)
        del self.roles[RoleName]
        self.attached.pop(RoleName, None)
        return {}


class FakeClients:
    """Client set handed to LambdaComponent through its client factory."""

    def __init__(self) -> None:
        self.lambda_client = FakeLambda()
        self.iam_client = FakeIAM()
        self.sts_client = MagicMock()
        self.sts_client.get_caller_identity = AsyncMock(return_value={"Account": ACCOUNT_ID})
        self.s3_client = MagicMock()
        self.s3_client.put_object = AsyncMock(return_value={})
        self.cloudwatch_client = MagicMock()
        self.cloudwatch_client.get_metric_data = AsyncMock(return_value={"MetricDataResults": []})
        self.regions: list[str] = []
        self.closed = 0

    def factory(self, region: str) -> "FakeClients":
        self.regions.append(region)
        return self

    async def lambda_(self) -> FakeLambda:
        return self.lambda_client

    async def iam(self) -> FakeIAM:
        return self.iam_client

    async def sts(self) -> Any:
        return self.sts_client

    async def s3(self) -> Any:
        return self.s3_client

    async def cloudwatch(self) -> Any:
        return self.cloudwatch_client

    async def close(self) -> None:
        self.closed += 1


@pytest.fixture
def fake_lambda() -> FakeLambda:
    return FakeLambda()


@pytest.fixture
def fake_iam() -> FakeIAM:
    return FakeIAM()


@pytest.fixture
def fake_clients() -> FakeClients:
    return FakeClients()
