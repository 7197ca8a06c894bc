"""Lambda function reconciliation.

Compares the desired state against the live function configuration and
issues the minimal set of create/update calls:

    Absent ──create──▶ Active
    Active ──update-code / update-configuration──▶ Active
    Active ──(no diff)──▶ Active

Change detection only looks at ``COMPARABLE_FIELDS``. Packaging metadata and
display-only fields never trigger an update.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from botocore.exceptions import ClientError, WaiterError

from ..exceptions import (
    ConfigurationError,
    ImmutableFieldChangedError,
    ProviderError,
    TransientProviderError,
    classify_client_error,
    is_not_found,
)
from ..models import (
    CodeArtifact,
    DesiredState,
    ObservedState,
    PersistedState,
    ReconcilerOptions,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPARABLE_FIELDS = (
    "description",
    "runtime",
    "role",
    "handler",
    "memory_size",
    "timeout",
    "environment",
    "code_hash",
    "security_group_ids",
    "subnet_ids",
    "layers",
)

LATEST_VERSION = "$LATEST"


@dataclass
class FunctionResult:
    """Outcome of one function reconciliation."""

    function_arn: str
    current_version: str | None
    code_hash: str
    created: bool = False
    operations: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.operations)


def check_immutable_fields(desired: DesiredState, persisted: PersistedState) -> None:
    """
    Reject a name or region change on an already deployed function.

    Raises:
        ImmutableFieldChangedError: If name or region differ from the recorded ones
    """
    if not persisted.name:
        return
    if desired.name != persisted.name:
        raise ImmutableFieldChangedError("name", persisted.name, desired.name)
    if persisted.region and desired.region != persisted.region:
        raise ImmutableFieldChangedError("region", persisted.region, desired.region)


def compute_config_diff(desired: dict[str, Any], observed: dict[str, Any]) -> list[str]:
    """
    Return the comparable fields whose values differ.

    Args:
        desired: ``DesiredState.comparable()`` projection
        observed: ``ObservedState.comparable()`` projection

    Returns:
        Changed field names, in ``COMPARABLE_FIELDS`` order
    """
    return [name for name in COMPARABLE_FIELDS if desired.get(name) != observed.get(name)]


async def call_with_retry(
    operation: str,
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """
    Issue a provider call, retrying only on TransientProviderError.

    Args:
        operation: Provider operation name (for errors and logs)
        call: Zero-argument coroutine factory issuing the call
        policy: Attempt limit and fixed delay

    Returns:
        The call's response

    Raises:
        TransientProviderError: If every attempt hit the transient race
        ProviderError: For any other provider failure (not retried)
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await call()
        except ClientError as e:
            error = classify_client_error(e, operation)
            if not isinstance(error, TransientProviderError):
                raise error from e
            if attempt >= policy.max_attempts:
                error.attempts = attempt
                logger.error("%s still failing after %d attempts", operation, attempt)
                raise error from e
            logger.info(
                "%s hit a transient error (attempt %d/%d), retrying in %.1fs: %s",
                operation,
                attempt,
                policy.max_attempts,
                policy.delay_seconds,
                error.provider_message,
            )
            await asyncio.sleep(policy.delay_seconds)


class FunctionReconciler:
    """
    Drives a single Lambda function towards the desired state.

    The live configuration is read fresh on every pass and never cached.
    """

    def __init__(
        self,
        lambda_client: Any,
        s3_client: Any | None = None,
        options: ReconcilerOptions | None = None,
    ) -> None:
        """
        Args:
            lambda_client: aioboto3 Lambda client
            s3_client: aioboto3 S3 client (needed when a deployment bucket is used)
            options: Retry and waiter options
        """
        self._lambda = lambda_client
        self._s3 = s3_client
        self.options = options or ReconcilerOptions()

    async def get_observed(self, name: str) -> ObservedState | None:
        """
        Fetch the live configuration.

        Returns:
            ObservedState, or None when the function does not exist

        Raises:
            ProviderError: For any failure other than "not found"
        """
        try:
            response = await self._lambda.get_function_configuration(FunctionName=name)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise classify_client_error(e, "GetFunctionConfiguration") from e
        return ObservedState.from_configuration(response)

    async def reconcile(
        self,
        desired: DesiredState,
        persisted: PersistedState,
        role_arn: str,
    ) -> FunctionResult:
        """
        Create or update the function so it matches ``desired``.

        Args:
            desired: Desired state with a code artifact attached
            persisted: Previous state (for immutability and version tracking)
            role_arn: Resolved execution role ARN

        Returns:
            FunctionResult with the ARN, current version and operations issued
        """
        check_immutable_fields(desired, persisted)
        artifact = desired.code_artifact
        if artifact is None:
            raise ConfigurationError("No code artifact attached to the desired state")

        observed = await self.get_observed(desired.name)
        if observed is None:
            return await self._create(desired, artifact, role_arn)

        changed = compute_config_diff(desired.comparable(role_arn), observed.comparable())
        code_changed = "code_hash" in changed
        config_changed = any(name != "code_hash" for name in changed)

        if changed:
            logger.info("Function %s changed fields: %s", desired.name, ", ".join(changed))
        else:
            logger.info("Function %s is up to date", desired.name)

        result = FunctionResult(
            function_arn=observed.function_arn,
            current_version=await self._current_version(desired.name, observed, persisted),
            code_hash=observed.code_hash,
        )

        if code_changed:
            response = await self._update_code(desired, artifact)
            result.current_version = response.get("Version", result.current_version)
            result.code_hash = response.get("CodeSha256", artifact.code_hash)
            result.operations.append("update_code")

        if config_changed:
            await self._update_configuration(desired, role_arn)
            result.operations.append("update_configuration")
            result.current_version = await self._publish_version(desired.name)
            result.operations.append("publish_version")

        return result

    async def delete(self, name: str) -> bool:
        """
        Delete the function and all its versions.

        Returns:
            True if the function was deleted, False if it was already absent

        Raises:
            ProviderError: For any failure other than "not found"
        """
        try:
            await self._lambda.delete_function(FunctionName=name)
        except ClientError as e:
            if is_not_found(e):
                logger.info("Function %s does not exist", name)
                return False
            raise classify_client_error(e, "DeleteFunction") from e
        logger.info("Deleted function %s", name)
        return True

    async def _create(
        self, desired: DesiredState, artifact: CodeArtifact, role_arn: str
    ) -> FunctionResult:
        await self._upload(artifact)

        params: dict[str, Any] = {
            "FunctionName": desired.name,
            "Runtime": desired.runtime,
            "Role": role_arn,
            "Handler": desired.handler,
            "Code": artifact.code_location(),
            "Description": desired.description,
            "Timeout": desired.timeout,
            "MemorySize": desired.memory_size,
            "Publish": True,
            "Environment": {"Variables": dict(desired.environment)},
        }
        if desired.layers:
            params["Layers"] = list(desired.layers)
        if desired.network_config is not None:
            params["VpcConfig"] = desired.network_config.to_vpc_config()

        response = await call_with_retry(
            "CreateFunction",
            lambda: self._lambda.create_function(**params),
            self.options.retry,
        )
        logger.info(
            "Created function %s (version %s)", response["FunctionArn"], response.get("Version")
        )
        await self._wait("function_active", desired.name)

        return FunctionResult(
            function_arn=response["FunctionArn"],
            current_version=response.get("Version"),
            code_hash=response.get("CodeSha256", artifact.code_hash),
            created=True,
            operations=["create"],
        )

    async def _update_code(self, desired: DesiredState, artifact: CodeArtifact) -> dict[str, Any]:
        await self._upload(artifact)
        params: dict[str, Any] = {"FunctionName": desired.name, "Publish": True}
        params.update(artifact.code_location())
        try:
            response = await self._lambda.update_function_code(**params)
        except ClientError as e:
            raise classify_client_error(e, "UpdateFunctionCode") from e
        logger.info("Updated code of %s (version %s)", desired.name, response.get("Version"))
        await self._wait("function_updated", desired.name)
        return dict(response)

    async def _update_configuration(self, desired: DesiredState, role_arn: str) -> None:
        # Whole record: empty lists clear layers and VPC attachment
        params: dict[str, Any] = {
            "FunctionName": desired.name,
            "Description": desired.description,
            "Handler": desired.handler,
            "MemorySize": desired.memory_size,
            "Role": role_arn,
            "Runtime": desired.runtime,
            "Timeout": desired.timeout,
            "Environment": {"Variables": dict(desired.environment)},
            "Layers": list(desired.layers),
            "VpcConfig": {
                "SecurityGroupIds": desired.security_group_ids,
                "SubnetIds": desired.subnet_ids,
            },
        }
        await call_with_retry(
            "UpdateFunctionConfiguration",
            lambda: self._lambda.update_function_configuration(**params),
            self.options.retry,
        )
        logger.info("Updated configuration of %s", desired.name)
        await self._wait("function_updated", desired.name)

    async def _publish_version(self, name: str) -> str:
        try:
            response = await self._lambda.publish_version(FunctionName=name)
        except ClientError as e:
            raise classify_client_error(e, "PublishVersion") from e
        logger.info("Published version %s of %s", response["Version"], name)
        return str(response["Version"])

    async def _current_version(
        self, name: str, observed: ObservedState, persisted: PersistedState
    ) -> str | None:
        if persisted.function_arn == observed.function_arn and persisted.current_version:
            return persisted.current_version
        return await self._latest_published_version(name)

    async def _latest_published_version(self, name: str) -> str | None:
        """Highest numeric version of the function, or None if none was published."""
        latest: int | None = None
        kwargs: dict[str, Any] = {"FunctionName": name}
        while True:
            try:
                response = await self._lambda.list_versions_by_function(**kwargs)
            except ClientError as e:
                raise classify_client_error(e, "ListVersionsByFunction") from e
            for version in response.get("Versions", []):
                number = version.get("Version")
                if number and number != LATEST_VERSION:
                    latest = max(latest or 0, int(number))
            marker = response.get("NextMarker")
            if not marker:
                break
            kwargs["Marker"] = marker
        return str(latest) if latest is not None else None

    async def _upload(self, artifact: CodeArtifact) -> None:
        if not artifact.bucket:
            return
        if self._s3 is None:
            raise RuntimeError("FunctionReconciler needs an S3 client to upload to a bucket")
        try:
            await self._s3.put_object(
                Bucket=artifact.bucket,
                Key=artifact.s3_key,
                Body=artifact.path.read_bytes(),
            )
        except ClientError as e:
            raise classify_client_error(e, "PutObject") from e
        logger.info("Uploaded %s to s3://%s/%s", artifact.path, artifact.bucket, artifact.s3_key)

    async def _wait(self, waiter_name: str, function_name: str) -> None:
        if not self.options.wait:
            return
        waiter = self._lambda.get_waiter(waiter_name)
        try:
            await waiter.wait(FunctionName=function_name)
        except WaiterError as e:
            raise ProviderError(waiter_name, "WaiterError", str(e)) from e
