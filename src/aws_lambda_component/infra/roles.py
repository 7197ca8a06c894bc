"""IAM role management for the function's execution and meta roles."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from botocore.exceptions import ClientError

from ..exceptions import RoleNotFoundError, classify_client_error, error_code, is_not_found
from ..models import DesiredState, PersistedState, RoleHandle
from ..naming import execution_role_name, meta_role_name, role_name_from_arn

logger = logging.getLogger(__name__)

BASIC_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
VPC_ACCESS_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaVPCAccessExecutionRole"
META_ROLE_POLICY_ARN = "arn:aws:iam::aws:policy/CloudWatchReadOnlyAccess"

LAMBDA_SERVICE_PRINCIPAL = "lambda.amazonaws.com"


def lambda_trust_policy() -> dict[str, Any]:
    """Trust policy that lets the Lambda service assume the role."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": [LAMBDA_SERVICE_PRINCIPAL]},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def account_trust_policy(account_id: str) -> dict[str, Any]:
    """Trust policy that lets principals of ``account_id`` assume the role."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": f"arn:aws:iam::{account_id}:root"},
                "Action": "sts:AssumeRole",
            }
        ],
    }


class RoleManager:
    """
    Ensures the execution role (and optional meta role) exist.

    User-supplied roles are only ever read. Auto-created roles are named
    deterministically from the function name, so a pass that lost its
    state write can find and adopt them instead of failing on a name
    collision.
    """

    def __init__(self, iam_client: Any, sts_client: Any | None = None) -> None:
        """
        Args:
            iam_client: aioboto3 IAM client
            sts_client: aioboto3 STS client (only needed for the meta role)
        """
        self._iam = iam_client
        self._sts = sts_client

    async def ensure_roles(
        self, desired: DesiredState, persisted: PersistedState
    ) -> tuple[RoleHandle, RoleHandle | None]:
        """
        Ensure the execution role and the meta role, concurrently.

        Both calls run to completion before a failure is raised, the
        execution role's failure first.
        """
        execution, meta = await asyncio.gather(
            self.ensure_execution_role(desired, persisted),
            self.ensure_meta_role(desired, persisted),
            return_exceptions=True,
        )
        if isinstance(execution, BaseException):
            if isinstance(meta, BaseException):
                logger.warning("Meta role also failed: %s", meta)
            raise execution
        if isinstance(meta, BaseException):
            raise meta
        return execution, meta

    async def ensure_execution_role(
        self, desired: DesiredState, persisted: PersistedState
    ) -> RoleHandle:
        """
        Resolve the execution role for this pass.

        Args:
            desired: Desired state (``role_reference`` selects a user role)
            persisted: Previous state (records an existing auto-created role)

        Returns:
            RoleHandle for the role the function should run as

        Raises:
            RoleNotFoundError: If a user-supplied role does not exist
            ProviderError: If reading, creating or attaching fails
        """
        if desired.role_reference:
            return await self._resolve_user_role(desired.role_reference)

        policies = [BASIC_EXECUTION_POLICY_ARN]
        if desired.network_config is not None:
            policies.append(VPC_ACCESS_POLICY_ARN)

        role_name = execution_role_name(desired.name)
        if persisted.role_is_auto_created and persisted.role_arn:
            existing = await self._get_role(role_name_from_arn(persisted.role_arn))
            if existing is not None:
                logger.debug("Reusing execution role %s", existing["Arn"])
                if desired.network_config is not None:
                    await self._attach_policies(existing["RoleName"], policies)
                return RoleHandle(
                    arn=existing["Arn"],
                    name=existing["RoleName"],
                    auto_created=True,
                )
            logger.warning(
                "Recorded execution role %s no longer exists, recreating", persisted.role_arn
            )

        return await self._create_role(
            role_name,
            trust_policy=lambda_trust_policy(),
            policies=policies,
            description=f"Execution role for Lambda function {desired.name}",
        )

    async def ensure_meta_role(
        self, desired: DesiredState, persisted: PersistedState
    ) -> RoleHandle | None:
        """
        Create or reuse the read-only observability role.

        When monitoring is disabled and a meta role was recorded, the role
        is deleted instead and None is returned.
        """
        if not desired.monitoring:
            if persisted.meta_role_arn:
                await self.delete_role(persisted.meta_role_arn)
            return None

        if persisted.meta_role_arn:
            existing = await self._get_role(role_name_from_arn(persisted.meta_role_arn))
            if existing is not None:
                return RoleHandle(arn=existing["Arn"], name=existing["RoleName"], auto_created=True)

        account_id = await self._account_id()
        return await self._create_role(
            meta_role_name(desired.name),
            trust_policy=account_trust_policy(account_id),
            policies=[META_ROLE_POLICY_ARN],
            description=f"Read-only monitoring role for Lambda function {desired.name}",
        )

    async def retire_auto_role(self, persisted: PersistedState) -> None:
        """
        Delete the auto-created role after a switch to a user-supplied role.

        Must only be called once the live function no longer references it.
        """
        if persisted.role_is_auto_created and persisted.role_arn:
            logger.info("Retiring auto-created execution role %s", persisted.role_arn)
            await self.delete_role(persisted.role_arn)

    async def delete_role(self, role_arn: str) -> None:
        """
        Detach managed policies, delete inline policies, then delete the role.

        A role that is already gone counts as deleted.

        Raises:
            ProviderError: For any failure other than "not found"
        """
        role_name = role_name_from_arn(role_arn)
        try:
            for policy_arn in await self._attached_policies(role_name):
                await self._iam.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn)

            response = await self._iam.list_role_policies(RoleName=role_name)
            for policy_name in response.get("PolicyNames", []):
                await self._iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)

            await self._iam.delete_role(RoleName=role_name)
            logger.info("Deleted role %s", role_name)
        except ClientError as e:
            if is_not_found(e):
                logger.info("Role %s does not exist", role_name)
                return
            raise classify_client_error(e, "DeleteRole") from e

    async def _resolve_user_role(self, role_reference: str) -> RoleHandle:
        role = await self._get_role(role_name_from_arn(role_reference))
        if role is None:
            raise RoleNotFoundError(role_reference)
        return RoleHandle(arn=role["Arn"], name=role["RoleName"], auto_created=False)

    async def _get_role(self, role_name: str) -> dict[str, Any] | None:
        try:
            response = await self._iam.get_role(RoleName=role_name)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise classify_client_error(e, "GetRole") from e
        return dict(response["Role"])

    async def _create_role(
        self,
        role_name: str,
        trust_policy: dict[str, Any],
        policies: list[str],
        description: str,
    ) -> RoleHandle:
        try:
            response = await self._iam.create_role(
                RoleName=role_name,
                Path="/",
                AssumeRolePolicyDocument=json.dumps(trust_policy),
                Description=description,
            )
            role = response["Role"]
            created = True
            logger.info("Created role %s", role["Arn"])
        except ClientError as e:
            if error_code(e) != "EntityAlreadyExists":
                raise classify_client_error(e, "CreateRole") from e
            # Left behind by a pass whose state write never happened
            existing = await self._get_role(role_name)
            if existing is None:
                raise classify_client_error(e, "CreateRole") from e
            role = existing
            created = False
            logger.info("Adopting existing role %s", role["Arn"])

        await self._attach_policies(role_name, policies)
        return RoleHandle(
            arn=role["Arn"], name=role["RoleName"], auto_created=True, created=created
        )

    async def _attach_policies(self, role_name: str, policies: list[str]) -> None:
        for policy_arn in policies:
            try:
                await self._iam.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
            except ClientError as e:
                raise classify_client_error(e, "AttachRolePolicy") from e

    async def _attached_policies(self, role_name: str) -> list[str]:
        arns: list[str] = []
        kwargs: dict[str, Any] = {"RoleName": role_name}
        while True:
            response = await self._iam.list_attached_role_policies(**kwargs)
            arns.extend(p["PolicyArn"] for p in response.get("AttachedPolicies", []))
            if not response.get("IsTruncated"):
                return arns
            kwargs["Marker"] = response["Marker"]

    async def _account_id(self) -> str:
        if self._sts is None:
            raise RuntimeError("RoleManager needs an STS client to create the meta role")
        try:
            response = await self._sts.get_caller_identity()
        except ClientError as e:
            raise classify_client_error(e, "GetCallerIdentity") from e
        return str(response["Account"])
