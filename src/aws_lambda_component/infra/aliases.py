"""Alias and provisioned concurrency management.

The alias exists exactly when provisioned concurrency is requested. State
transitions are keyed on (alias exists, concurrency requested):

    (no,  no)   nothing to do
    (no,  yes)  CreateAlias, then PutProvisionedConcurrencyConfig
    (yes, yes)  UpdateAlias if the version moved, then re-apply concurrency
    (yes, no)   DeleteProvisionedConcurrencyConfig, then DeleteAlias

Concurrency is only ever configured on an alias that exists, and always
removed before its alias.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from ..exceptions import ConfigurationError, classify_client_error, is_not_found
from ..models import DesiredState, PersistedState

logger = logging.getLogger(__name__)


@dataclass
class AliasResult:
    """Outcome of one alias reconciliation."""

    alias_name: str | None = None
    function_version: str | None = None
    provisioned_concurrency: int | None = None
    operations: list[str] = field(default_factory=list)


class AliasManager:
    """Keeps one alias and its provisioned concurrency in line with the desired state."""

    def __init__(self, lambda_client: Any) -> None:
        self._lambda = lambda_client

    async def reconcile(
        self,
        desired: DesiredState,
        persisted: PersistedState,
        current_version: str | None,
    ) -> AliasResult:
        """
        Create, repoint or delete the alias.

        Args:
            desired: Desired state (``alias_name`` + ``provisioned_concurrency``)
            persisted: Previous state (records the alias name in use)
            current_version: Function version the alias should point at

        Returns:
            AliasResult describing the alias after this pass

        Raises:
            ConfigurationError: If concurrency is requested but no version was published
            ProviderError: If a provider call fails
        """
        function_name = desired.name
        result = AliasResult()

        previous = persisted.alias_name
        if previous and desired.alias_name and previous != desired.alias_name:
            logger.info(
                "Alias renamed from %s to %s, removing the old one",
                previous,
                desired.alias_name,
            )
            if await self.remove(function_name, previous):
                result.operations.append("delete_alias")

        alias_name = desired.alias_name or persisted.alias_name
        if alias_name is None:
            return result

        existing = await self._get_alias(function_name, alias_name)
        concurrency = desired.provisioned_concurrency if desired.wants_alias else None

        if concurrency is None:
            if existing is not None:
                await self._delete_concurrency(function_name, alias_name)
                await self._delete_alias(function_name, alias_name)
                result.operations.append("delete_alias")
            return result

        if current_version is None:
            raise ConfigurationError(
                "provisioned concurrency needs a published function version",
                field="alias",
                value=alias_name,
            )
        result.alias_name = alias_name
        result.function_version = current_version
        result.provisioned_concurrency = concurrency

        if existing is None:
            await self._create_alias(function_name, alias_name, current_version)
            result.operations.append("create_alias")
            await self._put_concurrency(function_name, alias_name, concurrency)
            result.operations.append("put_provisioned_concurrency")
            return result

        repointed = existing.get("FunctionVersion") != current_version
        if repointed:
            await self._update_alias(function_name, alias_name, current_version)
            result.operations.append("update_alias")

        configured = await self._get_concurrency(function_name, alias_name)
        if repointed or configured != concurrency:
            await self._put_concurrency(function_name, alias_name, concurrency)
            result.operations.append("put_provisioned_concurrency")

        return result

    async def remove(self, function_name: str, alias_name: str) -> bool:
        """
        Delete the alias and its provisioned concurrency.

        Returns:
            True if the alias existed and was deleted, False if it was already gone

        Raises:
            ProviderError: For any failure other than "not found"
        """
        await self._delete_concurrency(function_name, alias_name)
        return await self._delete_alias(function_name, alias_name)

    async def _get_alias(self, function_name: str, alias_name: str) -> dict[str, Any] | None:
        try:
            response = await self._lambda.get_alias(FunctionName=function_name, Name=alias_name)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise classify_client_error(e, "GetAlias") from e
        return dict(response)

    async def _create_alias(self, function_name: str, alias_name: str, version: str) -> None:
        try:
            await self._lambda.create_alias(
                FunctionName=function_name,
                Name=alias_name,
                FunctionVersion=version,
            )
        except ClientError as e:
            raise classify_client_error(e, "CreateAlias") from e
        logger.info("Created alias %s of %s -> version %s", alias_name, function_name, version)

    async def _update_alias(self, function_name: str, alias_name: str, version: str) -> None:
        try:
            await self._lambda.update_alias(
                FunctionName=function_name,
                Name=alias_name,
                FunctionVersion=version,
            )
        except ClientError as e:
            raise classify_client_error(e, "UpdateAlias") from e
        logger.info("Repointed alias %s of %s -> version %s", alias_name, function_name, version)

    async def _delete_alias(self, function_name: str, alias_name: str) -> bool:
        try:
            await self._lambda.delete_alias(FunctionName=function_name, Name=alias_name)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise classify_client_error(e, "DeleteAlias") from e
        logger.info("Deleted alias %s of %s", alias_name, function_name)
        return True

    async def _get_concurrency(self, function_name: str, alias_name: str) -> int | None:
        try:
            response = await self._lambda.get_provisioned_concurrency_config(
                FunctionName=function_name, Qualifier=alias_name
            )
        except ClientError as e:
            if is_not_found(e):
                return None
            raise classify_client_error(e, "GetProvisionedConcurrencyConfig") from e
        requested = response.get("RequestedProvisionedConcurrentExecutions")
        return int(requested) if requested is not None else None

    async def _put_concurrency(self, function_name: str, alias_name: str, value: int) -> None:
        try:
            await self._lambda.put_provisioned_concurrency_config(
                FunctionName=function_name,
                Qualifier=alias_name,
                ProvisionedConcurrentExecutions=value,
            )
        except ClientError as e:
            raise classify_client_error(e, "PutProvisionedConcurrencyConfig") from e
        logger.info("Set provisioned concurrency of %s:%s to %d", function_name, alias_name, value)

    async def _delete_concurrency(self, function_name: str, alias_name: str) -> None:
        try:
            await self._lambda.delete_provisioned_concurrency_config(
                FunctionName=function_name, Qualifier=alias_name
            )
        except ClientError as e:
            if is_not_found(e):
                return
            raise classify_client_error(e, "DeleteProvisionedConcurrencyConfig") from e
        logger.info("Removed provisioned concurrency from %s:%s", function_name, alias_name)
