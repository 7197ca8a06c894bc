"""LambdaComponent: deploy, remove and observe one Lambda function instance."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .exceptions import FunctionNotDeployedError, RemovalIncompleteError
from .infra.aliases import AliasManager
from .infra.clients import AwsClients, Credentials
from .infra.functions import FunctionReconciler, check_immutable_fields
from .infra.metrics import MetricsReader, choose_period
from .infra.removal import RemovalOrchestrator
from .infra.roles import RoleManager
from .models import DeployResult, MetricPoint, PersistedState, ReconcilerOptions, RoleHandle
from .naming import role_name_from_arn
from .normalizer import DEFAULT_REGION, normalize_inputs
from .packaging import Packager
from .state import StateStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], AwsClients]


class LambdaComponent:
    """
    One function instance: its function, roles and optional alias.

    Each call is one reconciliation pass. The persisted state is read once at
    the start and written once at the end; a pass that fails part-way leaves
    the previous record in place, and the next pass picks up from the live
    provider state.

    Example:
        component = LambdaComponent(JsonFileStateStore(".lambda/state.json"))
        result = await component.deploy({"name": "orders", "src": "./app"})
        print(result.arn, result.version)
    """

    def __init__(
        self,
        state_store: StateStore,
        credentials: Credentials | None = None,
        endpoint_url: str | None = None,
        options: ReconcilerOptions | None = None,
        packager: Packager | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Args:
            state_store: Where the persisted state lives
            credentials: Explicit AWS credentials (default: boto credential chain)
            endpoint_url: Optional endpoint URL (for LocalStack)
            options: Retry and waiter options for the reconcilers
            packager: Builds the code artifact from the packaging inputs
            client_factory: Builds the client set for a region (tests inject fakes here)
        """
        self.state_store = state_store
        self.options = options or ReconcilerOptions()
        self.packager = packager or Packager()
        self._client_factory = client_factory or (
            lambda region: AwsClients(region, credentials=credentials, endpoint_url=endpoint_url)
        )

    async def deploy(self, inputs: dict[str, Any] | None) -> DeployResult:
        """
        Converge the function instance on ``inputs``.

        Order: roles (execution and meta, concurrently), function, retirement
        of a replaced auto-created role, alias and provisioned concurrency,
        then one state write.

        Args:
            inputs: Raw user configuration

        Returns:
            DeployResult with the function's outputs

        Raises:
            ConfigurationError: If the inputs are invalid (before any provider call)
            ImmutableFieldChangedError: If name or region changed (before any provider call)
            RoleNotFoundError: If a user-supplied role does not exist
            TransientProviderError: If the role never became assumable
            ProviderError: If any other provider call fails
        """
        persisted = self.state_store.load()
        desired = normalize_inputs(inputs, persisted)
        check_immutable_fields(desired, persisted)
        desired = desired.with_artifact(self.packager.package(desired))

        logger.info("Deploying function %s in %s", desired.name, desired.region)
        clients = self._client_factory(desired.region)
        try:
            lambda_client = await clients.lambda_()
            roles = RoleManager(
                await clients.iam(),
                await clients.sts() if desired.monitoring else None,
            )
            functions = FunctionReconciler(
                lambda_client,
                await clients.s3() if desired.bucket else None,
                self.options,
            )
            aliases = AliasManager(lambda_client)

            execution_role, meta_role = await roles.ensure_roles(desired, persisted)
            function = await functions.reconcile(desired, persisted, execution_role.arn)

            operations = []
            if execution_role.created:
                operations.append("create_role")
            if meta_role is not None and meta_role.created:
                operations.append("create_meta_role")
            operations.extend(function.operations)

            role_owned = _owns_role(persisted, execution_role)
            if persisted.role_is_auto_created and not role_owned:
                await roles.retire_auto_role(persisted)
                operations.append("delete_role")

            alias = await aliases.reconcile(desired, persisted, function.current_version)
            operations.extend(alias.operations)
        finally:
            await clients.close()

        self.state_store.save(
            PersistedState(
                name=desired.name,
                region=desired.region,
                function_arn=function.function_arn,
                role_arn=execution_role.arn,
                role_is_auto_created=role_owned,
                meta_role_arn=meta_role.arn if meta_role else None,
                alias_name=alias.alias_name,
                current_version=function.current_version,
                code_hash=function.code_hash,
            )
        )

        if operations:
            logger.info("Deployed %s: %s", desired.name, ", ".join(operations))
        else:
            logger.info("Deployed %s: no changes", desired.name)

        return DeployResult(
            name=desired.name,
            arn=function.function_arn,
            version=function.current_version,
            provisioned_concurrency=alias.provisioned_concurrency,
            security_group_ids=desired.security_group_ids,
            subnet_ids=desired.subnet_ids,
            alias=alias.alias_name,
            role_arn=execution_role.arn,
            meta_role_arn=meta_role.arn if meta_role else None,
            operations=operations,
        )

    async def remove(self, inputs: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Delete everything recorded in the persisted state.

        ``inputs`` is accepted for symmetry with ``deploy`` and ignored:
        only recorded resources are ever deleted.

        Returns:
            Empty outputs

        Raises:
            ProviderError: If deleting the alias or function fails (state untouched)
            RemovalIncompleteError: If some roles could not be deleted; they stay
                recorded so the next removal retries them
        """
        persisted = self.state_store.load()
        if persisted.is_empty:
            logger.info("Nothing deployed, nothing to remove")
            return {}

        logger.info("Removing function %s from %s", persisted.name, persisted.region)
        clients = self._client_factory(persisted.region or DEFAULT_REGION)
        try:
            lambda_client = await clients.lambda_()
            orchestrator = RemovalOrchestrator(
                functions=FunctionReconciler(lambda_client, options=self.options),
                aliases=AliasManager(lambda_client),
                roles=RoleManager(await clients.iam()),
            )
            residual = await orchestrator.remove(persisted)
        finally:
            await clients.close()

        self.state_store.save(residual)
        if orchestrator.errors:
            raise RemovalIncompleteError(orchestrator.remaining, orchestrator.errors)
        return {}

    async def metrics(
        self, range_start: datetime, range_end: datetime
    ) -> dict[str, list[MetricPoint]]:
        """
        Read the function's Invocations, Errors, Throttles and Duration.

        Raises:
            FunctionNotDeployedError: If nothing has been deployed
            ConfigurationError: If ``range_end`` is not after ``range_start``
            ProviderError: If CloudWatch rejects the query
        """
        persisted = self.state_store.load()
        if persisted.is_empty:
            raise FunctionNotDeployedError("read metrics")
        choose_period(range_start, range_end)

        assert persisted.name is not None
        clients = self._client_factory(persisted.region or DEFAULT_REGION)
        try:
            reader = MetricsReader(await clients.cloudwatch())
            return await reader.read(persisted.name, range_start, range_end)
        finally:
            await clients.close()

    def status(self) -> PersistedState:
        """Return the persisted state without touching the provider."""
        return self.state_store.load()


def _owns_role(persisted: PersistedState, execution_role: RoleHandle) -> bool:
    """
    True when this component created the role the function now runs as.

    A user reference to the recorded auto-created role (e.g. its ARN copied
    from a deploy output) keeps the role owned, so it is neither retired
    while in use nor leaked on removal.
    """
    if execution_role.auto_created:
        return True
    if not (persisted.role_is_auto_created and persisted.role_arn):
        return False
    return role_name_from_arn(execution_role.arn) == role_name_from_arn(persisted.role_arn)
