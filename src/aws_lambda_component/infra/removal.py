"""Teardown of everything recorded in persisted state."""

from __future__ import annotations

import logging

from ..exceptions import ProviderError
from ..models import PersistedState
from .aliases import AliasManager
from .functions import FunctionReconciler
from .roles import RoleManager

logger = logging.getLogger(__name__)


class RemovalOrchestrator:
    """
    Deletes the resources of one function instance in reverse creation order.

    Persisted state is the only input: resources that were never recorded
    are never touched, and a user-supplied execution role is never deleted.

    Order:
        1. Provisioned concurrency and alias
        2. Function (all versions)
        3. Meta role
        4. Auto-created execution role

    "Not found" from the provider counts as deleted at every step, so a
    removal that was interrupted can simply be run again.
    """

    def __init__(
        self,
        functions: FunctionReconciler,
        aliases: AliasManager,
        roles: RoleManager,
    ) -> None:
        self.functions = functions
        self.aliases = aliases
        self.roles = roles
        self.errors: list[ProviderError] = []
        self.remaining: list[str] = []

    async def remove(self, persisted: PersistedState) -> PersistedState:
        """
        Delete every recorded resource.

        Alias and function failures abort the removal; the caller keeps its
        state unchanged. Role failures are logged and collected in ``errors``
        while the remaining steps still run.

        Args:
            persisted: The state recorded by the last successful pass

        Returns:
            Residual state: empty when everything is gone, otherwise only the
            roles that could not be deleted

        Raises:
            ProviderError: If deleting the alias or the function fails
        """
        self.errors = []
        self.remaining = []
        if persisted.is_empty:
            logger.info("Nothing to remove")
            return PersistedState()

        name = persisted.name
        assert name is not None

        if persisted.alias_name:
            await self.aliases.remove(name, persisted.alias_name)

        await self.functions.delete(name)

        residual = PersistedState(name=name, region=persisted.region)

        if persisted.meta_role_arn:
            if not await self._delete_role(persisted.meta_role_arn):
                residual.meta_role_arn = persisted.meta_role_arn

        if persisted.role_arn and persisted.role_is_auto_created:
            if not await self._delete_role(persisted.role_arn):
                residual.role_arn = persisted.role_arn
                residual.role_is_auto_created = True

        if not self.errors:
            return PersistedState()
        return residual

    async def _delete_role(self, role_arn: str) -> bool:
        try:
            await self.roles.delete_role(role_arn)
        except ProviderError as e:
            logger.warning("Failed to delete role %s: %s", role_arn, e)
            self.errors.append(e)
            self.remaining.append(role_arn)
            return False
        return True

