"""AWS client factory for one reconciliation pass."""

from dataclasses import dataclass
from typing import Any

import aioboto3


@dataclass(frozen=True)
class Credentials:
    """
    Explicit AWS credentials.

    When no Credentials object is passed to ``AwsClients``, the default
    boto credential chain is used instead.
    """

    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    def session_kwargs(self) -> dict[str, str]:
        kwargs = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs


class AwsClients:
    """
    Lazily created, cached aioboto3 clients bound to one region.

    Supports both AWS and LocalStack environments. When endpoint_url is
    provided, every client talks to that endpoint.

    Example:
        async with AwsClients(region="us-east-1") as clients:
            lambda_client = await clients.lambda_()
    """

    def __init__(
        self,
        region: str,
        credentials: Credentials | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        """
        Initialize the client factory.

        Args:
            region: AWS region every client is bound to
            credentials: Explicit credentials (default: boto credential chain)
            endpoint_url: Optional endpoint URL (for LocalStack)
        """
        self.region = region
        self.credentials = credentials
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._clients: dict[str, Any] = {}

    async def _get_client(self, service: str) -> Any:
        """Get or create a client for ``service``."""
        if service in self._clients:
            return self._clients[service]

        if self._session is None:
            session_kwargs = self.credentials.session_kwargs() if self.credentials else {}
            self._session = aioboto3.Session(**session_kwargs)

        kwargs: dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        session = self._session
        client = await session.client(service, **kwargs).__aenter__()
        self._clients[service] = client
        return client

    async def iam(self) -> Any:
        return await self._get_client("iam")

    async def lambda_(self) -> Any:
        return await self._get_client("lambda")

    async def sts(self) -> Any:
        return await self._get_client("sts")

    async def s3(self) -> Any:
        return await self._get_client("s3")

    async def cloudwatch(self) -> Any:
        return await self._get_client("cloudwatch")

    async def close(self) -> None:
        """Close every client opened by this factory."""
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.__aexit__(None, None, None)
        self._session = None

    async def __aenter__(self) -> "AwsClients":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
