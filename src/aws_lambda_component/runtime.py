"""Handler dispatch inside the deployed function.

Handlers are registered explicitly under their ``module.function``
identifier instead of being imported from a name found in the environment:

    registry = HandlerRegistry()

    @registry.handler("app.create_order")
    def create_order(event, context):
        return {"statusCode": 201}

    handler = make_entrypoint(registry, "app.create_order")

``handler`` is a plain ``(event, context)`` callable that Lambda can call.
"""

from __future__ import annotations

import json
import time
import traceback
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from .exceptions import ConfigurationError
from .naming import validate_handler

HandlerFunc = Callable[[Any, Any], Any]


class StructuredLogger:
    """JSON-formatted logger for CloudWatch Logs Insights."""

    def __init__(self, name: str):
        self._name = name

    def _log(self, level: str, message: str, **extra: Any) -> None:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "logger": self._name,
            "message": message,
            **extra,
        }
        print(json.dumps(log_entry, default=str))

    def info(self, message: str, **extra: Any) -> None:
        self._log("INFO", message, **extra)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        if exc_info:
            extra["exception"] = traceback.format_exc()
        self._log("ERROR", message, **extra)


logger = StructuredLogger(__name__)


@runtime_checkable
class Handler(Protocol):
    """Anything that can serve one invocation."""

    def invoke(self, event: Any, context: Any) -> Any: ...


class FunctionHandler:
    """Adapts a plain ``(event, context)`` function to the Handler protocol."""

    def __init__(self, func: HandlerFunc):
        self.func = func

    def invoke(self, event: Any, context: Any) -> Any:
        return self.func(event, context)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__qualname__', self.func)!r})"


class HandlerRegistry:
    """Maps handler identifiers to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, identifier: str, handler: Handler | HandlerFunc) -> None:
        """
        Register a handler under ``identifier``.

        Args:
            identifier: ``module.function`` identifier, as configured on the function
            handler: A Handler, or a plain ``(event, context)`` callable

        Raises:
            ConfigurationError: If the identifier is malformed or already taken
        """
        validate_handler(identifier)
        if identifier in self._handlers:
            raise ConfigurationError("Already registered", field="handler", value=identifier)
        if not isinstance(handler, Handler):
            handler = FunctionHandler(handler)
        self._handlers[identifier] = handler

    def handler(self, identifier: str) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator form of ``register``; returns the function unchanged."""

        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.register(identifier, func)
            return func

        return decorator

    def get(self, identifier: str) -> Handler:
        """
        Look up a handler.

        Raises:
            ConfigurationError: If nothing is registered under ``identifier``
        """
        try:
            return self._handlers[identifier]
        except KeyError:
            raise ConfigurationError(
                "No handler registered", field="handler", value=identifier
            ) from None

    def identifiers(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def make_entrypoint(registry: HandlerRegistry, identifier: str) -> HandlerFunc:
    """
    Build the Lambda entry point for one registered handler.

    The lookup happens here, at import time of the function code, so a
    missing registration fails the cold start instead of the first request.

    Args:
        registry: Registry holding the handler
        identifier: Identifier the handler was registered under

    Returns:
        Callable taking ``(event, context)``
    """
    target = registry.get(identifier)

    def entrypoint(event: Any, context: Any) -> Any:
        request_id = getattr(context, "aws_request_id", None)
        logger.info("Invocation started", handler=identifier, request_id=request_id)
        start = time.perf_counter()
        try:
            result = target.invoke(event, context)
        except Exception as e:
            logger.error(
                "Invocation failed",
                exc_info=True,
                handler=identifier,
                request_id=request_id,
                error=str(e),
            )
            raise
        logger.info(
            "Invocation finished",
            handler=identifier,
            request_id=request_id,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return result

    entrypoint.__name__ = identifier.rsplit(".", 1)[-1]
    return entrypoint
