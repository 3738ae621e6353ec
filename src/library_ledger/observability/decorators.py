"""Decorators for tracing MCP tools and resources."""

import functools
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire

# never attach credentials to spans
_REDACTED_ARGUMENTS = frozenset({"access_token", "token"})


def trace_tool(tool_name: str):
    """Decorator to trace MCP tool execution.

    The wrapped handler receives the raw ``arguments`` dict; scalar arguments
    other than credentials are attached to the span.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any]) -> dict[str, Any]:
            with logfire.span(
                f"tool.execution.{tool_name}",
                tool_name=tool_name,
            ) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", arguments)

                result = await func(arguments)

                span.set_attribute("tool.success", not result.get("isError", False))
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator


def trace_resource(resource_type: str):
    """Lightweight decorator for resource reads."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with logfire.span(
                f"resource.read.{resource_type}",
                resource_type=resource_type,
            ) as span:
                result = await func(*args, **kwargs)

                if isinstance(result, dict) and "books" in result:
                    span.set_attribute("result.item_count", len(result["books"]))

                return result

        return wrapper

    return decorator


def _add_attributes(span, prefix: str, data: dict):
    for key, value in data.items():
        if key in _REDACTED_ARGUMENTS:
            continue
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
