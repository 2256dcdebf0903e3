"""Function Registry.

Owns the set of registered function descriptors and their local
implementations. Pure in-memory; both the HTTP orchestrator and the realtime
controller dispatch tool calls through it.
"""

import inspect
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models import FunctionDescriptor, ToolResult, ToolResultStatus
from shared.schema import validate_function_descriptor

logger = get_logger(__name__)


@dataclass(frozen=True)
class FunctionBinding:
    """A validated descriptor paired with its implementation."""
    descriptor: FunctionDescriptor
    implementation: Callable[..., Any]

    @property
    def name(self) -> str:
        return self.descriptor.name


class FunctionRegistry:
    """
    Registry mapping function names to local implementations.

    Responsibilities:
    - Validate descriptors at registration time
    - Keep one binding per name, newest registration wins
    - Project descriptors into provider tool payloads
    - Invoke implementations without letting their failures escape
    """

    def __init__(self) -> None:
        self._bindings: dict[str, FunctionBinding] = {}

    def register(
        self,
        descriptor: Union[FunctionDescriptor, Mapping[str, Any]],
        implementation: Callable[..., Any]
    ) -> FunctionDescriptor:
        """
        Register a function in the registry.

        A descriptor whose name is already registered replaces the existing
        binding and moves to the end of the registration order.

        Args:
            descriptor: Function descriptor, as a model or a raw mapping
            implementation: Callable taking the arguments positionally

        Returns:
            The validated descriptor

        Raises:
            ValidationError: If the descriptor is malformed
        """
        if isinstance(descriptor, FunctionDescriptor):
            raw = descriptor.to_provider_tool()
        else:
            raw = dict(descriptor)

        is_valid, errors = validate_function_descriptor(raw)
        if not is_valid:
            raise ValidationError(errors)
        if not callable(implementation):
            raise ValidationError(["implementation: must be callable"])

        validated = FunctionDescriptor.model_validate(raw)

        if self._bindings.pop(validated.name, None) is not None:
            logger.info("Function replaced", function=validated.name)

        self._bindings[validated.name] = FunctionBinding(validated, implementation)

        logger.info("Function registered", function=validated.name)
        return validated

    def unregister(self, name: str) -> bool:
        """Remove a function. Returns False if it was not registered."""
        if self._bindings.pop(name, None) is not None:
            logger.info("Function unregistered", function=name)
            return True
        return False

    def resolve(self, name: str) -> Optional[FunctionBinding]:
        """Get the binding for a function name, or None if not found."""
        return self._bindings.get(name)

    def list_descriptors(self) -> list[FunctionDescriptor]:
        """List registered descriptors in registration order."""
        return [binding.descriptor for binding in self._bindings.values()]

    def provider_tools(self) -> list[dict[str, Any]]:
        """Descriptors formatted as chat-completions tools."""
        return [d.to_provider_tool() for d in self.list_descriptors()]

    def realtime_tools(self) -> list[dict[str, Any]]:
        """Descriptors formatted for a realtime session update."""
        return [d.to_realtime_tool() for d in self.list_descriptors()]

    async def invoke(self, name: str, arguments: Any) -> ToolResult:
        """
        Invoke a registered function.

        Argument values are applied positionally in the key order of the
        arguments object as the provider sent it.

        Args:
            name: Function name
            arguments: Decoded JSON arguments object

        Returns:
            Tool result; never raises for unknown names or failing tools
        """
        binding = self.resolve(name)
        if binding is None:
            return ToolResult(
                tool_name=name,
                status=ToolResultStatus.NOT_FOUND,
                error=f"Function '{name}' is not registered"
            )

        if not isinstance(arguments, Mapping):
            return ToolResult(
                tool_name=name,
                status=ToolResultStatus.ERROR,
                error="Function arguments must be a JSON object"
            )

        start = time.perf_counter()
        try:
            result = binding.implementation(*arguments.values())
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning("Function failed", function=name, error=str(e), error_type=type(e).__name__)
            return ToolResult(
                tool_name=name,
                status=ToolResultStatus.ERROR,
                error=str(e),
                execution_time_ms=(time.perf_counter() - start) * 1000
            )

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("Function invoked", function=name, execution_time_ms=elapsed)

        return ToolResult(
            tool_name=name,
            status=ToolResultStatus.SUCCESS,
            value=result,
            execution_time_ms=elapsed
        )

    def clear(self) -> None:
        """Clear all registered functions."""
        self._bindings.clear()
        logger.warning("Function registry cleared")

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._bindings


def encode_function_result(result: ToolResult) -> str:
    """
    Encode a tool result as the payload sent back to the provider.

    Successful results become {"functionResult": value}; failures carry a
    null result and the error message.
    """
    if result.ok:
        payload: dict[str, Any] = {"functionResult": result.value}
    else:
        payload = {"functionResult": None, "error": result.error}
    return json.dumps(payload, default=str)


def unknown_function_result(name: str) -> str:
    """Payload reported for a call to an unregistered function."""
    return json.dumps({
        "functionResult": None,
        "error": f"Function '{name}' is not registered",
    })
