"""Function registry shared by the HTTP and realtime modes."""

from functions.registry import (
    FunctionBinding,
    FunctionRegistry,
    encode_function_result,
    unknown_function_result,
)

__all__ = [
    "FunctionBinding",
    "FunctionRegistry",
    "encode_function_result",
    "unknown_function_result",
]
