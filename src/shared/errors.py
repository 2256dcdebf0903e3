"""Error taxonomy for Function Control.

None of these terminate the host process; each is fatal only to the call
that raised it.
"""

from typing import Optional


class FunctionControlError(Exception):
    """Base exception for Function Control errors."""
    pass


class ValidationError(FunctionControlError):
    """A function descriptor failed schema validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Invalid function descriptor: {'; '.join(errors)}")


class ConfigurationError(FunctionControlError):
    """A required credential or provider setting is missing."""
    pass


class ProviderError(FunctionControlError):
    """The completion provider failed or returned a non-success response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ProtocolError(FunctionControlError):
    """An inbound event could not be understood."""
    pass
