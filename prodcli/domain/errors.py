"""Exception hierarchy shared by the dispatcher, configuration and CLI layers."""

from typing import Any, Optional


class ProdCliError(Exception):
    """Base class for errors surfaced to prodcli callers."""


class ConfigError(ProdCliError):
    """Raised when required configuration is missing or a configured value is malformed."""

    @classmethod
    def missing(cls, key: str, env_var: str) -> "ConfigError":
        return cls(
            f"{key} not configured. Set it in ~/.prodcli/config.yaml, "
            f"a .env file, or the {env_var} environment variable."
        )


class ApiError(ProdCliError):
    """A non-successful response (or transport failure) from the remote API."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        endpoint: Optional[str] = None,
        body: Any = None,
        attempts: int = 1,
    ):
        self.status = status
        self.endpoint = endpoint
        self.body = body
        self.attempts = attempts
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.attempts > 1:
            return f"{message} (after {self.attempts} attempts)"
        return message

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class MaxRetryError(ProdCliError):
    """Exception raised when max retries are exceeded."""

    def __init__(self, endpoint: str, attempts: int, original_exception: Exception):
        self.endpoint = endpoint
        self.attempts = attempts
        self.original_exception = original_exception
        # The attempt count is already in this message
        last_error = original_exception.args[0] if original_exception.args else original_exception
        super().__init__(
            f"Request to {endpoint} failed after {attempts} attempt(s). "
            f"Last error: {last_error}"
        )
