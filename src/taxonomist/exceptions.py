"""Custom exceptions for Taxonomist."""


class TaxonomistError(Exception):
    """Base exception for all Taxonomist errors."""


class ConfigError(TaxonomistError):
    """Configuration-related errors."""


class LLMError(TaxonomistError):
    """LLM provider errors."""


class ProviderNotAvailableError(LLMError):
    """Raised when an LLM provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install taxonomist[{provider}]"
        )


class ContextOverflowError(LLMError):
    """The request exceeded the model's context or output length limits."""


class SchemaMismatchError(LLMError):
    """The streamed response never produced a value matching the schema."""


class PassError(TaxonomistError):
    """A pipeline pass failed. The original error is chained as ``__cause__``."""

    def __init__(self, pass_name: str, error: BaseException):
        self.pass_name = pass_name
        self.error = error
        super().__init__(f"[{pass_name}] {error}")
