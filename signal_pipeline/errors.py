# signal_pipeline/errors.py


class PipelineError(Exception):
    """Base class for every error raised by the signal pipeline."""


class ConfigError(PipelineError):
    """Misconfiguration detected at startup. The process must not start."""


class TransientUpstreamError(PipelineError):
    """Rate limit or network failure from the market data source. Retryable."""


class ValidationFailure(PipelineError):
    """A value failed a bounds or consistency check. Never retried."""


class InvalidExecutionParams(ValidationFailure):
    pass


class CooldownActive(PipelineError):
    """The engine-wide execution cooldown has not elapsed yet."""

    def __init__(self, remaining_seconds: float):
        super().__init__(f"Trade execution cooldown in effect ({remaining_seconds:.1f}s remaining)")
        self.remaining_seconds = remaining_seconds


class ConflictingOrder(PipelineError):
    """An unfinished order already exists for this asset."""

    def __init__(self, asset_address: str, status):
        super().__init__(f"Active order exists for {asset_address} ({status.value})")
        self.asset_address = asset_address
        self.status = status


class OrderSubmissionFailed(PipelineError):
    pass


class InvalidOrderTransition(PipelineError):
    pass


class PersistenceFailure(PipelineError):
    """Store or load error from the persistence collaborator."""
