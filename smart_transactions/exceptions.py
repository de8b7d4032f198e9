"""
Exception hierarchy for the smart transaction pipeline.

Every failure the pipeline can surface is one of the classes below, so callers
can branch on type instead of parsing messages.

Each exception includes:
- Unique error code for logging and debugging
- Descriptive message
- Optional context dictionary for additional debugging info
- is_recoverable flag indicating if the whole operation can be retried
- retry_after for throttled operations

Transaction errors raised after a send was attempted additionally report
whether the signed bytes may have reached the network, so callers can avoid
blindly re-submitting a *new* transaction for an ambiguous outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from datetime import datetime, timezone


# =============================================================================
# BASE EXCEPTIONS
# =============================================================================

@dataclass
class SmartTransactionError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        error_code: Unique identifier for the error type (e.g., "TX_005")
        context: Optional dictionary with debugging information
        is_recoverable: Whether the caller may retry the whole operation
        retry_after: Seconds to wait before retry
        timestamp: When the error occurred
    """
    message: str
    error_code: str = "GENERAL_001"
    context: dict[str, Any] = field(default_factory=dict)
    is_recoverable: bool = False
    retry_after: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        """Initialize the exception with the formatted message."""
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message with code and context."""
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" | Context: {context_str}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "is_recoverable": self.is_recoverable,
            "retry_after": self.retry_after,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return self.format_message()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"is_recoverable={self.is_recoverable})"
        )


@dataclass
class ConfigurationError(SmartTransactionError):
    """Invalid pipeline configuration or unknown cluster."""
    error_code: str = "CONFIG_001"
    is_recoverable: bool = False


# =============================================================================
# ESTIMATION EXCEPTIONS
# =============================================================================

@dataclass
class EstimationFailure(SmartTransactionError):
    """A cost estimation call failed or returned malformed data."""
    error_code: str = "EST_000"
    is_recoverable: bool = True


@dataclass
class FeeEstimationFailure(EstimationFailure):
    """Priority fee estimation failed."""
    error_code: str = "EST_001"
    account_count: Optional[int] = None


@dataclass
class ComputeUnitEstimationFailure(EstimationFailure):
    """Compute unit estimation failed for a reason other than the program rejecting."""
    error_code: str = "EST_002"


# =============================================================================
# TRANSACTION EXCEPTIONS
# =============================================================================

@dataclass
class TransactionError(SmartTransactionError):
    """Base exception for transaction-related errors."""
    error_code: str = "TX_000"
    transaction_signature: Optional[str] = None
    may_have_reached_network: bool = False
    attempts: list[Any] = field(default_factory=list)
    final_state: Optional[Any] = None


@dataclass
class TransactionBuildError(TransactionError):
    """Draft transaction could not be assembled."""
    error_code: str = "TX_001"
    is_recoverable: bool = False


@dataclass
class TransactionSignError(TransactionError):
    """Signer could not produce the required signatures."""
    error_code: str = "TX_002"
    is_recoverable: bool = False


@dataclass
class ConfirmationTimeoutError(TransactionError):
    """Wall-clock confirmation budget ran out before the commitment was reached."""
    error_code: str = "TX_004"
    is_recoverable: bool = False
    confirmation_timeout: Optional[float] = None


@dataclass
class SimulationRejected(TransactionError):
    """The instructions fail when executed; never retried."""
    error_code: str = "TX_005"
    is_recoverable: bool = False
    instruction_index: Optional[int] = None
    program_error_code: Optional[int] = None
    program_error: Optional[str] = None
    logs: list[str] = field(default_factory=list)


@dataclass
class LifetimeExpired(TransactionError):
    """
    The blockhash aged out before confirmation.

    Terminal for the current signed bytes: the caller has to assemble again
    with a fresh checkpoint and submit it as a new transaction.
    """
    error_code: str = "TX_006"
    is_recoverable: bool = False
    last_valid_block_height: Optional[int] = None
    current_block_height: Optional[int] = None


@dataclass
class SubmissionFailed(TransactionError):
    """Client-side retries were exhausted."""
    error_code: str = "TX_010"
    is_recoverable: bool = False
    last_error: Optional[BaseException] = None


@dataclass
class Cancelled(TransactionError):
    """The caller's abort signal fired."""
    error_code: str = "TX_011"
    is_recoverable: bool = False


# =============================================================================
# NETWORK EXCEPTIONS
# =============================================================================

@dataclass
class TransportTransient(TransactionError):
    """Network or timeout failure while sending or polling; safe to resend the same bytes."""
    error_code: str = "NET_001"
    is_recoverable: bool = True
    rpc_endpoint: Optional[str] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SmartTransactionError):
        return error.is_recoverable
    return False


def wrap_exception(
    original: BaseException,
    wrapper_class: type[SmartTransactionError],
    message: Optional[str] = None,
    **kwargs: Any
) -> SmartTransactionError:
    """Wrap a generic exception in a SmartTransactionError subclass."""
    msg = message or str(original) or type(original).__name__
    context = kwargs.pop("context", {})
    context["original_error"] = type(original).__name__
    context["original_message"] = str(original)

    return wrapper_class(
        message=msg,
        context=context,
        **kwargs
    )


def parse_transaction_error(error_data: Any) -> tuple[str, Optional[int], Optional[int], list[str]]:
    """
    Decode an RPC transaction error payload.

    Accepts the ``err`` value of a simulation or status response, a full
    ``{"err": ..., "logs": [...]}`` dict, or a plain string.

    Returns:
        Tuple of (message, instruction_index, custom_error_code, logs)
    """
    logs: list[str] = []
    instruction_index = None
    error_code = None
    message = "Unknown error"

    if isinstance(error_data, dict):
        logs = list(error_data.get("logs") or [])
        err = error_data.get("err", error_data)

        if isinstance(err, dict) and "InstructionError" in err:
            idx, inner_err = err["InstructionError"]
            instruction_index = idx
            if isinstance(inner_err, dict):
                if "Custom" in inner_err:
                    error_code = inner_err["Custom"]
                    message = f"Instruction {idx} failed with custom error {error_code}"
                else:
                    error_type = next(iter(inner_err))
                    message = f"Instruction {idx} failed: {error_type}"
            else:
                message = f"Instruction {idx} failed: {inner_err}"
        elif isinstance(err, dict) and "message" in err:
            message = err["message"]
        elif err is not None:
            message = str(err)
    elif isinstance(error_data, str):
        message = error_data
    elif error_data is not None:
        message = str(error_data)

    return message, instruction_index, error_code, logs


# =============================================================================
# EXCEPTION MAPPING
# =============================================================================

ERROR_CODE_MAP: dict[str, type[SmartTransactionError]] = {
    "GENERAL_001": SmartTransactionError,
    "CONFIG_001": ConfigurationError,
    "EST_000": EstimationFailure,
    "EST_001": FeeEstimationFailure,
    "EST_002": ComputeUnitEstimationFailure,
    "TX_000": TransactionError,
    "TX_001": TransactionBuildError,
    "TX_002": TransactionSignError,
    "TX_004": ConfirmationTimeoutError,
    "TX_005": SimulationRejected,
    "TX_006": LifetimeExpired,
    "TX_010": SubmissionFailed,
    "TX_011": Cancelled,
    "NET_001": TransportTransient,
}


__all__ = [
    "SmartTransactionError", "ConfigurationError",
    "EstimationFailure", "FeeEstimationFailure", "ComputeUnitEstimationFailure",
    "TransactionError", "TransactionBuildError", "TransactionSignError",
    "ConfirmationTimeoutError", "SimulationRejected", "LifetimeExpired",
    "SubmissionFailed", "Cancelled", "TransportTransient",
    "is_retryable", "wrap_exception", "parse_transaction_error",
    "ERROR_CODE_MAP",
]
