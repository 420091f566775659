"""
Errors raised while assembling and submitting a smart transaction.

Errors fall into three groups, each with its own code prefix:

    BUILD_*   the transaction could not be assembled, simulated or signed
    SUBMIT_*  the send-and-confirm loop ended without a confirmation
    RPC_*     the ledger endpoint was unreachable or answered with an error

Errors raised by a LedgerClient while fetching the anchor or estimating
fees and compute units reach the caller unchanged; nothing in the build
pipeline re-wraps them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class SmartTransactionError(Exception):
    """
    Root of the hierarchy.

    Attributes:
        message: Human-readable description
        error_code: Stable code for log filtering, e.g. "SUBMIT_003"
        context: Extra key/value pairs shown after the message
        rebuild_may_help: True when building a fresh transaction (new
            blockhash, new fee estimate) and submitting again could succeed
        raised_at: UTC time the error was created
    """
    message: str
    error_code: str = "SMART_TX"
    context: dict[str, Any] = field(default_factory=dict)
    rebuild_may_help: bool = False
    raised_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.describe())

    def describe(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.context:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.context.items()) + ")"
        return text

    def log_fields(self) -> dict[str, Any]:
        """Flat dict for structured log records."""
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "rebuild_may_help": self.rebuild_may_help,
            "raised_at": self.raised_at.isoformat(),
            **self.context,
        }

    def __str__(self) -> str:
        return self.describe()


@dataclass
class ConfigurationError(SmartTransactionError):
    """Missing or invalid endpoint, credentials or submission settings."""
    error_code: str = "CONFIG_001"


@dataclass
class OperationAbortedError(SmartTransactionError):
    """The abort signal fired while the operation was in flight."""
    error_code: str = "ABORT_001"


# =============================================================================
# BUILD
# =============================================================================

@dataclass
class TransactionError(SmartTransactionError):
    error_code: str = "BUILD_000"
    transaction_signature: Optional[str] = None


@dataclass
class TransactionBuildError(TransactionError):
    error_code: str = "BUILD_001"


@dataclass
class TransactionSignError(TransactionError):
    error_code: str = "BUILD_002"


@dataclass
class TransactionSimulationError(TransactionError):
    """Simulation reported an error or no compute unit figure."""
    error_code: str = "BUILD_003"
    simulation_logs: list[str] = field(default_factory=list)


# =============================================================================
# SUBMIT
# =============================================================================

@dataclass
class TransactionSendError(TransactionError):
    """The endpoint refused the signed bytes."""
    error_code: str = "SUBMIT_001"
    rpc_error_code: Optional[int] = None


@dataclass
class TransactionConfirmationError(TransactionError):
    """The transaction landed and failed on chain."""
    error_code: str = "SUBMIT_002"
    transaction_error: Optional[str] = None


@dataclass
class TransactionExpiredError(TransactionError):
    """Block height moved past the anchor's last valid block height."""
    error_code: str = "SUBMIT_003"
    rebuild_may_help: bool = True
    last_valid_block_height: Optional[int] = None


@dataclass
class TransactionAlreadyProcessedError(TransactionError):
    """An earlier send of the same bytes has already landed."""
    error_code: str = "SUBMIT_004"


@dataclass
class SubmissionOutcomeUnknownError(TransactionError):
    """Every attempt timed out. The transaction may still land."""
    error_code: str = "SUBMIT_005"
    rebuild_may_help: bool = True
    attempts: int = 0


@dataclass
class InvalidStateTransitionError(TransactionError):
    error_code: str = "SUBMIT_006"


# =============================================================================
# RPC
# =============================================================================

@dataclass
class RPCError(SmartTransactionError):
    error_code: str = "RPC_000"
    rebuild_may_help: bool = True
    rpc_endpoint: Optional[str] = None


@dataclass
class RPCConnectionError(RPCError):
    error_code: str = "RPC_001"


@dataclass
class RPCTimeoutError(RPCError):
    """A single HTTP request exceeded the client's request timeout."""
    error_code: str = "RPC_002"
    timeout_seconds: Optional[float] = None


@dataclass
class RPCResponseError(RPCError):
    """JSON-RPC error object, or a result that could not be decoded."""
    error_code: str = "RPC_003"
    rpc_error_code: Optional[int] = None
    rpc_error_message: Optional[str] = None


@dataclass
class RPCMethodNotFoundError(RPCError):
    """The endpoint (or the network variant) does not offer the method."""
    error_code: str = "RPC_004"
    rebuild_may_help: bool = False
    method_name: Optional[str] = None


@dataclass
class BlockhashNotFoundError(RPCError):
    error_code: str = "RPC_005"


ERROR_CODE_MAP: dict[str, type[SmartTransactionError]] = {
    cls.error_code: cls
    for cls in (
        ConfigurationError,
        OperationAbortedError,
        TransactionError,
        TransactionBuildError,
        TransactionSignError,
        TransactionSimulationError,
        TransactionSendError,
        TransactionConfirmationError,
        TransactionExpiredError,
        TransactionAlreadyProcessedError,
        SubmissionOutcomeUnknownError,
        InvalidStateTransitionError,
        RPCError,
        RPCConnectionError,
        RPCTimeoutError,
        RPCResponseError,
        RPCMethodNotFoundError,
        BlockhashNotFoundError,
    )
}


def rebuild_may_help(error: BaseException) -> bool:
    """True if building and submitting a fresh transaction could get past `error`."""
    return isinstance(error, SmartTransactionError) and error.rebuild_may_help


def wrap_exception(
    cause: BaseException,
    wrapper_class: type[SmartTransactionError],
    message: Optional[str] = None,
    **kwargs: Any
) -> SmartTransactionError:
    """Re-express a third-party exception as one of ours, keeping its type and text in context."""
    context = {"cause": type(cause).__name__, **kwargs.pop("context", {})}
    return wrapper_class(message=message or str(cause), context=context, **kwargs)


__all__ = [
    "SmartTransactionError",
    "ConfigurationError",
    "OperationAbortedError",
    "TransactionError",
    "TransactionBuildError",
    "TransactionSignError",
    "TransactionSimulationError",
    "TransactionSendError",
    "TransactionConfirmationError",
    "TransactionExpiredError",
    "TransactionAlreadyProcessedError",
    "SubmissionOutcomeUnknownError",
    "InvalidStateTransitionError",
    "RPCError",
    "RPCConnectionError",
    "RPCTimeoutError",
    "RPCResponseError",
    "RPCMethodNotFoundError",
    "BlockhashNotFoundError",
    "ERROR_CODE_MAP",
    "rebuild_may_help",
    "wrap_exception",
]
