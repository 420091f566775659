"""
Smart Transaction

Builds Solana transactions with an estimated priority fee and compute unit
limit, and submits them with a bounded send-and-confirm retry loop.
"""

__version__ = "1.0.0"

from .cancellation import AbortSignal, abortable, new_abort_signal
from .compute import estimate_compute_units
from .exceptions import (
    OperationAbortedError,
    SmartTransactionError,
    SubmissionOutcomeUnknownError,
    TransactionAlreadyProcessedError,
    TransactionBuildError,
)
from .fees import estimate_priority_fee
from .retry import (
    RetryingSubmitter,
    SubmissionOutcome,
    SubmissionResult,
    SubmissionState,
    send_transaction_with_retry,
)
from .rpc import (
    HeliusRpcClient,
    LedgerClient,
    create_client_from_settings,
    create_helius_devnet_client,
    create_helius_mainnet_client,
)
from .transaction import SmartTransactionBuilder, create_smart_transaction
from .types import Cluster, CommitmentLevel, DraftMessage, LifetimeAnchor, SignedTransaction

__all__ = [
    "AbortSignal",
    "abortable",
    "new_abort_signal",
    "estimate_compute_units",
    "estimate_priority_fee",
    "OperationAbortedError",
    "SmartTransactionError",
    "SubmissionOutcomeUnknownError",
    "TransactionAlreadyProcessedError",
    "TransactionBuildError",
    "RetryingSubmitter",
    "SubmissionOutcome",
    "SubmissionResult",
    "SubmissionState",
    "send_transaction_with_retry",
    "HeliusRpcClient",
    "LedgerClient",
    "create_client_from_settings",
    "create_helius_devnet_client",
    "create_helius_mainnet_client",
    "SmartTransactionBuilder",
    "create_smart_transaction",
    "Cluster",
    "CommitmentLevel",
    "DraftMessage",
    "LifetimeAnchor",
    "SignedTransaction",
]
