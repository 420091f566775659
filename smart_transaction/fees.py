"""
Priority fee estimation.

Which strategy a client uses depends on the network variant it was built
for. Devnet has no fee recommendation service, so fees there come from the
median of recently paid per-account prioritization fees. Mainnet asks the
provider's recommendation endpoint directly.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Type

from solders.pubkey import Pubkey

from .cancellation import AbortSignal
from .types import Cluster, DraftMessage

if TYPE_CHECKING:
    from .rpc import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE = 0


def lower_median_fee(samples: Sequence[int], default: int = DEFAULT_PRIORITY_FEE) -> int:
    """
    Lower median of the non-zero samples.

    A zero sample means no contention was observed for that slot, so zeros
    are discarded rather than pulling the median down.
    """
    fees = sorted(fee for fee in samples if fee > 0)
    if not fees:
        return default
    return fees[len(fees) // 2]


class PriorityFeeStrategy(ABC):
    """Capability interface for turning an account set into a fee rate."""

    @abstractmethod
    async def estimate(
        self,
        client: "LedgerClient",
        accounts: List[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        pass


class HistoricalMedianFeeStrategy(PriorityFeeStrategy):

    def __init__(self, default_fee: int = DEFAULT_PRIORITY_FEE):
        self.default_fee = default_fee

    async def estimate(
        self,
        client: "LedgerClient",
        accounts: List[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        samples = await client.get_recent_priority_fees(accounts, abort_signal=abort_signal)
        fee = lower_median_fee(samples, self.default_fee)
        logger.debug(f"Median priority fee over {len(samples)} samples: {fee}")
        return fee


class RecommendedFeeStrategy(PriorityFeeStrategy):

    async def estimate(
        self,
        client: "LedgerClient",
        accounts: List[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        fee = await client.get_recommended_priority_fee(accounts, abort_signal=abort_signal)
        logger.debug(f"Recommended priority fee: {fee}")
        return fee


FEE_STRATEGIES: Dict[Cluster, Type[PriorityFeeStrategy]] = {
    Cluster.DEVNET: HistoricalMedianFeeStrategy,
    Cluster.MAINNET: RecommendedFeeStrategy,
}


def fee_strategy_for_cluster(cluster: Cluster) -> PriorityFeeStrategy:
    return FEE_STRATEGIES[Cluster(cluster)]()


async def estimate_priority_fee(
    client: "LedgerClient",
    draft: DraftMessage,
    abort_signal: Optional[AbortSignal] = None,
) -> int:
    """
    Estimate a priority fee (micro-lamports per compute unit) for a draft.

    Only writable accounts are considered since read-only accounts do not
    contend for write locks. Errors from the client are not retried.
    """
    accounts = draft.writable_accounts()
    return await client.fee_strategy.estimate(client, accounts, abort_signal=abort_signal)


__all__ = [
    "DEFAULT_PRIORITY_FEE",
    "lower_median_fee",
    "PriorityFeeStrategy",
    "HistoricalMedianFeeStrategy",
    "RecommendedFeeStrategy",
    "FEE_STRATEGIES",
    "fee_strategy_for_cluster",
    "estimate_priority_fee",
]
