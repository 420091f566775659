import asyncio
import logging
from decimal import Decimal
from typing import Optional, Sequence, Tuple, Union

from solders.instruction import Instruction
from solders.keypair import Keypair

from .cancellation import AbortSignal, raise_if_aborted
from .compute import DEFAULT_COMPUTE_UNIT_MARGIN, estimate_compute_units
from .config import SubmissionSettings
from .exceptions import TransactionBuildError, TransactionSignError
from .fees import estimate_priority_fee
from .rpc import LedgerClient
from .types import DraftMessage, SignedTransaction

logger = logging.getLogger(__name__)


def sign_draft(draft: DraftMessage, fee_payer: Keypair) -> SignedTransaction:
    try:
        return SignedTransaction.from_draft(draft, [fee_payer])
    except Exception as e:
        raise TransactionSignError(f"Failed to sign transaction: {e}") from e


class SmartTransactionBuilder:
    """
    Turns caller instructions into a priced, budgeted, signed transaction.

    Fee and compute estimation run concurrently against the same draft. The
    budget instructions are appended only after both have finished, since
    appending them earlier would change what the simulation measures.
    """

    def __init__(
        self,
        client: LedgerClient,
        compute_unit_margin: Union[Decimal, str] = DEFAULT_COMPUTE_UNIT_MARGIN,
    ):
        self.client = client
        self.compute_unit_margin = compute_unit_margin

    @classmethod
    def from_settings(cls, client: LedgerClient, settings: SubmissionSettings) -> "SmartTransactionBuilder":
        return cls(client, compute_unit_margin=settings.compute_unit_margin)

    async def create_draft(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Keypair,
        abort_signal: Optional[AbortSignal] = None,
    ) -> DraftMessage:
        if not instructions:
            raise TransactionBuildError("No instructions added to transaction.")
        raise_if_aborted(abort_signal)

        anchor = await self.client.get_latest_anchor(abort_signal=abort_signal)
        return DraftMessage(fee_payer=fee_payer.pubkey(), anchor=anchor).append_instructions(instructions)

    async def estimate(
        self,
        draft: DraftMessage,
        abort_signal: Optional[AbortSignal] = None,
    ) -> Tuple[int, int]:
        """Return (priority fee, compute unit limit) for the draft."""
        fee_task = asyncio.ensure_future(
            estimate_priority_fee(self.client, draft, abort_signal=abort_signal)
        )
        compute_task = asyncio.ensure_future(
            estimate_compute_units(
                self.client,
                draft,
                margin=self.compute_unit_margin,
                abort_signal=abort_signal,
            )
        )
        try:
            priority_fee, compute_units = await asyncio.gather(fee_task, compute_task)
        except BaseException:
            fee_task.cancel()
            compute_task.cancel()
            raise
        return priority_fee, compute_units

    async def build(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Keypair,
        abort_signal: Optional[AbortSignal] = None,
    ) -> SignedTransaction:
        draft = await self.create_draft(instructions, fee_payer, abort_signal)
        priority_fee, compute_units = await self.estimate(draft, abort_signal)
        raise_if_aborted(abort_signal)

        draft = draft.with_budget_instructions(priority_fee, compute_units)
        transaction = sign_draft(draft, fee_payer)
        logger.info(
            f"Built transaction {transaction.signature} "
            f"(priority fee {priority_fee} micro-lamports/CU, limit {compute_units} CU)"
        )
        return transaction


async def create_smart_transaction(
    client: LedgerClient,
    instructions: Sequence[Instruction],
    fee_payer: Keypair,
    abort_signal: Optional[AbortSignal] = None,
    compute_unit_margin: Union[Decimal, str] = DEFAULT_COMPUTE_UNIT_MARGIN,
) -> SignedTransaction:
    builder = SmartTransactionBuilder(client, compute_unit_margin=compute_unit_margin)
    return await builder.build(instructions, fee_payer, abort_signal=abort_signal)


__all__ = [
    "sign_draft",
    "SmartTransactionBuilder",
    "create_smart_transaction",
]
