"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
from collections import Counter
from typing import Any, List, Optional, Sequence

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer

from smart_transaction.rpc import LedgerClient
from smart_transaction.types import (
    Cluster,
    CommitmentLevel,
    DraftMessage,
    LifetimeAnchor,
    SignedTransaction,
)


HANG = "hang"


# ============================================================================
# Fake Ledger Client
# ============================================================================

class FakeLedgerClient(LedgerClient):
    """
    In-memory LedgerClient.

    `submit_effects` and `confirm_effects` are consumed one per attempt. An
    entry may be None (succeed), an exception instance (raise it) or HANG
    (never complete). Once a list runs out, `default_confirm` applies.
    """

    def __init__(
        self,
        cluster: Cluster = Cluster.DEVNET,
        fee_samples: Optional[List[int]] = None,
        recommended_fee: int = 0,
        simulated_units: int = 1000,
        submit_effects: Optional[List[Any]] = None,
        confirm_effects: Optional[List[Any]] = None,
        default_confirm: Any = None,
    ):
        super().__init__(cluster)
        self.anchor = LifetimeAnchor(blockhash=Hash.new_unique(), last_valid_block_height=1_000)
        self.fee_samples = fee_samples if fee_samples is not None else []
        self.recommended_fee = recommended_fee
        self.simulated_units = simulated_units
        self.submit_effects = list(submit_effects or [])
        self.confirm_effects = list(confirm_effects or [])
        self.default_confirm = default_confirm

        self.calls: Counter = Counter()
        self.fee_queries: List[List[Pubkey]] = []
        self.simulated_drafts: List[DraftMessage] = []
        self.submitted: List[bytes] = []

        self.anchor_error: Optional[Exception] = None
        self.fee_error: Optional[Exception] = None
        self.simulate_error: Optional[Exception] = None
        self.simulate_delay: float = 0.0
        self.simulate_cancelled = False

    async def _apply(self, effect: Any) -> None:
        if effect is HANG:
            await asyncio.Event().wait()
        elif isinstance(effect, BaseException):
            raise effect

    async def get_latest_anchor(self, abort_signal=None) -> LifetimeAnchor:
        self.calls["get_latest_anchor"] += 1
        if self.anchor_error:
            raise self.anchor_error
        return self.anchor

    async def get_recent_priority_fees(self, accounts: Sequence[Pubkey], abort_signal=None) -> List[int]:
        self.calls["get_recent_priority_fees"] += 1
        self.fee_queries.append(list(accounts))
        if self.fee_error:
            raise self.fee_error
        return list(self.fee_samples)

    async def get_recommended_priority_fee(self, accounts: Sequence[Pubkey], abort_signal=None) -> int:
        self.calls["get_recommended_priority_fee"] += 1
        self.fee_queries.append(list(accounts))
        if self.fee_error:
            raise self.fee_error
        return self.recommended_fee

    async def simulate_compute_units(self, draft: DraftMessage, abort_signal=None) -> int:
        self.calls["simulate_compute_units"] += 1
        self.simulated_drafts.append(draft)
        try:
            if self.simulate_delay:
                await asyncio.sleep(self.simulate_delay)
        except asyncio.CancelledError:
            self.simulate_cancelled = True
            raise
        if self.simulate_error:
            raise self.simulate_error
        return self.simulated_units

    async def submit(
        self,
        transaction: SignedTransaction,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal=None,
    ) -> Signature:
        self.calls["submit"] += 1
        self.submitted.append(bytes(transaction))
        if self.submit_effects:
            await self._apply(self.submit_effects.pop(0))
        return transaction.signature

    async def await_confirmation(
        self,
        signature: Signature,
        anchor: LifetimeAnchor,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal=None,
    ) -> CommitmentLevel:
        self.calls["await_confirmation"] += 1
        effect = self.confirm_effects.pop(0) if self.confirm_effects else self.default_confirm
        await self._apply(effect)
        return commitment


# ============================================================================
# Test Data Generators
# ============================================================================

def writable_instruction(*accounts: Pubkey, program_id: Optional[Pubkey] = None) -> Instruction:
    """Instruction referencing every account as read-write."""
    return Instruction(
        program_id=program_id or Pubkey.new_unique(),
        data=b"\x01",
        accounts=[AccountMeta(pubkey=a, is_signer=False, is_writable=True) for a in accounts],
    )


def readonly_instruction(*accounts: Pubkey) -> Instruction:
    """Instruction referencing every account as read-only."""
    return Instruction(
        program_id=Pubkey.new_unique(),
        data=b"\x02",
        accounts=[AccountMeta(pubkey=a, is_signer=False, is_writable=False) for a in accounts],
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fee_payer() -> Keypair:
    return Keypair()


@pytest.fixture
def transfer_instruction(fee_payer) -> Instruction:
    return transfer(
        TransferParams(
            from_pubkey=fee_payer.pubkey(),
            to_pubkey=Pubkey.new_unique(),
            lamports=1_000_000,
        )
    )


@pytest.fixture
def fake_client() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def draft(fee_payer, fake_client, transfer_instruction) -> DraftMessage:
    return DraftMessage(
        fee_payer=fee_payer.pubkey(),
        anchor=fake_client.anchor,
    ).append_instructions([transfer_instruction])


@pytest.fixture
def signed_transaction(draft, fee_payer) -> SignedTransaction:
    return SignedTransaction.from_draft(draft.with_budget_instructions(5, 1100), [fee_payer])
