"""
Value types shared by the estimation pipeline and the submitter.

A DraftMessage is frozen: every assembly step returns a new draft, so a
draft handed to an estimator is a stable snapshot of the instruction and
account set. A SignedTransaction holds the exact wire bytes produced at
signing time; the submitter resends those bytes unchanged on every attempt.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .instructions import (
    ComputeBudgetInstruction,
    create_set_compute_unit_limit_instruction,
    create_set_compute_unit_price_instruction,
    identify_compute_budget_instruction,
)


class CommitmentLevel(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def is_reached_by(self, status: "CommitmentLevel") -> bool:
        return status.rank >= self.rank


_COMMITMENT_RANK = {
    CommitmentLevel.PROCESSED: 0,
    CommitmentLevel.CONFIRMED: 1,
    CommitmentLevel.FINALIZED: 2,
}


class Cluster(str, Enum):
    """Network variant a client talks to. Fixed when the client is built."""
    DEVNET = "devnet"
    MAINNET = "mainnet"


@dataclass(frozen=True)
class LifetimeAnchor:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class DraftMessage:
    fee_payer: Pubkey
    anchor: LifetimeAnchor
    instructions: Tuple[Instruction, ...] = ()
    budget_injected: bool = False

    def append_instructions(self, instructions: Iterable[Instruction]) -> "DraftMessage":
        return replace(self, instructions=self.instructions + tuple(instructions))

    def writable_accounts(self) -> List[Pubkey]:
        """Read-write accounts across all instructions, de-duplicated in first-seen order."""
        seen = {}
        for ix in self.instructions:
            for meta in ix.accounts:
                if meta.is_writable:
                    seen.setdefault(meta.pubkey, None)
        return list(seen)

    def has_compute_unit_price(self) -> bool:
        return any(
            identify_compute_budget_instruction(ix) == ComputeBudgetInstruction.SET_COMPUTE_UNIT_PRICE
            for ix in self.instructions
        )

    def with_budget_instructions(self, micro_lamports: int, units: int) -> "DraftMessage":
        """Append set-price then set-limit. A draft that already carries them is returned as is."""
        if self.budget_injected:
            return self
        budget = (
            create_set_compute_unit_price_instruction(micro_lamports),
            create_set_compute_unit_limit_instruction(units),
        )
        return replace(
            self,
            instructions=self.instructions + budget,
            budget_injected=True,
        )

    def compile(self) -> MessageV0:
        return MessageV0.try_compile(
            payer=self.fee_payer,
            instructions=list(self.instructions),
            address_lookup_table_accounts=[],
            recent_blockhash=self.anchor.blockhash,
        )


@dataclass(frozen=True)
class SignedTransaction:
    transaction: VersionedTransaction
    anchor: LifetimeAnchor
    wire: bytes = field(repr=False)

    @classmethod
    def from_draft(cls, draft: DraftMessage, signers: Sequence[Keypair]) -> "SignedTransaction":
        transaction = VersionedTransaction(draft.compile(), list(signers))
        return cls(transaction=transaction, anchor=draft.anchor, wire=bytes(transaction))

    @property
    def signature(self) -> Signature:
        return self.transaction.signatures[0]

    def __bytes__(self) -> bytes:
        return self.wire


__all__ = [
    "CommitmentLevel",
    "Cluster",
    "LifetimeAnchor",
    "DraftMessage",
    "SignedTransaction",
]
