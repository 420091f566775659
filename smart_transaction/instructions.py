"""Compute Budget program instruction codec."""

import struct
from enum import IntEnum
from typing import Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

MAX_COMPUTE_UNIT_LIMIT = 1_400_000


class ComputeBudgetInstruction(IntEnum):
    SET_COMPUTE_UNIT_LIMIT = 2
    SET_COMPUTE_UNIT_PRICE = 3


def create_set_compute_unit_limit_instruction(units: int) -> Instruction:
    data = bytes([ComputeBudgetInstruction.SET_COMPUTE_UNIT_LIMIT]) + struct.pack("<I", units)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def create_set_compute_unit_price_instruction(micro_lamports: int) -> Instruction:
    data = bytes([ComputeBudgetInstruction.SET_COMPUTE_UNIT_PRICE]) + struct.pack("<Q", micro_lamports)
    return Instruction(
        program_id=COMPUTE_BUDGET_PROGRAM_ID,
        accounts=[],
        data=data
    )


def identify_compute_budget_instruction(instruction: Instruction) -> Optional[ComputeBudgetInstruction]:
    """Return the Compute Budget instruction kind, or None for any other instruction."""
    if instruction.program_id != COMPUTE_BUDGET_PROGRAM_ID:
        return None
    data = bytes(instruction.data)
    if not data:
        return None
    try:
        return ComputeBudgetInstruction(data[0])
    except ValueError:
        return None


def decode_compute_unit_price(instruction: Instruction) -> int:
    if identify_compute_budget_instruction(instruction) != ComputeBudgetInstruction.SET_COMPUTE_UNIT_PRICE:
        raise ValueError("not a SetComputeUnitPrice instruction")
    (micro_lamports,) = struct.unpack_from("<Q", bytes(instruction.data), 1)
    return micro_lamports


def decode_compute_unit_limit(instruction: Instruction) -> int:
    if identify_compute_budget_instruction(instruction) != ComputeBudgetInstruction.SET_COMPUTE_UNIT_LIMIT:
        raise ValueError("not a SetComputeUnitLimit instruction")
    (units,) = struct.unpack_from("<I", bytes(instruction.data), 1)
    return units


__all__ = [
    "COMPUTE_BUDGET_PROGRAM_ID",
    "MAX_COMPUTE_UNIT_LIMIT",
    "ComputeBudgetInstruction",
    "create_set_compute_unit_limit_instruction",
    "create_set_compute_unit_price_instruction",
    "identify_compute_budget_instruction",
    "decode_compute_unit_price",
    "decode_compute_unit_limit",
]
