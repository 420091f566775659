import logging
import math
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Union

from .cancellation import AbortSignal
from .instructions import create_set_compute_unit_price_instruction
from .types import DraftMessage

if TYPE_CHECKING:
    from .rpc import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_COMPUTE_UNIT_MARGIN = Decimal("1.1")


def apply_compute_unit_margin(units: int, margin: Union[Decimal, str, float] = DEFAULT_COMPUTE_UNIT_MARGIN) -> int:
    return math.ceil(Decimal(units) * Decimal(str(margin)))


async def estimate_compute_units(
    client: "LedgerClient",
    draft: DraftMessage,
    margin: Union[Decimal, str, float] = DEFAULT_COMPUTE_UNIT_MARGIN,
    abort_signal: Optional[AbortSignal] = None,
) -> int:
    """
    Simulate the draft and return its compute unit cost scaled by `margin`.

    The final transaction carries a set-price instruction which itself costs
    compute units, so a zero-price placeholder is simulated alongside the
    draft when it has none. The draft passed in is left untouched.
    """
    to_simulate = draft
    if not draft.has_compute_unit_price():
        to_simulate = draft.append_instructions([create_set_compute_unit_price_instruction(0)])

    consumed = await client.simulate_compute_units(to_simulate, abort_signal=abort_signal)
    units = apply_compute_unit_margin(consumed, margin)
    logger.debug(f"Simulation consumed {consumed} CU, limit set to {units}")
    return units


__all__ = [
    "DEFAULT_COMPUTE_UNIT_MARGIN",
    "apply_compute_unit_margin",
    "estimate_compute_units",
]
