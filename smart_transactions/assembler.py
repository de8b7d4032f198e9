import logging
from typing import Sequence

from solders.pubkey import Pubkey

from .exceptions import TransactionBuildError
from .instructions import (
    MAX_U32,
    MAX_U64,
    InstructionLike,
    set_compute_unit_limit_instruction,
    set_compute_unit_price_instruction,
    tag_all,
)
from .models import Checkpoint, DraftTransaction

logger = logging.getLogger(__name__)


def assemble(
    payer: Pubkey,
    lifetime: Checkpoint,
    instructions: Sequence[InstructionLike],
) -> DraftTransaction:
    if payer is None:
        raise TransactionBuildError("Fee payer not set.")

    if lifetime is None:
        raise TransactionBuildError("Lifetime checkpoint not set. Fetch a recent blockhash first.")

    if not instructions:
        raise TransactionBuildError("No instructions added to transaction.")

    try:
        tagged = tag_all(instructions)
    except TypeError as e:
        raise TransactionBuildError(str(e)) from e

    return DraftTransaction(fee_payer=payer, lifetime=lifetime, instructions=tagged)


def append_budget_instructions(
    draft: DraftTransaction,
    fee: int,
    units: int,
) -> DraftTransaction:
    """
    Return a copy of ``draft`` with SetComputeUnitPrice(fee) and
    SetComputeUnitLimit(units) appended after the existing instructions.

    The budget instructions go at the tail, not the head.
    """
    if not 0 <= fee <= MAX_U64:
        raise TransactionBuildError(f"Priority fee out of range: {fee}")

    if not 0 <= units <= MAX_U32:
        raise TransactionBuildError(f"Compute unit limit out of range: {units}")

    logger.debug(
        "Appending budget instructions: %d micro-lamports/CU, %d CU limit",
        fee,
        units,
    )

    return draft.with_appended([
        set_compute_unit_price_instruction(fee),
        set_compute_unit_limit_instruction(units),
    ])


__all__ = ["assemble", "append_budget_instructions"]
