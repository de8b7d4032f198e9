import asyncio
import logging
from typing import Optional

from .concurrency import run_abortable
from .exceptions import (
    ComputeUnitEstimationFailure,
    SimulationRejected,
    SmartTransactionError,
    parse_transaction_error,
    wrap_exception,
)
from .instructions import (
    InstructionKind,
    set_compute_unit_price_instruction,
)
from .interfaces import SimulationService
from .models import DraftTransaction

logger = logging.getLogger(__name__)

COMPUTE_UNIT_MARGIN_PERCENT = 10


def apply_compute_unit_margin(raw_units: int, margin_percent: int = COMPUTE_UNIT_MARGIN_PERCENT) -> int:
    """raw_units plus margin_percent, rounded up: 1000 -> 1100, 1001 -> 1102."""
    if raw_units < 0:
        raise ValueError(f"raw_units must be >= 0, got {raw_units}")
    return -(-raw_units * (100 + margin_percent) // 100)


def simulation_candidate(candidate: DraftTransaction) -> DraftTransaction:
    """
    The draft to simulate for a compute estimate.

    Metering only matches the real transaction when a SetComputeUnitPrice
    instruction is present, so a zero-price placeholder is appended to a copy
    when the draft has none.
    """
    if candidate.has_instruction_kind(InstructionKind.SET_COMPUTE_UNIT_PRICE):
        return candidate
    return candidate.with_appended([set_compute_unit_price_instruction(0)])


async def estimate_compute_units(
    simulator: SimulationService,
    candidate: DraftTransaction,
    abort_signal: Optional[asyncio.Event] = None,
) -> int:
    draft = simulation_candidate(candidate)

    try:
        outcome = await run_abortable(
            simulator.simulate(draft),
            abort_signal,
            "compute unit simulation",
        )
    except SmartTransactionError:
        raise
    except Exception as e:
        raise wrap_exception(
            e,
            ComputeUnitEstimationFailure,
            f"Transaction simulation failed: {e}",
        ) from e

    if outcome is None:
        raise ComputeUnitEstimationFailure("Empty simulation response")

    if not outcome.success:
        message, index, code, logs = parse_transaction_error(
            {"err": outcome.err, "logs": outcome.logs}
        )
        logger.warning("Simulation rejected transaction: %s", message)
        raise SimulationRejected(
            f"Simulation failed: {message}",
            instruction_index=index,
            program_error_code=code,
            program_error=str(outcome.err),
            logs=list(outcome.logs),
        )

    raw = outcome.units_consumed
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ComputeUnitEstimationFailure(
            f"Simulation returned no usable compute unit count: {raw!r}",
        )

    units = apply_compute_unit_margin(raw)
    logger.debug("Simulated %d CU, estimate with margin %d CU", raw, units)
    return units


class ComputeUnitEstimator:

    def __init__(self, simulator: SimulationService):
        self.simulator = simulator

    async def estimate(
        self,
        candidate: DraftTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> int:
        return await estimate_compute_units(self.simulator, candidate, abort_signal)


__all__ = [
    "COMPUTE_UNIT_MARGIN_PERCENT",
    "apply_compute_unit_margin",
    "simulation_candidate",
    "estimate_compute_units",
    "ComputeUnitEstimator",
]
