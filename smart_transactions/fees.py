"""
Priority fee estimation.

Two sources are supported:

- provider-native: a single ``getPriorityFeeEstimate`` call asking for the
  recommended value for the transaction's writable accounts;
- fallback: the median of recent non-zero prioritization fees for the same
  accounts, as reported by ``getRecentPrioritizationFees``.

The median is the element at index ``len // 2`` of the ascending samples,
even-sized sets included (``[1, 3, 5, 9] -> 5``). Zero fees are dropped
before sorting; if nothing is left the estimate is 0.
"""

import asyncio
import logging
import math
from typing import Iterable, List, Optional

from .concurrency import run_abortable
from .exceptions import FeeEstimationFailure, SmartTransactionError, wrap_exception
from .interfaces import FeeSampleService
from .models import DraftTransaction

logger = logging.getLogger(__name__)


def _validate_sample(sample) -> int:
    if isinstance(sample, bool) or not isinstance(sample, int):
        raise FeeEstimationFailure(
            f"Malformed prioritization fee sample: {sample!r}",
        )
    if sample < 0:
        raise FeeEstimationFailure(f"Negative prioritization fee sample: {sample}")
    return sample


def median_fee(samples: Iterable[int]) -> int:
    """Median of the non-zero samples, or 0 when there are none."""
    fees = [fee for fee in (_validate_sample(s) for s in samples) if fee > 0]

    if not fees:
        return 0

    fees.sort()
    return fees[len(fees) // 2]


def _normalize_native_estimate(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FeeEstimationFailure(f"Malformed priority fee estimate: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise FeeEstimationFailure(f"Malformed priority fee estimate: {value!r}")
    if value < 0:
        raise FeeEstimationFailure(f"Negative priority fee estimate: {value}")
    return int(math.ceil(value))


async def estimate_priority_fee(
    service: FeeSampleService,
    candidate: DraftTransaction,
    supports_native_estimate: bool,
    abort_signal: Optional[asyncio.Event] = None,
) -> int:
    if not candidate.instructions:
        raise FeeEstimationFailure("Cannot estimate a priority fee for a transaction without instructions")

    accounts = candidate.writable_accounts()

    try:
        if supports_native_estimate:
            value = await run_abortable(
                service.get_priority_fee_estimate(accounts),
                abort_signal,
                "priority fee estimate",
            )
            fee = _normalize_native_estimate(value)
            logger.debug("Provider priority fee estimate for %d accounts: %d", len(accounts), fee)
            return fee

        samples: List[int] = await run_abortable(
            service.get_recent_prioritization_fees(accounts),
            abort_signal,
            "recent prioritization fees",
        )
        if samples is None:
            raise FeeEstimationFailure("Empty prioritization fee response")

        fee = median_fee(samples)
        logger.debug(
            "Median priority fee over %d samples for %d accounts: %d",
            len(samples),
            len(accounts),
            fee,
        )
        return fee

    except SmartTransactionError:
        raise
    except Exception as e:
        raise wrap_exception(
            e,
            FeeEstimationFailure,
            f"Priority fee estimation failed: {e}",
            account_count=len(accounts),
        ) from e


class PriorityFeeEstimator:

    def __init__(self, service: FeeSampleService, supports_native_estimate: bool = False):
        self.service = service
        self.supports_native_estimate = supports_native_estimate

    async def estimate(
        self,
        candidate: DraftTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> int:
        return await estimate_priority_fee(
            self.service,
            candidate,
            self.supports_native_estimate,
            abort_signal,
        )


__all__ = ["median_fee", "estimate_priority_fee", "PriorityFeeEstimator"]
