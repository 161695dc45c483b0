"""
TxOptimizer - Priority fee estimation

Samples ``getRecentPrioritizationFees`` from the ledger RPC and turns the
samples into a percentile-based fee recommendation.

Example::

    from txoptimizer.http_transport import JsonRpcTransport
    from txoptimizer.priority_fee import FeeSampler, PriorityFeeEstimator
    from txoptimizer.types import FeeStrategy

    rpc = JsonRpcTransport("https://api.mainnet-beta.solana.com")
    estimator = PriorityFeeEstimator(FeeSampler(rpc))
    estimate = await estimator.estimate(FeeStrategy.FAST)
    print(f"Recommended fee: {estimate.recommended_fee} microlamports/CU")
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Sequence, Union

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .codec import GET_RECENT_PRIORITIZATION_FEES
from .errors import OptimizerError
from .http_transport import JsonRpcTransport
from .types import FeeEstimate, FeePercentiles, FeeSample, FeeStrategy

logger = logging.getLogger("txoptimizer.priority_fee")

# Recommended fee when no recent fee data is available (microlamports/CU).
DEFAULT_PRIORITY_FEE_MICROLAMPORTS = 10_000

# Default compute unit limit for a standard transaction.
DEFAULT_COMPUTE_UNIT_LIMIT = 200_000

Account = Union[Pubkey, str]


class FeeSampler:
    """Fetches recent per-slot prioritization fees from the ledger RPC."""

    def __init__(self, transport: JsonRpcTransport) -> None:
        self._transport = transport

    async def fetch_fee_samples(
        self, scoped_accounts: Optional[Sequence[Account]] = None
    ) -> List[FeeSample]:
        """One sample per recent slot, including zero-fee slots.

        With ``scoped_accounts`` only transactions writing to those accounts
        are considered, which gives program-specific fee levels.
        """
        params: List[Any] = []
        if scoped_accounts:
            params = [[str(account) for account in scoped_accounts]]

        result = await self._transport.call(GET_RECENT_PRIORITIZATION_FEES, params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise OptimizerError.protocol(
                f"{GET_RECENT_PRIORITIZATION_FEES} returned {type(result).__name__}, expected list"
            )
        return [_parse_sample(entry) for entry in result]

    async def fetch_samples(
        self, scoped_accounts: Optional[Sequence[Account]] = None
    ) -> List[int]:
        """Non-zero fees only; slots without priority competition carry no signal."""
        samples = await self.fetch_fee_samples(scoped_accounts)
        fees = [s.fee for s in samples if s.fee > 0]
        logger.info("Collected %d non-zero fee samples from %d slots", len(fees), len(samples))
        return fees


def percentile(sorted_fees: Sequence[int], pct: int) -> int:
    """Nearest-rank percentile of an ascending sequence.

    The rank ``pct/100 * (n-1)`` is rounded up using exact integer
    arithmetic, so a half rank always rounds up (never to even) and
    ``[100, 200, ..., 1000]`` gives p50 = 600 and p90 = 1000.
    This is not ``round``: any fractional rank moves up, so p25 on that
    input is 400 where rounding to nearest would give 300.
    Returns 0 for an empty sequence.
    """
    if not sorted_fees:
        return 0
    last = len(sorted_fees) - 1
    index = -(-pct * last // 100)
    return sorted_fees[max(0, min(index, last))]


def compute_percentiles(sorted_fees: Sequence[int]) -> FeePercentiles:
    if not sorted_fees:
        return FeePercentiles()
    return FeePercentiles(
        p25=percentile(sorted_fees, 25),
        p50=percentile(sorted_fees, 50),
        p75=percentile(sorted_fees, 75),
        p90=percentile(sorted_fees, 90),
        max=sorted_fees[-1],
    )


def compute_estimate(strategy: FeeStrategy, samples: Sequence[int]) -> FeeEstimate:
    """Recommend a fee for ``strategy`` from raw (unsorted) fee samples."""
    if not samples:
        logger.warning("No recent priority fee data found, using default fallback")
        return FeeEstimate(
            recommended_fee=DEFAULT_PRIORITY_FEE_MICROLAMPORTS,
            strategy=strategy,
            slots_sampled=0,
            percentiles=FeePercentiles(),
        )

    fees = sorted(samples)
    estimate = FeeEstimate(
        recommended_fee=percentile(fees, strategy.percentile),
        strategy=strategy,
        slots_sampled=len(fees),
        percentiles=compute_percentiles(fees),
    )
    logger.info(
        "Fee estimation complete: strategy=%s recommended_fee=%d slots_sampled=%d",
        strategy.label, estimate.recommended_fee, estimate.slots_sampled,
    )
    return estimate


def apply_buffer(estimate: FeeEstimate, multiplier: float) -> FeeEstimate:
    """Scale only ``recommended_fee``; percentiles keep the observed values."""
    if not math.isfinite(multiplier) or multiplier < 0:
        raise OptimizerError.config(
            f"buffer multiplier must be a non-negative number, got {multiplier}"
        )
    buffered = int(estimate.recommended_fee * multiplier)
    logger.debug(
        "Applied %sx buffer: %d -> %d microlamports/CU",
        multiplier, estimate.recommended_fee, buffered,
    )
    return FeeEstimate(
        recommended_fee=buffered,
        strategy=estimate.strategy,
        slots_sampled=estimate.slots_sampled,
        percentiles=estimate.percentiles,
    )


class PriorityFeeEstimator:
    """Estimates priority fees from fresh samples on every call."""

    def __init__(
        self, sampler: FeeSampler, scoped_accounts: Sequence[Account] = ()
    ) -> None:
        self._sampler = sampler
        self._scoped_accounts = tuple(scoped_accounts)

    @property
    def scoped_accounts(self) -> Sequence[Account]:
        return self._scoped_accounts

    def with_scoped_accounts(self, accounts: Sequence[Account]) -> PriorityFeeEstimator:
        """Estimator limited to fees paid by transactions touching ``accounts``.

        Pass e.g. a DEX program id to get swap-specific fee levels.
        """
        return PriorityFeeEstimator(self._sampler, accounts)

    async def estimate(self, strategy: FeeStrategy) -> FeeEstimate:
        samples = await self._sampler.fetch_samples(self._scoped_accounts)
        return compute_estimate(strategy, samples)

    async def estimate_with_buffer(
        self, strategy: FeeStrategy, multiplier: float
    ) -> FeeEstimate:
        """Estimate, then add a safety margin for fast-rising fees."""
        return apply_buffer(await self.estimate(strategy), multiplier)


def build_priority_fee_instruction(microlamports_per_cu: int) -> Instruction:
    """``SetComputeUnitPrice`` instruction to prepend to a transaction."""
    return set_compute_unit_price(microlamports_per_cu)


def build_compute_unit_limit_instruction(units: int = DEFAULT_COMPUTE_UNIT_LIMIT) -> Instruction:
    """``SetComputeUnitLimit`` instruction; priority fee = CU price * CU limit."""
    return set_compute_unit_limit(units)


def _parse_sample(entry: Any) -> FeeSample:
    if not isinstance(entry, dict):
        raise OptimizerError.protocol(f"Malformed fee entry: {entry!r}")
    slot = entry.get("slot")
    fee = entry.get("prioritizationFee")
    if not isinstance(slot, int) or not isinstance(fee, int) or fee < 0:
        raise OptimizerError.protocol(f"Malformed fee entry: {entry!r}")
    return FeeSample(slot=slot, fee=fee)
