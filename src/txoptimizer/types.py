"""
TxOptimizer - Type definitions

Dataclasses and enums for bundles, bundle statuses and fee estimates.
Every value returned to callers serializes with ``to_dict()`` using the
same field names as the JSON output of the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .errors import OptimizerError

# Maximum number of transactions the relay executes atomically in one bundle.
MAX_BUNDLE_SIZE = 5

# Default tip in lamports (0.00001 SOL).
DEFAULT_TIP_LAMPORTS = 10_000


# =============================================================================
# Bundle
# =============================================================================


@dataclass(frozen=True)
class Bundle:
    """Ordered group of signed transactions, executed in insertion order."""

    transactions: Tuple[bytes, ...]
    tip_lamports: int = DEFAULT_TIP_LAMPORTS

    def __post_init__(self) -> None:
        if isinstance(self.transactions, (bytes, bytearray, str)):
            raise OptimizerError.invalid_bundle(
                "transactions must be a sequence of serialized transactions, "
                f"got a single {type(self.transactions).__name__}"
            )
        count = len(self.transactions)
        if count == 0:
            raise OptimizerError.invalid_bundle("Cannot build an empty bundle")
        if count > MAX_BUNDLE_SIZE:
            raise OptimizerError.invalid_bundle(
                f"Bundle contains {count} transactions (max {MAX_BUNDLE_SIZE})"
            )
        if self.tip_lamports < 0:
            raise OptimizerError.invalid_bundle("tip_lamports must be non-negative")
        # Accept lists from callers but store an immutable tuple.
        object.__setattr__(self, "transactions", tuple(bytes(tx) for tx in self.transactions))

    def __len__(self) -> int:
        return len(self.transactions)


class BundleState(str, Enum):
    PENDING = "pending"
    LANDED = "landed"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Accepted:
    """Relay acknowledged the bundle; inclusion not yet observed."""

    bundle_id: str

    @property
    def state(self) -> BundleState:
        return BundleState.PENDING

    @property
    def is_terminal(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {"Accepted": {"bundle_id": self.bundle_id}}


@dataclass(frozen=True)
class Landed:
    """Bundle confirmed on-chain in ``slot``."""

    bundle_id: str
    slot: int

    @property
    def state(self) -> BundleState:
        return BundleState.LANDED

    @property
    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"Landed": {"bundle_id": self.bundle_id, "slot": self.slot}}


@dataclass(frozen=True)
class Rejected:
    """Relay refused the bundle, or every submission attempt failed."""

    reason: str

    @property
    def state(self) -> BundleState:
        return BundleState.REJECTED

    @property
    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"Rejected": {"reason": self.reason}}


@dataclass(frozen=True)
class Expired:
    """No confirmation was observed before the deadline.

    This is ambiguous: the relay reports an unknown bundle the same way
    whether it was dropped or is not yet visible, so an expired bundle may
    still have landed. Callers must not read it as a confirmed failure.
    """

    bundle_id: str

    @property
    def state(self) -> BundleState:
        return BundleState.EXPIRED

    @property
    def is_terminal(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"Expired": {"bundle_id": self.bundle_id}}


BundleStatus = Union[Accepted, Landed, Rejected, Expired]


@dataclass(frozen=True)
class BundleSubmissionResult:
    """Outcome of a submission, with HTTP round-trips made and wall time."""

    status: BundleStatus
    attempts: int
    elapsed_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.to_dict(),
            "attempts": self.attempts,
            "elapsed_ms": self.elapsed_ms,
        }


# =============================================================================
# Priority Fees
# =============================================================================


class FeeStrategy(str, Enum):
    """Fee aggressiveness presets, each mapped to a target percentile."""

    ECONOMY = "Economy"
    STANDARD = "Standard"
    FAST = "Fast"
    TURBO = "Turbo"

    @property
    def percentile(self) -> int:
        return _STRATEGY_PERCENTILES[self]

    @property
    def label(self) -> str:
        return f"{self.value} (p{self.percentile})"

    @staticmethod
    def parse(name: str) -> FeeStrategy:
        for strategy in FeeStrategy:
            if strategy.value.lower() == name.strip().lower():
                return strategy
        raise OptimizerError.config(
            f"Unknown strategy '{name}'. Valid options: economy, standard, fast, turbo"
        )


_STRATEGY_PERCENTILES = {
    FeeStrategy.ECONOMY: 25,
    FeeStrategy.STANDARD: 50,
    FeeStrategy.FAST: 75,
    FeeStrategy.TURBO: 90,
}


@dataclass(frozen=True)
class FeeSample:
    slot: int
    fee: int


@dataclass(frozen=True)
class FeePercentiles:
    p25: int = 0
    p50: int = 0
    p75: int = 0
    p90: int = 0
    max: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "p25": self.p25,
            "p50": self.p50,
            "p75": self.p75,
            "p90": self.p90,
            "max": self.max,
        }


@dataclass(frozen=True)
class FeeEstimate:
    """Recommended priority fee in microlamports per compute unit."""

    recommended_fee: int
    strategy: FeeStrategy
    slots_sampled: int
    percentiles: FeePercentiles = field(default_factory=FeePercentiles)

    @property
    def is_fallback(self) -> bool:
        """True when no fee data was available and the default was used."""
        return self.slots_sampled == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommended_fee": self.recommended_fee,
            "strategy": self.strategy.value,
            "slots_sampled": self.slots_sampled,
            "percentiles": self.percentiles.to_dict(),
        }


# =============================================================================
# Signatures
# =============================================================================


@dataclass(frozen=True)
class SignatureStatus:
    """Ledger status of one transaction signature.

    ``err`` is the transaction error as reported by the RPC node, or None
    if the transaction executed successfully.
    """

    slot: int
    confirmation_status: Optional[str] = None
    err: Optional[Any] = None

    @property
    def succeeded(self) -> bool:
        return self.err is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot": self.slot,
            "confirmation_status": self.confirmation_status,
            "err": self.err,
        }


# =============================================================================
# JSON-RPC
# =============================================================================


@dataclass
class RpcError:
    """JSON-RPC error object."""
    code: int = 0
    message: str = ""
    data: Optional[Any] = None


@dataclass
class RpcResponse:
    """Decoded JSON-RPC 2.0 response envelope."""
    jsonrpc: str = "2.0"
    id: Any = 1
    result: Optional[Any] = None
    error: Optional[RpcError] = None
