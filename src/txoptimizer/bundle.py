"""
TxOptimizer - Bundles

Builds bundles, submits them to the block engine with retry and
exponential backoff, and polls their status until they land or expire.

Example::

    from txoptimizer.bundle import BundleBuilder, BundleSubmitter, ConfirmationPoller
    from txoptimizer.http_transport import JsonRpcTransport
    from txoptimizer.types import Accepted

    relay = JsonRpcTransport("https://mainnet.block-engine.jito.wtf")
    bundle = BundleBuilder().add_transaction(tx1).add_transaction(tx2).build()

    result = await BundleSubmitter(relay).submit(bundle)
    if isinstance(result.status, Accepted):
        status = await ConfirmationPoller(relay).confirm(result.status.bundle_id, 30.0)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List

from .codec import GET_BUNDLE_STATUSES, SEND_BUNDLE, encode_bundle, parse_rpc_response
from .errors import OptimizerError
from .http_transport import JsonRpcTransport
from .types import (
    DEFAULT_TIP_LAMPORTS,
    MAX_BUNDLE_SIZE,
    Accepted,
    Bundle,
    BundleStatus,
    BundleSubmissionResult,
    Expired,
    Landed,
    Rejected,
)

logger = logging.getLogger("txoptimizer.bundle")

BUNDLES_PATH = "/api/v1/bundles"

# Relay error messages that will not succeed on retry.
TERMINAL_RELAY_ERRORS = ("already processed", "blockhash not found")

LANDED_CONFIRMATIONS = ("confirmed", "finalized")

MAX_RETRIES_EXCEEDED = "max retries exceeded"


class BundleBuilder:
    """Collects signed transactions, in execution order, into a Bundle."""

    def __init__(self, tip_lamports: int = DEFAULT_TIP_LAMPORTS) -> None:
        self._transactions: List[bytes] = []
        self._tip_lamports = tip_lamports

    def __len__(self) -> int:
        return len(self._transactions)

    @property
    def tip_lamports(self) -> int:
        return self._tip_lamports

    def add_transaction(self, tx: Any) -> BundleBuilder:
        """Add a signed transaction (bytes, or a solders transaction)."""
        if len(self._transactions) >= MAX_BUNDLE_SIZE:
            raise OptimizerError.invalid_bundle(
                f"Bundle already contains {len(self._transactions)} transactions "
                f"(max {MAX_BUNDLE_SIZE})"
            )
        self._transactions.append(bytes(tx))
        logger.debug(
            "Added transaction to bundle (size: %d/%d)",
            len(self._transactions), MAX_BUNDLE_SIZE,
        )
        return self

    def set_tip(self, lamports: int) -> BundleBuilder:
        if lamports < 0:
            raise OptimizerError.invalid_bundle("tip_lamports must be non-negative")
        self._tip_lamports = lamports
        logger.info("Bundle tip set to %d lamports (%s SOL)", lamports, lamports / 1e9)
        return self

    def build(self) -> Bundle:
        return Bundle(tuple(self._transactions), self._tip_lamports)

    def build_payload(self) -> Dict[str, Any]:
        """The ``sendBundle`` request for the current transactions."""
        return encode_bundle(self.build().transactions)


class BundleSubmitter:
    """Submits bundles with exponential backoff between attempts.

    Every attempt ends in exactly one of: accepted (return), terminal relay
    error (return ``Rejected``), or a retryable error (next attempt).
    """

    def __init__(
        self,
        transport: JsonRpcTransport,
        max_attempts: int = 3,
        base_delay: float = 0.1,
    ) -> None:
        if max_attempts < 1:
            raise OptimizerError.config("max_attempts must be at least 1")
        self._transport = transport
        self._max_attempts = max_attempts
        self._base_delay = base_delay

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt``: 0.1, 0.2, 0.4, ..."""
        return self._base_delay * 2 ** (attempt - 1)

    async def submit(self, bundle: Bundle) -> BundleSubmissionResult:
        payload = encode_bundle(bundle.transactions)
        start = time.monotonic()

        for attempt in range(1, self._max_attempts + 1):
            logger.info(
                "Submitting bundle of %d transactions (tip %d lamports), attempt %d/%d",
                len(bundle), bundle.tip_lamports, attempt, self._max_attempts,
            )

            try:
                bundle_id = await self._attempt(payload)
            except OptimizerError as e:
                if not e.retryable:
                    logger.warning("Bundle rejected: %s", e)
                    return _result(Rejected(str(e)), attempt, start)
                logger.warning("Bundle submission error (retryable): %s", e)
            else:
                logger.info("Bundle accepted: %s", bundle_id)
                return _result(Accepted(bundle_id), attempt, start)

            if attempt < self._max_attempts:
                delay = self.backoff_delay(attempt)
                logger.debug("Retrying in %dms", delay * 1000)
                await asyncio.sleep(delay)

        return _result(Rejected(MAX_RETRIES_EXCEEDED), self._max_attempts, start)

    async def _attempt(self, payload: Dict[str, Any]) -> str:
        """One round-trip. Returns the bundle id or raises OptimizerError."""
        status, body = await self._transport.post(BUNDLES_PATH, payload)
        if not isinstance(body, dict):
            raise OptimizerError.transport(f"HTTP {status}: malformed {SEND_BUNDLE} response")

        response = parse_rpc_response(body)
        if 200 <= status < 300 and isinstance(response.result, str):
            return response.result

        if response.error is not None:
            reason = response.error.message
            if _is_terminal(reason):
                raise OptimizerError.terminal_relay(reason)
            raise OptimizerError.relay(reason)

        raise OptimizerError.relay(f"HTTP {status}: no bundle id in response")


class ConfirmationPoller:
    """Polls ``getBundleStatuses`` until a bundle lands or a deadline passes."""

    def __init__(self, transport: JsonRpcTransport, poll_interval: float = 0.5) -> None:
        self._transport = transport
        self._poll_interval = poll_interval

    async def check_status(self, bundle_id: str) -> BundleStatus:
        """Query the relay once.

        Returns ``Landed`` for confirmed/finalized bundles, ``Accepted`` for
        any other reported state, and ``Expired`` when the relay has no
        record of the bundle.
        """
        result = await self._transport.call(
            GET_BUNDLE_STATUSES, [[bundle_id]], BUNDLES_PATH
        )

        statuses = result.get("value") if isinstance(result, dict) else None
        entry = statuses[0] if isinstance(statuses, list) and statuses else None
        if not isinstance(entry, dict):
            # TODO: pass the relay's "not found" distinction through once
            # getInflightBundleStatuses is queried alongside this call.
            return Expired(bundle_id)

        confirmation = entry.get("confirmation_status") or "unknown"
        if confirmation in LANDED_CONFIRMATIONS:
            slot = entry.get("slot")
            return Landed(bundle_id, slot if isinstance(slot, int) else 0)
        return Accepted(bundle_id)

    async def confirm(self, bundle_id: str, deadline: float) -> BundleStatus:
        """Poll until a terminal status or ``deadline`` seconds elapse.

        Query failures count as still pending. Timing out returns
        ``Expired``, which does not mean the bundle failed.
        """
        start = time.monotonic()
        polls = 0

        while True:
            remaining = deadline - (time.monotonic() - start)
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval, remaining))

            polls += 1
            try:
                status = await self.check_status(bundle_id)
            except OptimizerError as e:
                logger.warning("Error checking bundle status: %s", e)
                continue

            if isinstance(status, Landed):
                logger.info("Bundle %s landed in slot %d", bundle_id, status.slot)
                return status
            if status.is_terminal:
                logger.warning("Bundle %s %s", bundle_id, status.state.value)
                return status
            logger.debug("Bundle %s still pending...", bundle_id)

        logger.warning(
            "Bundle confirmation timed out after %dms (%d polls)", deadline * 1000, polls
        )
        return Expired(bundle_id)


def _is_terminal(reason: str) -> bool:
    lowered = reason.lower()
    return any(marker in lowered for marker in TERMINAL_RELAY_ERRORS)


def _result(status: BundleStatus, attempts: int, start: float) -> BundleSubmissionResult:
    return BundleSubmissionResult(
        status=status,
        attempts=attempts,
        elapsed_ms=int((time.monotonic() - start) * 1000),
    )
