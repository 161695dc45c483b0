"""
TxOptimizer - TxOptimizerClient

Main entry point. Talks JSON-RPC to a ledger RPC node for fee data and to
a Jito block engine for bundles.

Example::

    from txoptimizer import TxOptimizerClient, config_builder
    from txoptimizer.config import JITO_BLOCK_ENGINE_NY
    from txoptimizer.types import FeeStrategy

    config = config_builder().block_engine_url(JITO_BLOCK_ENGINE_NY).build()

    async with TxOptimizerClient(config) as client:
        estimate = await client.estimate_fee(FeeStrategy.FAST, buffer=1.2)

        bundle = client.new_bundle().add_transaction(tx1).add_transaction(tx2).build()
        result = await client.submit_and_confirm(bundle)
        print(result.to_dict())
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence

from solders.signature import Signature

from .bundle import BundleBuilder, BundleSubmitter, ConfirmationPoller
from .codec import GET_SIGNATURE_STATUSES, parse_signature_status
from .config import OptimizerConfig, validate
from .errors import OptimizerError
from .http_transport import JsonRpcTransport
from .priority_fee import Account, FeeSampler, PriorityFeeEstimator
from .types import (
    Accepted,
    Bundle,
    BundleStatus,
    BundleSubmissionResult,
    FeeEstimate,
    FeeStrategy,
    SignatureStatus,
)

logger = logging.getLogger("txoptimizer.client")


class TxOptimizerClient:
    """Fee estimation and bundle submission against one RPC and one relay."""

    def __init__(self, config: Optional[OptimizerConfig] = None) -> None:
        self._config = config or OptimizerConfig()
        validate(self._config)
        self._rpc = JsonRpcTransport(self._config.rpc_url, self._config.request_timeout)
        self._relay = JsonRpcTransport(
            self._config.block_engine_url, self._config.request_timeout
        )
        self._estimator = PriorityFeeEstimator(FeeSampler(self._rpc))
        self._submitter = BundleSubmitter(self._relay, self._config.max_retries)
        self._poller = ConfirmationPoller(self._relay, self._config.poll_interval)

    def config(self) -> OptimizerConfig:
        return self._config

    async def close(self) -> None:
        await self._rpc.close()
        await self._relay.close()

    async def __aenter__(self) -> TxOptimizerClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # =========================================================================
    # Priority Fees
    # =========================================================================

    async def estimate_fee(
        self,
        strategy: FeeStrategy = FeeStrategy.STANDARD,
        buffer: Optional[float] = None,
        scoped_accounts: Optional[Sequence[Account]] = None,
    ) -> FeeEstimate:
        """Estimate a priority fee from recent slots.

        Args:
            strategy: Target percentile preset.
            buffer: Optional multiplier applied to the recommended fee only.
            scoped_accounts: Only sample fees of transactions touching these.
        """
        estimator = self._estimator
        if scoped_accounts:
            estimator = estimator.with_scoped_accounts(scoped_accounts)
        if buffer is not None:
            return await estimator.estimate_with_buffer(strategy, buffer)
        return await estimator.estimate(strategy)

    # =========================================================================
    # Bundles
    # =========================================================================

    def new_bundle(self) -> BundleBuilder:
        """A BundleBuilder preloaded with the configured tip."""
        return BundleBuilder(self._config.tip_lamports)

    async def submit_bundle(self, bundle: Bundle) -> BundleSubmissionResult:
        return await self._submitter.submit(bundle)

    async def check_bundle_status(self, bundle_id: str) -> BundleStatus:
        return await self._poller.check_status(bundle_id)

    async def confirm_bundle(
        self, bundle_id: str, timeout: Optional[float] = None
    ) -> BundleStatus:
        deadline = self._config.confirm_timeout if timeout is None else timeout
        return await self._poller.confirm(bundle_id, deadline)

    async def submit_and_confirm(
        self, bundle: Bundle, timeout: Optional[float] = None
    ) -> BundleSubmissionResult:
        """Submit, then poll until the bundle lands or ``timeout`` seconds pass.

        A rejected submission is returned as is. Otherwise the result carries
        the final status, the submission attempts, and the total elapsed
        time since submission began.
        """
        start = time.monotonic()
        result = await self.submit_bundle(bundle)
        if not isinstance(result.status, Accepted):
            return result

        status = await self.confirm_bundle(result.status.bundle_id, timeout)
        return BundleSubmissionResult(
            status=status,
            attempts=result.attempts,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    # =========================================================================
    # Signatures
    # =========================================================================

    async def check_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Query the ledger RPC once for a transaction signature.

        Returns None if the transaction is unknown or not yet processed.
        """
        try:
            Signature.from_string(signature)
        except ValueError as e:
            raise OptimizerError.config(f"Invalid signature {signature}: {e}") from e

        result = await self._rpc.call(
            GET_SIGNATURE_STATUSES, [[signature], {"searchTransactionHistory": True}]
        )
        status = parse_signature_status(result)
        logger.debug("Signature %s status: %s", signature, status)
        return status
