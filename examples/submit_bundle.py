"""
submit_bundle.py -- Submit a Jito bundle and wait for it to land.

Reads signed, base58-encoded transactions from the BUNDLE_TXS environment
variable (comma separated, in execution order). The last transaction
should carry the tip transfer built with ``create_tip_instruction``.
"""

import asyncio
import os
import sys

import base58

from txoptimizer import Landed, TxOptimizerClient, config_builder
from txoptimizer.config import JITO_BLOCK_ENGINE_AMSTERDAM
from txoptimizer.tips import random_tip_account


async def main() -> None:
    raw = os.environ.get("BUNDLE_TXS", "")
    transactions = [base58.b58decode(tx) for tx in raw.split(",") if tx]
    if not transactions:
        print("Set BUNDLE_TXS to one or more signed transactions")
        sys.exit(1)

    config = (
        config_builder()
        .block_engine_url(os.environ.get("JITO_BLOCK_ENGINE_URL", JITO_BLOCK_ENGINE_AMSTERDAM))
        .tip_lamports(50_000)
        .max_retries(5)
        .poll_interval(1.0)
        .build()
    )

    print(f"Tip account for this bundle: {random_tip_account()}")

    async with TxOptimizerClient(config) as client:
        builder = client.new_bundle()
        for tx in transactions:
            builder.add_transaction(tx)
        bundle = builder.build()

        result = await client.submit_and_confirm(bundle, timeout=60)
        status = result.status

        print(f"State:    {status.state.value}")
        print(f"Attempts: {result.attempts}")
        print(f"Elapsed:  {result.elapsed_ms}ms")
        if isinstance(status, Landed):
            print(f"Landed in slot {status.slot} (bundle {status.bundle_id})")
        else:
            print(result.to_dict())


if __name__ == "__main__":
    asyncio.run(main())
