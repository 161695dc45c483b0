"""
estimate_fee.py -- Compare priority fee strategies.

Samples recent prioritization fees once per strategy and prints the
recommendation next to the observed percentiles.
"""

import asyncio
import os

from txoptimizer import FeeStrategy, TxOptimizerClient, config_builder
from txoptimizer.priority_fee import build_compute_unit_limit_instruction, build_priority_fee_instruction

# Jupiter v6; scope estimates to swaps through it
JUPITER_PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"


async def main() -> None:
    rpc_url = os.environ.get("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
    config = config_builder().rpc_url(rpc_url).build()

    async with TxOptimizerClient(config) as client:
        print("Strategy        Fee (uLamports/CU)   Slots")
        print("-" * 44)
        for strategy in FeeStrategy:
            estimate = await client.estimate_fee(strategy)
            marker = " (fallback)" if estimate.is_fallback else ""
            print(f"  {strategy.label:14s} {estimate.recommended_fee:>12d}   "
                  f"{estimate.slots_sampled:>5d}{marker}")

        # 20% headroom for a spike, only for Jupiter traffic
        swap = await client.estimate_fee(
            FeeStrategy.FAST, buffer=1.2, scoped_accounts=[JUPITER_PROGRAM]
        )
        p = swap.percentiles
        print(f"\nJupiter swaps: {swap.recommended_fee} uLamports/CU "
              f"(p25={p.p25} p50={p.p50} p75={p.p75} p90={p.p90} max={p.max})")

        # Instructions to prepend to a transaction
        instructions = [
            build_compute_unit_limit_instruction(),
            build_priority_fee_instruction(swap.recommended_fee),
        ]
        print(f"Compute budget program: {instructions[0].program_id}")


if __name__ == "__main__":
    asyncio.run(main())
