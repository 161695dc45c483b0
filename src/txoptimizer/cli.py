"""
TxOptimizer - Command line interface

    tx-optimizer estimate-fee --strategy fast --buffer 1.2
    tx-optimizer bundle --tip 50000 --confirm < transactions.txt
    tx-optimizer monitor <signature>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, TextIO

import base58

from .client import TxOptimizerClient
from .config import OptimizerConfig, config_from_env, validate
from .errors import OptimizerError
from .types import Bundle, FeeEstimate, FeeStrategy, SignatureStatus

logger = logging.getLogger("txoptimizer.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tx-optimizer",
        description="Solana transaction optimization: priority fees and Jito bundles.",
    )
    parser.add_argument("--rpc-url", help="RPC endpoint URL (overrides SOLANA_RPC_URL)")
    parser.add_argument(
        "--block-engine-url", help="Block engine URL (overrides JITO_BLOCK_ENGINE_URL)"
    )
    parser.add_argument("--log-level", default="info", help="Log verbosity level")

    sub = parser.add_subparsers(dest="command", required=True)

    fee = sub.add_parser("estimate-fee", help="Estimate a priority fee from recent slots")
    fee.add_argument(
        "-s", "--strategy", default="standard",
        help="Fee strategy: economy, standard, fast, turbo",
    )
    fee.add_argument(
        "-b", "--buffer", type=float, help="Safety multiplier (e.g. 1.2 for 20%% extra)"
    )
    fee.add_argument("--programs", help="Comma-separated program ids to scope sampling to")
    fee.add_argument("--json", action="store_true", help="Output as JSON")

    bundle = sub.add_parser(
        "bundle", help="Submit a bundle of base58 transactions read from stdin"
    )
    bundle.add_argument("-t", "--tip", type=int, help="Tip in lamports")
    bundle.add_argument("--confirm", action="store_true", help="Wait for confirmation")
    bundle.add_argument(
        "--timeout", type=float, default=30.0, help="Confirmation timeout in seconds"
    )

    monitor = sub.add_parser("monitor", help="Check a transaction's confirmation status")
    monitor.add_argument("signature", help="Transaction signature (base58)")

    return parser


def read_transactions(stream: TextIO) -> List[bytes]:
    """Base58 transactions, one per line, until EOF or a blank line."""
    transactions = []
    for line in stream:
        line = line.strip()
        if not line:
            break
        try:
            transactions.append(base58.b58decode(line))
        except ValueError as e:
            raise OptimizerError.invalid_bundle(f"Invalid base58 transaction: {e}") from e
    return transactions


def format_estimate(estimate: FeeEstimate) -> str:
    p = estimate.percentiles
    lines = [
        "Priority Fee Estimation",
        "=======================",
        f"Strategy:        {estimate.strategy.label}",
        f"Recommended fee: {estimate.recommended_fee} microlamports/CU",
        f"Slots sampled:   {estimate.slots_sampled}",
        "",
        "Percentile breakdown:",
        f"  p25: {p.p25} microlamports/CU",
        f"  p50: {p.p50} microlamports/CU",
        f"  p75: {p.p75} microlamports/CU",
        f"  p90: {p.p90} microlamports/CU",
        f"  max: {p.max} microlamports/CU",
    ]
    return "\n".join(lines)


def format_signature_status(status: Optional[SignatureStatus]) -> str:
    if status is None:
        return "Transaction not found or still pending"
    if not status.succeeded:
        return f"Transaction failed: {json.dumps(status.err)}"
    return "Transaction confirmed successfully"


async def run(args: argparse.Namespace, config: OptimizerConfig) -> None:
    async with TxOptimizerClient(config) as client:
        if args.command == "estimate-fee":
            strategy = FeeStrategy.parse(args.strategy)
            programs = None
            if args.programs:
                programs = [p.strip() for p in args.programs.split(",") if p.strip()]
            estimate = await client.estimate_fee(strategy, args.buffer, programs)
            if args.json:
                print(json.dumps(estimate.to_dict(), indent=2))
            else:
                print(format_estimate(estimate))

        elif args.command == "bundle":
            tip = config.tip_lamports if args.tip is None else args.tip
            logger.info("Building Jito bundle with %d lamports tip", tip)
            print("Reading base58-encoded transactions from stdin (one per line)...", file=sys.stderr)
            bundle = Bundle(tuple(read_transactions(sys.stdin)), tip)

            if args.confirm:
                result = await client.submit_and_confirm(bundle, args.timeout)
            else:
                result = await client.submit_bundle(bundle)
            print(json.dumps(result.to_dict(), indent=2))

        elif args.command == "monitor":
            logger.info("Monitoring transaction: %s", args.signature)
            status = await client.check_signature_status(args.signature)
            print(format_signature_status(status))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_env()
        if args.rpc_url:
            config.rpc_url = args.rpc_url
        if args.block_engine_url:
            config.block_engine_url = args.block_engine_url
        validate(config)
        asyncio.run(run(args, config))
    except OptimizerError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
