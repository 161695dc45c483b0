"""
TxOptimizer - Tip accounts

The relay pays validators from tips sent to one of a fixed set of accounts.
Picking a different account per bundle spreads write-lock contention.
"""

from __future__ import annotations

import logging
import random
from typing import Sequence, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from .errors import OptimizerError

logger = logging.getLogger("txoptimizer.tips")

# Official Jito tip payment accounts on mainnet.
JITO_TIP_ACCOUNTS = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)


def random_tip_account(accounts: Sequence[str] = JITO_TIP_ACCOUNTS) -> str:
    """Pick a tip account uniformly at random."""
    if not accounts:
        raise OptimizerError.config("Tip account set is empty")
    return random.choice(accounts)


def random_tip_pubkey(accounts: Sequence[str] = JITO_TIP_ACCOUNTS) -> Pubkey:
    account = random_tip_account(accounts)
    try:
        return Pubkey.from_string(account)
    except ValueError as e:
        raise OptimizerError.config(f"Invalid tip account {account}: {e}") from e


def create_tip_instruction(
    payer: Union[Pubkey, str],
    tip_lamports: int,
    accounts: Sequence[str] = JITO_TIP_ACCOUNTS,
) -> Instruction:
    """Create a transfer from ``payer`` to a random tip account.

    Add it as the last instruction of the last transaction in the bundle.
    """
    if tip_lamports < 0:
        raise OptimizerError.config("tip_lamports must be non-negative")

    if isinstance(payer, str):
        try:
            payer = Pubkey.from_string(payer)
        except ValueError as e:
            raise OptimizerError.config(f"Invalid payer {payer}: {e}") from e
    tip_account = random_tip_pubkey(accounts)

    logger.debug("Tip of %d lamports to %s", tip_lamports, tip_account)
    return transfer(
        TransferParams(from_pubkey=payer, to_pubkey=tip_account, lamports=tip_lamports)
    )
