"""
TxOptimizer - Error types
"""

from __future__ import annotations

from typing import Optional

INVALID_BUNDLE = "INVALID_BUNDLE"
TRANSPORT = "TRANSPORT"
TIMEOUT = "TIMEOUT"
RELAY = "RELAY"
TERMINAL_RELAY = "TERMINAL_RELAY"
RPC = "RPC"
PROTOCOL = "PROTOCOL"
CONFIG = "CONFIG"

_RETRYABLE_CODES = frozenset({TRANSPORT, TIMEOUT, RELAY})


class OptimizerError(Exception):
    """Base error for all TxOptimizer errors."""

    def __init__(self, code: str, message: str, details: Optional[object] = None):
        super().__init__(message)
        self.code = code
        self.details = details

    @property
    def retryable(self) -> bool:
        """True for failures the submission engine absorbs and retries."""
        return self.code in _RETRYABLE_CODES

    @staticmethod
    def invalid_bundle(msg: str) -> OptimizerError:
        return OptimizerError(INVALID_BUNDLE, msg)

    @staticmethod
    def transport(msg: str) -> OptimizerError:
        return OptimizerError(TRANSPORT, msg)

    @staticmethod
    def timeout(ms: int) -> OptimizerError:
        return OptimizerError(TIMEOUT, f"Request timed out after {ms}ms")

    @staticmethod
    def relay(msg: str) -> OptimizerError:
        return OptimizerError(RELAY, msg)

    @staticmethod
    def terminal_relay(msg: str) -> OptimizerError:
        return OptimizerError(TERMINAL_RELAY, msg)

    @staticmethod
    def rpc(code: int, msg: str, data: Optional[object] = None) -> OptimizerError:
        return OptimizerError(RPC, f"RPC error {code}: {msg}", data)

    @staticmethod
    def protocol(msg: str) -> OptimizerError:
        return OptimizerError(PROTOCOL, msg)

    @staticmethod
    def config(msg: str) -> OptimizerError:
        return OptimizerError(CONFIG, msg)
