"""
TxOptimizer - Wire codec

Encodes bundles into the block engine's JSON-RPC request envelope and
decodes response envelopes.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import base58

from .errors import OptimizerError
from .types import MAX_BUNDLE_SIZE, RpcError, RpcResponse, SignatureStatus

SEND_BUNDLE = "sendBundle"
GET_BUNDLE_STATUSES = "getBundleStatuses"
GET_RECENT_PRIORITIZATION_FEES = "getRecentPrioritizationFees"
GET_SIGNATURE_STATUSES = "getSignatureStatuses"


def build_rpc_request(method: str, params: List[Any], request_id: int = 1) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": params,
    }


def encode_bundle(transactions: Iterable[Any]) -> Dict[str, Any]:
    """Build the ``sendBundle`` payload for 1 to 5 signed transactions.

    Items may be raw bytes or anything whose ``bytes()`` is the serialized
    transaction (e.g. a solders ``VersionedTransaction``).
    """
    blobs = [bytes(tx) for tx in transactions]
    if not blobs:
        raise OptimizerError.invalid_bundle("Cannot build an empty bundle")
    if len(blobs) > MAX_BUNDLE_SIZE:
        raise OptimizerError.invalid_bundle(
            f"Bundle contains {len(blobs)} transactions (max {MAX_BUNDLE_SIZE})"
        )

    encoded = [base58.b58encode(blob).decode("ascii") for blob in blobs]
    return build_rpc_request(SEND_BUNDLE, [encoded])


def decode_bundle(payload: Dict[str, Any]) -> List[bytes]:
    """Recover the transaction bytes from a ``sendBundle`` payload."""
    if not isinstance(payload, dict) or payload.get("method") != SEND_BUNDLE:
        raise OptimizerError.protocol("Not a sendBundle request")

    params = payload.get("params")
    if not isinstance(params, list) or not params or not isinstance(params[0], list):
        raise OptimizerError.protocol("sendBundle params must be [[tx, ...]]")

    try:
        return [base58.b58decode(tx) for tx in params[0]]
    except (ValueError, TypeError) as e:
        raise OptimizerError.protocol(f"Invalid base58 transaction: {e}") from e


def parse_rpc_response(body: Any) -> RpcResponse:
    if not isinstance(body, dict):
        raise OptimizerError.protocol(
            f"Expected a JSON-RPC object, got {type(body).__name__}"
        )

    error = None
    error_data = body.get("error")
    if isinstance(error_data, dict):
        error = RpcError(
            code=error_data.get("code", 0),
            message=str(error_data.get("message", "Unknown error")),
            data=error_data.get("data"),
        )
    elif error_data is not None:
        error = RpcError(message=str(error_data))

    return RpcResponse(
        jsonrpc=body.get("jsonrpc", "2.0"),
        id=body.get("id"),
        result=body.get("result"),
        error=error,
    )


def parse_signature_status(result: Any) -> Optional[SignatureStatus]:
    """Decode the first entry of a ``getSignatureStatuses`` result.

    Returns None when the node has no record of the signature.
    """
    statuses = result.get("value") if isinstance(result, dict) else None
    if not isinstance(statuses, list):
        raise OptimizerError.protocol(f"{GET_SIGNATURE_STATUSES} result has no value list")

    entry = statuses[0] if statuses else None
    if entry is None:
        return None
    if not isinstance(entry, dict) or not isinstance(entry.get("slot"), int):
        raise OptimizerError.protocol(f"Malformed signature status: {entry!r}")

    return SignatureStatus(
        slot=entry["slot"],
        confirmation_status=entry.get("confirmationStatus"),
        err=entry.get("err"),
    )
