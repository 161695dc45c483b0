"""
TxOptimizer - HTTP JSON-RPC Transport

Uses aiohttp for all calls to the ledger RPC node and the block engine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .codec import build_rpc_request, parse_rpc_response
from .errors import OptimizerError

logger = logging.getLogger("txoptimizer.http_transport")


class JsonRpcTransport:
    """JSON-RPC over HTTP transport using aiohttp."""

    def __init__(self, base_url: str, timeout_ms: int = 10_000) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_ms = timeout_ms
        self._timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> JsonRpcTransport:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def post(self, path: str, body: Dict[str, Any]) -> Tuple[int, Any]:
        """POST a JSON body and return the HTTP status with the decoded JSON.

        Non-2xx responses are returned, not raised, so callers can inspect
        the JSON-RPC error they carry.
        """
        session = await self._ensure_session()
        url = f"{self._base_url}{path}"

        try:
            async with session.post(url, json=body) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise OptimizerError.transport(
                        f"HTTP {resp.status}: malformed JSON response"
                    ) from e
                return resp.status, data
        except OptimizerError:
            raise
        except asyncio.TimeoutError as e:
            raise OptimizerError.timeout(self._timeout_ms) from e
        except aiohttp.ClientError as e:
            raise OptimizerError.transport(f"HTTP request failed: {e}") from e

    async def call(self, method: str, params: List[Any], path: str = "") -> Any:
        """Execute a JSON-RPC call and return its ``result``."""
        logger.debug("RPC %s %s", method, params)
        status, body = await self.post(path, build_rpc_request(method, params))
        response = parse_rpc_response(body)

        if response.error is not None:
            raise OptimizerError.rpc(
                response.error.code, response.error.message, response.error.data
            )
        if not (200 <= status < 300):
            raise OptimizerError.transport(f"HTTP {status} from {method}")
        return response.result
