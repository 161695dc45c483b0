"""Tests for bundle submission, confirmation polling, fee sampling and the HTTP transport."""

import asyncio
import time
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import test_utils, web
from solders.signature import Signature

from txoptimizer.bundle import (
    BUNDLES_PATH,
    MAX_RETRIES_EXCEEDED,
    BundleBuilder,
    BundleSubmitter,
    ConfirmationPoller,
)
from txoptimizer.client import TxOptimizerClient
from txoptimizer.codec import decode_bundle
from txoptimizer.config import config_builder
from txoptimizer.errors import OptimizerError
from txoptimizer.http_transport import JsonRpcTransport
from txoptimizer.priority_fee import (
    DEFAULT_PRIORITY_FEE_MICROLAMPORTS,
    FeeSampler,
    PriorityFeeEstimator,
)
from txoptimizer.types import (
    Accepted,
    Bundle,
    Expired,
    FeeSample,
    FeeStrategy,
    Landed,
    Rejected,
    SignatureStatus,
)

BUNDLE = Bundle((b"\x01\x02\x03", b"\x04\x05\x06"))


def accepted(bundle_id="bundle-1"):
    return 200, {"jsonrpc": "2.0", "id": 1, "result": bundle_id}


def relay_error(message, status=200):
    return status, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": message}}


def statuses(*entries):
    return {"context": {"slot": 100}, "value": list(entries)}


def fee_entries(*fees):
    return [{"slot": 1000 + i, "prioritizationFee": fee} for i, fee in enumerate(fees)]


# ============================================================================
# BundleBuilder Tests
# ============================================================================


class TestBundleBuilder:
    def test_build_preserves_order(self):
        bundle = BundleBuilder().add_transaction(b"\x01").add_transaction(b"\x02").build()
        assert bundle.transactions == (b"\x01", b"\x02")

    def test_add_past_limit_fails(self):
        builder = BundleBuilder()
        for i in range(5):
            builder.add_transaction(bytes([i]))
        with pytest.raises(OptimizerError) as exc_info:
            builder.add_transaction(b"\x05")
        assert exc_info.value.code == "INVALID_BUNDLE"
        assert len(builder) == 5

    def test_empty_build_fails(self):
        with pytest.raises(OptimizerError):
            BundleBuilder().build()

    def test_set_tip(self):
        bundle = BundleBuilder().set_tip(50_000).add_transaction(b"\x01").build()
        assert bundle.tip_lamports == 50_000

    def test_build_payload(self):
        payload = BundleBuilder().add_transaction(b"\x01\x02").build_payload()
        assert decode_bundle(payload) == [b"\x01\x02"]


# ============================================================================
# BundleSubmitter Tests
# ============================================================================


class TestBundleSubmitter:
    @pytest.mark.asyncio
    async def test_accepted_first_attempt(self):
        transport = AsyncMock()
        transport.post.return_value = accepted("abc")

        result = await BundleSubmitter(transport).submit(BUNDLE)

        assert result.status == Accepted("abc")
        assert result.attempts == 1
        path, payload = transport.post.await_args.args
        assert path == BUNDLES_PATH
        assert decode_bundle(payload) == list(BUNDLE.transactions)

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self):
        transport = AsyncMock()
        transport.post.return_value = relay_error("bundle already processed")

        result = await BundleSubmitter(transport, max_attempts=5).submit(BUNDLE)

        assert result.status == Rejected("bundle already processed")
        assert result.attempts == 1
        assert transport.post.await_count == 1

    @pytest.mark.asyncio
    async def test_blockhash_not_found_is_terminal(self):
        transport = AsyncMock()
        transport.post.return_value = relay_error("Blockhash not found", status=400)

        result = await BundleSubmitter(transport, max_attempts=3).submit(BUNDLE)

        assert isinstance(result.status, Rejected)
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_retryable_error_then_accepted(self):
        transport = AsyncMock()
        transport.post.side_effect = [
            relay_error("rate limit exceeded", status=429),
            OptimizerError.transport("connection reset"),
            accepted("late"),
        ]

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await BundleSubmitter(transport, max_attempts=3).submit(BUNDLE)

        assert result.status == Accepted("late")
        assert result.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_malformed_response_is_retried(self):
        transport = AsyncMock()
        transport.post.side_effect = [(502, "Bad Gateway"), (200, {"result": 7}), accepted()]

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock):
            result = await BundleSubmitter(transport, max_attempts=3).submit(BUNDLE)

        assert result.status == Accepted("bundle-1")
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_attempts(self):
        transport = AsyncMock()
        transport.post.side_effect = OptimizerError.timeout(10_000)

        start = time.monotonic()
        result = await BundleSubmitter(transport, max_attempts=3).submit(BUNDLE)
        wall = time.monotonic() - start

        assert result.status == Rejected(MAX_RETRIES_EXCEEDED)
        assert result.attempts == 3
        assert transport.post.await_count == 3
        # 100ms + 200ms of backoff, none after the last attempt
        assert result.elapsed_ms >= 295
        assert wall < 1.0

    @pytest.mark.asyncio
    async def test_backoff_doubles(self):
        transport = AsyncMock()
        transport.post.side_effect = OptimizerError.transport("refused")

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await BundleSubmitter(transport, max_attempts=5).submit(BUNDLE)

        assert result.attempts == 5
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2, 0.4, 0.8]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        transport = AsyncMock()
        transport.post.side_effect = OptimizerError.transport("refused")

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await BundleSubmitter(transport, max_attempts=1).submit(BUNDLE)

        assert result.status == Rejected(MAX_RETRIES_EXCEEDED)
        assert result.attempts == 1
        sleep.assert_not_awaited()

    def test_zero_attempts_rejected(self):
        with pytest.raises(OptimizerError):
            BundleSubmitter(AsyncMock(), max_attempts=0)


# ============================================================================
# ConfirmationPoller Tests
# ============================================================================


class TestConfirmationPoller:
    @pytest.mark.asyncio
    async def test_check_status_landed(self):
        transport = AsyncMock()
        transport.call.return_value = statuses(
            {"bundle_id": "b1", "confirmation_status": "confirmed", "slot": 7}
        )

        status = await ConfirmationPoller(transport).check_status("b1")

        assert status == Landed("b1", 7)
        transport.call.assert_awaited_once_with("getBundleStatuses", [["b1"]], BUNDLES_PATH)

    @pytest.mark.asyncio
    async def test_check_status_pending(self):
        transport = AsyncMock()
        transport.call.return_value = statuses({"confirmation_status": "processed"})
        assert await ConfirmationPoller(transport).check_status("b1") == Accepted("b1")

    @pytest.mark.asyncio
    async def test_check_status_not_found(self):
        transport = AsyncMock()
        transport.call.return_value = statuses(None)
        assert await ConfirmationPoller(transport).check_status("b1") == Expired("b1")

        transport.call.return_value = statuses()
        assert await ConfirmationPoller(transport).check_status("b1") == Expired("b1")

    @pytest.mark.asyncio
    async def test_finalized_on_first_poll(self):
        transport = AsyncMock()
        transport.call.return_value = statuses(
            {"confirmation_status": "finalized", "slot": 42}
        )

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock) as sleep:
            status = await ConfirmationPoller(transport, poll_interval=0.5).confirm("b1", 30.0)

        assert status == Landed("b1", 42)
        sleep.assert_awaited_once_with(0.5)
        assert transport.call.await_count == 1

    @pytest.mark.asyncio
    async def test_not_found_expires(self):
        transport = AsyncMock()
        transport.call.return_value = statuses(None)

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock):
            status = await ConfirmationPoller(transport).confirm("b1", 30.0)

        assert status == Expired("b1")
        assert transport.call.await_count == 1

    @pytest.mark.asyncio
    async def test_deadline_expires_after_two_polls(self):
        transport = AsyncMock()
        transport.call.return_value = statuses({"confirmation_status": "processed"})

        start = time.monotonic()
        status = await ConfirmationPoller(transport, poll_interval=0.5).confirm("b1", 1.0)
        wall = time.monotonic() - start

        assert status == Expired("b1")
        assert transport.call.await_count == 2
        assert 0.95 <= wall < 1.3

    @pytest.mark.asyncio
    async def test_query_failures_count_as_pending(self):
        transport = AsyncMock()
        transport.call.side_effect = [
            OptimizerError.transport("connection reset"),
            OptimizerError.protocol("garbage"),
            statuses({"confirmation_status": "confirmed", "slot": 9}),
        ]

        with patch("txoptimizer.bundle.asyncio.sleep", new_callable=AsyncMock):
            status = await ConfirmationPoller(transport).confirm("b1", 30.0)

        assert status == Landed("b1", 9)
        assert transport.call.await_count == 3


# ============================================================================
# FeeSampler / PriorityFeeEstimator Tests
# ============================================================================


class TestFeeSampler:
    @pytest.mark.asyncio
    async def test_filters_zero_fees(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(0, 500, 0, 1500)

        fees = await FeeSampler(transport).fetch_samples()

        assert fees == [500, 1500]
        transport.call.assert_awaited_once_with("getRecentPrioritizationFees", [])

    @pytest.mark.asyncio
    async def test_fee_samples_keep_slots(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(0, 10)

        samples = await FeeSampler(transport).fetch_fee_samples()

        assert samples == [FeeSample(1000, 0), FeeSample(1001, 10)]

    @pytest.mark.asyncio
    async def test_scoped_accounts(self):
        transport = AsyncMock()
        transport.call.return_value = []
        program = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

        assert await FeeSampler(transport).fetch_samples([program]) == []
        transport.call.assert_awaited_once_with("getRecentPrioritizationFees", [[program]])

    @pytest.mark.asyncio
    async def test_null_result_is_empty(self):
        transport = AsyncMock()
        transport.call.return_value = None
        assert await FeeSampler(transport).fetch_samples() == []

    @pytest.mark.asyncio
    async def test_malformed_result_raises(self):
        transport = AsyncMock()
        transport.call.return_value = {"unexpected": True}
        with pytest.raises(OptimizerError) as exc_info:
            await FeeSampler(transport).fetch_samples()
        assert exc_info.value.code == "PROTOCOL"

    @pytest.mark.asyncio
    async def test_negative_fee_raises(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(-5)
        with pytest.raises(OptimizerError):
            await FeeSampler(transport).fetch_samples()

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        transport = AsyncMock()
        transport.call.side_effect = OptimizerError.transport("refused")
        with pytest.raises(OptimizerError) as exc_info:
            await FeeSampler(transport).fetch_samples()
        assert exc_info.value.code == "TRANSPORT"


class TestPriorityFeeEstimator:
    @pytest.mark.asyncio
    async def test_estimate(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(*range(100, 1001, 100))

        estimate = await PriorityFeeEstimator(FeeSampler(transport)).estimate(FeeStrategy.STANDARD)

        assert estimate.recommended_fee == 600
        assert estimate.slots_sampled == 10
        assert estimate.percentiles.max == 1000

    @pytest.mark.asyncio
    async def test_no_data_falls_back(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(0, 0, 0)

        estimate = await PriorityFeeEstimator(FeeSampler(transport)).estimate(FeeStrategy.TURBO)

        assert estimate.recommended_fee == DEFAULT_PRIORITY_FEE_MICROLAMPORTS
        assert estimate.slots_sampled == 0

    @pytest.mark.asyncio
    async def test_buffer_of_one_matches_estimate(self):
        transport = AsyncMock()
        transport.call.return_value = fee_entries(120, 340, 560, 780)
        estimator = PriorityFeeEstimator(FeeSampler(transport))

        plain = await estimator.estimate(FeeStrategy.FAST)
        buffered = await estimator.estimate_with_buffer(FeeStrategy.FAST, 1.0)

        assert buffered.recommended_fee == plain.recommended_fee
        assert buffered.percentiles == plain.percentiles

    @pytest.mark.asyncio
    async def test_with_scoped_accounts(self):
        transport = AsyncMock()
        transport.call.return_value = []
        estimator = PriorityFeeEstimator(FeeSampler(transport)).with_scoped_accounts(["Acct1"])

        await estimator.estimate(FeeStrategy.ECONOMY)

        transport.call.assert_awaited_once_with("getRecentPrioritizationFees", [["Acct1"]])


# ============================================================================
# TxOptimizerClient Tests
# ============================================================================


def make_client(**overrides):
    config = config_builder().poll_interval(0.01).confirm_timeout(1.0).build()
    for key, value in overrides.items():
        setattr(config, key, value)
    client = TxOptimizerClient(config)
    client._relay.post = AsyncMock()
    client._relay.call = AsyncMock()
    client._rpc.call = AsyncMock()
    return client


class TestTxOptimizerClient:
    @pytest.mark.asyncio
    async def test_estimate_fee_with_buffer(self):
        client = make_client()
        client._rpc.call.return_value = fee_entries(*range(100, 1001, 100))

        estimate = await client.estimate_fee(FeeStrategy.STANDARD, buffer=2.0)

        assert estimate.recommended_fee == 1200
        assert estimate.percentiles.p50 == 600
        await client.close()

    @pytest.mark.asyncio
    async def test_estimate_fee_scoped(self):
        client = make_client()
        client._rpc.call.return_value = []

        await client.estimate_fee(FeeStrategy.FAST, scoped_accounts=["Prog1", "Prog2"])

        client._rpc.call.assert_awaited_once_with(
            "getRecentPrioritizationFees", [["Prog1", "Prog2"]]
        )

    def test_new_bundle_uses_configured_tip(self):
        client = make_client(tip_lamports=77_000)
        assert client.new_bundle().add_transaction(b"\x01").build().tip_lamports == 77_000

    @pytest.mark.asyncio
    async def test_submit_and_confirm_landed(self):
        client = make_client()
        client._relay.post.return_value = accepted("b9")
        client._relay.call.side_effect = [
            statuses({"confirmation_status": "processed"}),
            statuses({"confirmation_status": "finalized", "slot": 321}),
        ]

        result = await client.submit_and_confirm(BUNDLE)

        assert result.status == Landed("b9", 321)
        assert result.attempts == 1
        assert result.elapsed_ms >= 15

    @pytest.mark.asyncio
    async def test_submit_and_confirm_rejected_skips_polling(self):
        client = make_client()
        client._relay.post.return_value = relay_error("already processed")

        result = await client.submit_and_confirm(BUNDLE)

        assert result.status == Rejected("already processed")
        client._relay.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_bundle_times_out(self):
        client = make_client()
        client._relay.call.return_value = statuses({"confirmation_status": "processed"})

        start = time.monotonic()
        status = await client.confirm_bundle("b1", timeout=0.1)

        assert status == Expired("b1")
        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_check_signature_status(self):
        client = make_client()
        signature = str(Signature.default())
        client._rpc.call.return_value = {
            "context": {"slot": 90},
            "value": [{"slot": 88, "err": None, "confirmationStatus": "confirmed"}],
        }

        status = await client.check_signature_status(signature)

        assert status == SignatureStatus(88, "confirmed", None)
        client._rpc.call.assert_awaited_once_with(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )

    @pytest.mark.asyncio
    async def test_check_signature_status_unknown(self):
        client = make_client()
        client._rpc.call.return_value = {"context": {"slot": 90}, "value": [None]}
        assert await client.check_signature_status(str(Signature.default())) is None

    @pytest.mark.asyncio
    async def test_check_signature_status_invalid(self):
        client = make_client()
        with pytest.raises(OptimizerError) as exc_info:
            await client.check_signature_status("not-a-signature")
        assert exc_info.value.code == "CONFIG"
        client._rpc.call.assert_not_awaited()


# ============================================================================
# JsonRpcTransport Tests
# ============================================================================


@asynccontextmanager
async def serve(*handlers):
    """Local HTTP server answering successive POSTs with ``handlers`` in turn.

    The last handler keeps answering once the others are used up.
    """
    queue = list(handlers)
    requests = []

    async def dispatch(request):
        requests.append(await request.json())
        handler = queue.pop(0) if len(queue) > 1 else queue[0]
        return await handler(request)

    app = web.Application()
    app.router.add_route("POST", "/{tail:.*}", dispatch)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield f"http://{server.host}:{server.port}", requests
    finally:
        await server.close()


def respond(body, status=200):
    async def handler(request):
        return web.json_response(body, status=status)
    return handler


async def bad_gateway(request):
    return web.Response(status=502, text="<html>502 Bad Gateway</html>", content_type="text/html")


async def slow(request):
    await asyncio.sleep(0.5)
    return web.json_response({"jsonrpc": "2.0", "id": 1, "result": "too-late"})


class TestJsonRpcTransport:
    @pytest.mark.asyncio
    async def test_post_returns_status_and_body(self):
        async with serve(respond({"jsonrpc": "2.0", "id": 1, "result": "b1"})) as (url, requests):
            async with JsonRpcTransport(url) as transport:
                status, body = await transport.post(BUNDLES_PATH, {"method": "sendBundle"})

        assert status == 200
        assert body["result"] == "b1"
        assert requests == [{"method": "sendBundle"}]

    @pytest.mark.asyncio
    async def test_html_error_page_is_transport_error(self):
        async with serve(bad_gateway) as (url, _):
            async with JsonRpcTransport(url) as transport:
                with pytest.raises(OptimizerError) as exc_info:
                    await transport.post(BUNDLES_PATH, {})

        assert exc_info.value.code == "TRANSPORT"
        assert exc_info.value.retryable
        assert "502" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_slow_response_is_timeout(self):
        async with serve(slow) as (url, _):
            async with JsonRpcTransport(url, timeout_ms=100) as transport:
                with pytest.raises(OptimizerError) as exc_info:
                    await transport.post(BUNDLES_PATH, {})

        assert exc_info.value.code == "TIMEOUT"
        assert str(exc_info.value) == "Request timed out after 100ms"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_refused_is_transport_error(self):
        refused = f"http://127.0.0.1:{test_utils.unused_port()}"
        async with JsonRpcTransport(refused) as transport:
            with pytest.raises(OptimizerError) as exc_info:
                await transport.post(BUNDLES_PATH, {})

        assert exc_info.value.code == "TRANSPORT"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_call_returns_result(self):
        fees = fee_entries(0, 250)
        async with serve(respond({"jsonrpc": "2.0", "id": 1, "result": fees})) as (url, requests):
            async with JsonRpcTransport(url) as transport:
                result = await transport.call("getRecentPrioritizationFees", [])

        assert result == fees
        assert requests[0]["method"] == "getRecentPrioritizationFees"
        assert requests[0]["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_call_error_envelope_is_rpc_error(self):
        envelope = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid params"}}
        async with serve(respond(envelope)) as (url, _):
            async with JsonRpcTransport(url) as transport:
                with pytest.raises(OptimizerError) as exc_info:
                    await transport.call("getBundleStatuses", [["b1"]], BUNDLES_PATH)

        assert exc_info.value.code == "RPC"
        assert str(exc_info.value) == "RPC error -32602: Invalid params"
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_call_http_error_status(self):
        async with serve(respond({"jsonrpc": "2.0", "id": 1, "result": None}, status=503)) as (url, _):
            async with JsonRpcTransport(url) as transport:
                with pytest.raises(OptimizerError) as exc_info:
                    await transport.call("getRecentPrioritizationFees", [])

        assert exc_info.value.code == "TRANSPORT"
        assert "503" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_submitter_retries_over_http(self):
        accepted_body = {"jsonrpc": "2.0", "id": 1, "result": "bid"}
        async with serve(bad_gateway, slow, respond(accepted_body)) as (url, requests):
            async with JsonRpcTransport(url, timeout_ms=200) as transport:
                result = await BundleSubmitter(transport, max_attempts=3).submit(BUNDLE)

        assert result.status == Accepted("bid")
        assert result.attempts == 3
        # one timeout plus 100ms and 200ms of backoff
        assert result.elapsed_ms >= 450
        assert all(r["method"] == "sendBundle" for r in requests)

    @pytest.mark.asyncio
    async def test_submitter_gives_up_on_refused_port(self):
        refused = f"http://127.0.0.1:{test_utils.unused_port()}"
        async with JsonRpcTransport(refused) as transport:
            result = await BundleSubmitter(transport, max_attempts=2).submit(BUNDLE)

        assert result.status == Rejected(MAX_RETRIES_EXCEEDED)
        assert result.attempts == 2
