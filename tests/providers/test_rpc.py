"""
Tests for the JSON-RPC client, driven through httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from converter.core.errors import RpcError, TransientReadError
from converter.providers.rpc import JsonRpcClient


def make_client(handler, **kwargs):
    transport = httpx.MockTransport(handler)
    return JsonRpcClient(
        rpc_url="http://node.test",
        client=httpx.AsyncClient(transport=transport),
        **kwargs,
    )


class TestCall:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        seen = []

        def handler(request):
            payload = json.loads(request.content)
            seen.append(payload)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": "0x2a"})

        rpc = make_client(handler)
        result = await rpc.eth_call("0x" + "aa" * 20, "0x1234")

        assert result == "0x2a"
        assert seen[0]["method"] == "eth_call"
        assert seen[0]["params"] == [{"to": "0x" + "aa" * 20, "data": "0x1234"}, "latest"]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_error_object(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "execution reverted"}},
            )

        rpc = make_client(handler)
        with pytest.raises(RpcError) as exc_info:
            await rpc.call("eth_call", [])

        assert exc_info.value.code == -32000
        assert "execution reverted" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_failure_is_transient(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        rpc = make_client(handler)
        with pytest.raises(TransientReadError):
            await rpc.call("eth_blockNumber", [])

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        rpc = make_client(handler)
        with pytest.raises(TransientReadError):
            await rpc.call("eth_blockNumber", [])

    @pytest.mark.asyncio
    async def test_non_json_body_is_transient(self):
        def handler(request):
            return httpx.Response(200, text="<html>Bad Gateway</html>")

        rpc = make_client(handler)
        with pytest.raises(TransientReadError) as exc_info:
            await rpc.call("eth_getTransactionReceipt", ["0xabc"])

        assert "non-JSON" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_send_transaction_encodes_gas(self):
        seen = []

        def handler(request):
            payload = json.loads(request.content)
            seen.append(payload)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": "0xhash"})

        rpc = make_client(handler)
        tx_hash = await rpc.send_transaction("0x" + "11" * 20, "0x" + "aa" * 20, "0xdead", gas_limit=650_000)

        assert tx_hash == "0xhash"
        tx = seen[0]["params"][0]
        assert seen[0]["method"] == "eth_sendTransaction"
        assert tx["gas"] == hex(650_000)
        assert tx["value"] == "0x0"


class TestWaitForReceipt:
    @pytest.mark.asyncio
    async def test_polls_until_mined(self):
        responses = [None, None, {"status": "0x1", "logs": []}]

        def handler(request):
            payload = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": responses.pop(0)})

        rpc = make_client(handler, poll_interval_seconds=0.01)
        receipt = await rpc.wait_for_receipt("0xabc", timeout_seconds=1)

        assert receipt["status"] == "0x1"
        assert responses == []

    @pytest.mark.asyncio
    async def test_times_out(self):
        def handler(request):
            payload = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": None})

        rpc = make_client(handler, poll_interval_seconds=0.01)
        with pytest.raises(asyncio.TimeoutError):
            await rpc.wait_for_receipt("0xabc", timeout_seconds=0.05)

    @pytest.mark.asyncio
    async def test_read_errors_keep_polling(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(502)
            payload = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": {"logs": []}})

        rpc = make_client(handler, poll_interval_seconds=0.01)
        assert await rpc.wait_for_receipt("0xabc", timeout_seconds=1) == {"logs": []}

    @pytest.mark.asyncio
    async def test_non_json_body_keeps_polling(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(200, text="upstream timed out")
            payload = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": {"status": "0x1"}})

        rpc = make_client(handler, poll_interval_seconds=0.01)
        assert await rpc.wait_for_receipt("0xabc", timeout_seconds=1) == {"status": "0x1"}
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_zero_timeout_checks_once(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            payload = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": None})

        rpc = make_client(handler, poll_interval_seconds=0.01)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(rpc.wait_for_receipt("0xabc", timeout_seconds=0), 1)

        assert calls["count"] == 1
