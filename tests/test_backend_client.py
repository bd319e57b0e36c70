"""Tests for BackendClient retry and error mapping."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from storefront.backend_client import BackendAPIError, BackendClient


@pytest.fixture
def client():
    return BackendClient("http://backend.test/api/")


def _mock_response(status: int = 200, json_data: dict | None = None, headers: dict | None = None):
    """Create a fake httpx.Response."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status
    resp.json.return_value = json_data or {}
    resp.headers = headers or {}
    resp.text = ""
    return resp


def _patched_client(fake_request):
    patcher = patch("httpx.AsyncClient")
    mock_client_cls = patcher.start()
    mock_instance = AsyncMock()
    mock_instance.request = fake_request
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_instance
    return patcher


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("storefront.backend_client.asyncio.sleep", new_callable=AsyncMock):
        yield


@pytest.mark.asyncio
async def test_retry_on_429(client):
    """Should retry after 429 and succeed on second attempt."""
    responses = [_mock_response(429, headers={"Retry-After": "0"}), _mock_response(200, {"ok": True})]
    calls = []

    async def fake_request(method, url, **kwargs):
        calls.append(url)
        return responses.pop(0)

    patcher = _patched_client(fake_request)
    try:
        result = await client.get_json("/loyalty/settings")
    finally:
        patcher.stop()

    assert result == {"ok": True}
    assert calls == ["http://backend.test/api/loyalty/settings"] * 2


@pytest.mark.asyncio
async def test_retry_on_5xx_then_success(client):
    responses = [_mock_response(502), _mock_response(503), _mock_response(200, {"sessionId": "s2"})]

    async def fake_request(*args, **kwargs):
        return responses.pop(0)

    patcher = _patched_client(fake_request)
    try:
        data = await client.post_json("/checkout-session/recover", {"expiredSessionId": "s1"})
    finally:
        patcher.stop()

    assert data == {"sessionId": "s2"}


@pytest.mark.asyncio
async def test_no_retry_for_non_idempotent_calls(client):
    """retry=False must send an order exactly once, even on a 500."""
    call_count = 0

    async def fake_request(*args, **kwargs):
        nonlocal call_count
        call_count += 1
        return _mock_response(500, {"error": "db down"})

    patcher = _patched_client(fake_request)
    try:
        with pytest.raises(BackendAPIError) as exc_info:
            await client.post_json("/order/create", {}, retry=False)
    finally:
        patcher.stop()

    assert call_count == 1
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_4xx_preserves_reason(client):
    async def fake_request(*args, **kwargs):
        return _mock_response(400, {"error": "Session expired", "reason": "expired"})

    patcher = _patched_client(fake_request)
    try:
        with pytest.raises(BackendAPIError) as exc_info:
            await client.post_json("/checkout-session/validate", {"sessionId": "x"})
    finally:
        patcher.stop()

    assert exc_info.value.status_code == 400
    assert exc_info.value.reason == "expired"
    assert exc_info.value.detail == "Session expired"


@pytest.mark.asyncio
async def test_timeouts_exhaust_retries(client):
    call_count = 0

    async def fake_request(*args, **kwargs):
        nonlocal call_count
        call_count += 1
        raise httpx.ReadTimeout("slow")

    patcher = _patched_client(fake_request)
    try:
        with pytest.raises(BackendAPIError, match="Max retries"):
            await client.get_json("/loyalty/settings")
    finally:
        patcher.stop()

    assert call_count == 3


@pytest.mark.asyncio
async def test_transport_error_maps_to_status_zero(client):
    async def fake_request(*args, **kwargs):
        raise httpx.ConnectError("refused")

    patcher = _patched_client(fake_request)
    try:
        with pytest.raises(BackendAPIError) as exc_info:
            await client.get_json("/loyalty/settings")
    finally:
        patcher.stop()

    assert exc_info.value.status_code == 0
