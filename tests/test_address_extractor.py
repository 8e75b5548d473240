"""
Tests for the deposit address cascade
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from exscout_core import address_extractor
from exscout_core.address_extractor import (
    FRAME_TEXT_JS,
    ExtractedAddress,
    extract_address,
    find_memo,
    match_collected,
    scan_document,
    scan_frames,
)
from exscout_core.exceptions import ProbeError
from exscout_core.network_interceptor import InterceptedAddress

BTC_BECH32 = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
ERC20 = "0xABCDEF0123456789ABCDEF0123456789ABCDEF01"
XRP = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"


def collected(candidates=(), body="", memos=()):
    return {"candidates": list(candidates), "memo_candidates": list(memos), "body": body}


def make_page(document_result, frames=()):
    page = MagicMock()
    page.evaluate = AsyncMock(return_value=document_result)
    page.main_frame = MagicMock()
    page.frames = [page.main_frame, *frames]
    return page


def make_frame(url, document_result, text=""):
    frame = MagicMock()
    frame.url = url

    async def evaluate(script, *args):
        if script == FRAME_TEXT_JS:
            return text
        return document_result

    frame.evaluate = AsyncMock(side_effect=evaluate)
    return frame


class TestMatching:
    def test_container_text_first(self):
        found = match_collected(collected(candidates=["Copy", ERC20], body=f"Send {BTC_BECH32}"))
        assert found.address == ERC20
        assert found.network == "ERC20"

    def test_body_fallback(self):
        found = match_collected(collected(body=f"Send to {BTC_BECH32} now"))
        assert found.address == BTC_BECH32
        assert found.network == "BTC"

    def test_nothing(self):
        assert match_collected(collected(body="Order created")) is None
        assert match_collected(None) is None


class TestMemo:
    def test_numeric_container(self):
        assert find_memo(["", "Tag", " 104857 "], "", XRP) == "104857"

    def test_phrase_near_address(self):
        body = f"Address: {XRP}\nDestination tag: 104857"
        assert find_memo([], body, XRP) == "104857"

    def test_phrase_far_from_address(self):
        body = f"Address: {XRP}" + " " * 300 + "Destination tag: 104857"
        assert find_memo([], body, XRP) is None

    def test_no_address_in_body(self):
        assert find_memo([], "memo: 5", None) is None


@pytest.mark.asyncio
class TestTiers:
    async def test_document_scan_tags_dom(self):
        page = make_page(collected(candidates=[XRP], body=f"{XRP} memo: 42"))
        found = await scan_document(page)
        assert found == ExtractedAddress(address=XRP, network="XRP", memo="42", source="dom")

    async def test_frame_scan_uses_relevant_frames(self):
        irrelevant = make_frame("https://ads.example/banner", collected(body=ERC20), text="buy shoes")
        checkout = make_frame("https://pay.gateway.io/checkout/1", collected(body=f"Pay {BTC_BECH32}"))
        page = make_page(collected(), frames=[irrelevant, checkout])

        found = await scan_frames(page)

        assert found.address == BTC_BECH32
        assert found.source == "iframe"
        # irrelevant frame only had its text read
        assert irrelevant.evaluate.await_count == 1
        page.evaluate.assert_not_awaited()

    async def test_frame_relevant_by_content(self):
        frame = make_frame("https://cdn.widget.io/embed", collected(body=ERC20), text="send usdt to this address")
        page = make_page(collected(), frames=[frame])
        found = await scan_frames(page)
        assert found.address == ERC20

    async def test_main_frame_skipped(self):
        page = make_page(collected(body=ERC20))
        page.main_frame.url = "https://ex.com/checkout"
        assert await scan_frames(page) is None


@pytest.mark.asyncio
class TestCascade:
    async def test_document_hit_short_circuits(self, monkeypatch):
        frames_tier = AsyncMock(return_value=None)
        monkeypatch.setattr(address_extractor, "scan_frames", frames_tier)
        interceptor = MagicMock()
        page = make_page(collected(body=f"Send to {BTC_BECH32} now"))

        result = await extract_address(page, interceptor)

        assert result.address == BTC_BECH32
        assert result.source == "dom"
        assert frames_tier.await_count == 0
        assert interceptor.get_best_address.call_count == 0

    async def test_frame_hit_skips_network(self, monkeypatch):
        frame_hit = ExtractedAddress(address=ERC20, network="ERC20", source="iframe")
        monkeypatch.setattr(address_extractor, "scan_frames", AsyncMock(return_value=frame_hit))
        interceptor = MagicMock()
        page = make_page(collected(body="Waiting for payment"))

        result = await extract_address(page, interceptor)

        assert result is frame_hit
        interceptor.get_best_address.assert_not_called()

    async def test_network_fallback(self):
        interceptor = MagicMock()
        interceptor.get_best_address.return_value = InterceptedAddress(
            address=ERC20, source="api-json", url="https://ex.com/api/order"
        )
        page = make_page(collected(body="Waiting for payment"))

        result = await extract_address(page, interceptor)

        assert result.address == ERC20
        assert result.network == "ERC20"
        assert result.source == "api-json"

    async def test_failing_tier_falls_through(self):
        interceptor = MagicMock()
        interceptor.get_best_address.return_value = InterceptedAddress(
            address=XRP, source="api-header", url="https://ex.com/api", memo="7"
        )
        page = make_page(None)
        page.evaluate = AsyncMock(side_effect=RuntimeError("context destroyed"))

        result = await extract_address(page, interceptor)

        assert result.address == XRP
        assert result.memo == "7"
        assert result.source == "api-header"

    async def test_nothing_found(self):
        page = make_page(collected(body="Waiting"))
        result = await extract_address(page)
        assert result == ExtractedAddress()
        assert not result.found


@pytest.mark.asyncio
async def test_unexpected_document_result_is_a_probe_failure():
    page = make_page("not a dict")
    with pytest.raises(ProbeError):
        await scan_document(page)

    result = await extract_address(page)
    assert not result.found
