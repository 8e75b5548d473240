"""
Deposit address extraction: DOM -> iframe -> network (cascading strategy)

Each tier returns an ``ExtractedAddress`` or ``None``; a tier that errors is
logged and treated as "found nothing" so the next tier still runs. The
first tier with an address wins and later tiers are never invoked.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .exceptions import ProbeError
from .patterns import (
    ADDRESS_CONTAINER_SELECTORS,
    FRAME_CONTENT_KEYWORDS,
    FRAME_URL_KEYWORDS,
    MEMO_CONTEXT_PATTERN,
    MEMO_CONTEXT_WINDOW,
    MEMO_SELECTORS,
    detect_network,
    find_address,
)

logger = logging.getLogger(__name__)

SOURCE_DOM = "dom"
SOURCE_IFRAME = "iframe"


@dataclass
class ExtractedAddress:
    address: Optional[str] = None
    network: Optional[str] = None
    memo: Optional[str] = None
    source: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.address)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


# Returns raw texts only; matching happens in Python against the pattern table
COLLECT_ADDRESS_TEXT_JS = """
([addressSelectors, memoSelectors]) => {
    const textOf = (el) => el.getAttribute('data-clipboard-text') ||
        el.getAttribute('data-copy') || el.value || el.innerText || el.textContent || '';
    const candidates = [];
    for (const sel of addressSelectors) {
        let elements = [];
        try { elements = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of elements) {
            const text = textOf(el);
            if (text) candidates.push(text.slice(0, 1000));
        }
    }
    const memos = [];
    for (const sel of memoSelectors) {
        let elements = [];
        try { elements = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of elements) {
            const text = (el.value || el.innerText || el.textContent || '').trim();
            if (text) memos.push(text.slice(0, 100));
        }
    }
    return {
        candidates: candidates.slice(0, 300),
        memo_candidates: memos.slice(0, 50),
        body: document.body ? (document.body.innerText || '') : ''
    };
}
"""

FRAME_TEXT_JS = """
() => (document.body && document.body.innerText || '').toLowerCase()
"""


def find_memo(memo_candidates: List[str], body: str, address: Optional[str]) -> Optional[str]:
    """Numeric destination tag: a purely numeric memo container, else a
    "memo/tag: 12345" phrase near the address."""
    for text in memo_candidates or []:
        text = (text or "").strip()
        if text.isdigit() and len(text) <= 20:
            return text

    if not body or not address or address not in body:
        return None
    pos = body.index(address)
    context = body[max(0, pos - MEMO_CONTEXT_WINDOW):pos + len(address) + MEMO_CONTEXT_WINDOW]
    match = MEMO_CONTEXT_PATTERN.search(context)
    return match.group(1) if match else None


def match_collected(collected: Optional[Dict[str, Any]]) -> Optional[ExtractedAddress]:
    """Pick the address out of texts gathered by ``COLLECT_ADDRESS_TEXT_JS``."""
    collected = collected or {}
    body = collected.get("body") or ""
    address = None
    for text in collected.get("candidates") or []:
        address = find_address(text)
        if address:
            break
    if not address:
        address = find_address(body)
    if not address:
        return None
    return ExtractedAddress(
        address=address,
        network=detect_network(address),
        memo=find_memo(collected.get("memo_candidates") or [], body, address),
    )


async def scan_document(document) -> Optional[ExtractedAddress]:
    """Likely address containers first, then the whole visible text."""
    collected = await document.evaluate(
        COLLECT_ADDRESS_TEXT_JS,
        [list(ADDRESS_CONTAINER_SELECTORS), list(MEMO_SELECTORS)],
    )
    if collected is not None and not isinstance(collected, dict):
        raise ProbeError(f"Unexpected document scan result: {type(collected).__name__}")
    found = match_collected(collected)
    if found:
        found.source = SOURCE_DOM
    return found


async def _frame_is_relevant(frame) -> bool:
    frame_url = (frame.url or "").lower()
    if any(kw in frame_url for kw in FRAME_URL_KEYWORDS):
        return True
    try:
        text = await frame.evaluate(FRAME_TEXT_JS) or ""
    except Exception as e:
        logger.debug(f"Frame content unreadable ({frame.url}): {e}")
        return False
    return any(kw in text for kw in FRAME_CONTENT_KEYWORDS)


async def scan_frames(page) -> Optional[ExtractedAddress]:
    """Payment gateways embedded as iframes; the main frame is skipped."""
    main = page.main_frame
    for frame in page.frames:
        if frame is main:
            continue
        if not await _frame_is_relevant(frame):
            continue
        try:
            found = await scan_document(frame)
        except Exception as e:
            logger.debug(f"Frame scan failed ({frame.url}): {e}")
            continue
        if found:
            found.source = SOURCE_IFRAME
            logger.info(f"Found address in iframe: {frame.url}")
            return found
    return None


def from_interceptor(interceptor) -> Optional[ExtractedAddress]:
    best = interceptor.get_best_address() if interceptor is not None else None
    if best is None:
        return None
    return ExtractedAddress(
        address=best.address,
        network=best.network or detect_network(best.address),
        memo=best.memo,
        source=best.source,
    )


async def _run_tier(name: str, tier: Callable[[], Awaitable[Optional[ExtractedAddress]]]) -> Optional[ExtractedAddress]:
    try:
        return await tier()
    except Exception as e:
        logger.warning(f"Address tier '{name}' failed: {e}")
        return None


async def extract_address(page, interceptor=None) -> ExtractedAddress:
    """
    Run the cascade: document, then sub-documents, then network traffic.

    Args:
        page: Playwright page
        interceptor: Optional running NetworkInterceptor

    Returns:
        ExtractedAddress; ``found`` is False when every tier came up empty
    """
    result = await _run_tier(SOURCE_DOM, lambda: scan_document(page))
    if result is None:
        result = await _run_tier(SOURCE_IFRAME, lambda: scan_frames(page))
    if result is None and interceptor is not None:
        result = from_interceptor(interceptor)

    if result is None:
        logger.info("No deposit address found")
        return ExtractedAddress()

    if not result.network:
        result.network = detect_network(result.address)
    logger.info(f"Deposit address {result.address} ({result.network or '?'}) via {result.source}")
    return result
