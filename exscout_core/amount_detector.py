"""
Minimum amount detection for an exchange direction.

Levels, tried in order until one yields a value:
1. API        - listen to JSON responses after nudging the amount input
2. HTML attr  - ``min`` attribute or "0.001 - 10 BTC" placeholder range
3. Validation - type a tiny amount and read the error/hint text
4. Ladder     - double a probe amount until the submit control enables
5. Fallback   - caller's default, returned as is

Detected values get a +1% margin (rounded up at 8 decimals) so the site's
own boundary check never rejects them, and are cached per
(domain, from, to) in a caller-owned ``AmountCache``.

Usage:
    cache = AmountCache()
    result = await detect_minimum_amount(page, "BTC", "USDT", 0.005, cache=cache)
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .config import Config, config
from .exceptions import ProbeError
from .field_classifier import format_amount
from .json_tree import as_positive_number, find_min_amount, parse_json
from .patterns import (
    AMOUNT_INPUT_SELECTORS,
    ERROR_HINT_SELECTORS,
    MIN_AMOUNT_KEYS,
    PLACEHOLDER_RANGE_PATTERN,
    SUBMIT_PROBE_SELECTOR,
    VALIDATION_PROBE_VALUE,
    find_min_amount_phrase,
    ladder_seed,
    parse_amount_text,
)
from .surface import ResponseRecord, ResponseSource, page_domain, response_source_for

logger = logging.getLogger(__name__)

MARGIN = Decimal("1.01")
MARGIN_QUANTUM = Decimal("0.00000001")
RATE_REFRESH_PAUSE_MS = 300


class DetectionMethod(str, Enum):
    API = "api"
    HTML_ATTR = "html-attr"
    VALIDATION = "validation"
    LADDER = "ladder"
    FALLBACK = "fallback"


METHOD_CONFIDENCE: Dict[DetectionMethod, float] = {
    DetectionMethod.API: 0.95,
    DetectionMethod.HTML_ATTR: 0.7,
    DetectionMethod.VALIDATION: 0.85,
    DetectionMethod.LADDER: 0.6,
    DetectionMethod.FALLBACK: 0.3,
}


@dataclass(frozen=True)
class DetectionResult:
    amount: float
    method: DetectionMethod
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "method": self.method.value, "confidence": self.confidence}


def add_margin(amount: float) -> float:
    """+1%, rounded up to 8 decimal places. Raises ValueError for non-finite amounts."""
    if not math.isfinite(amount):
        raise ValueError(f"non-finite amount: {amount}")
    value = (Decimal(str(amount)) * MARGIN).quantize(MARGIN_QUANTUM, rounding=ROUND_CEILING)
    return float(value)


CacheKey = Tuple[str, str, str]


class AmountCache:
    """Time-boxed results per (domain, from, to). Owned by the caller."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = config.amount_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[DetectionResult, float]] = {}

    @staticmethod
    def key(domain: str, from_currency: str, to_currency: str) -> CacheKey:
        return (domain, (from_currency or "").upper(), (to_currency or "").upper())

    def get(self, key: CacheKey) -> Optional[DetectionResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, detected_at = entry
        if self._clock() - detected_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return result

    def put(self, key: CacheKey, result: DetectionResult) -> None:
        self._entries[key] = (result, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


COLLECT_AMOUNT_ATTRS_JS = """
(selectors) => {
    const out = [];
    for (const sel of selectors) {
        let inputs = [];
        try { inputs = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of inputs) {
            if (el.offsetParent === null) continue;  // hidden
            out.push({ min: el.getAttribute('min') || '', placeholder: el.placeholder || '' });
        }
    }
    return out;
}
"""

COLLECT_HINT_TEXT_JS = """
(selectors) => {
    const texts = [];
    for (const sel of selectors) {
        let els = [];
        try { els = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of els) {
            if (el.offsetParent === null) continue;  // hidden
            const text = el.innerText || '';
            if (text && /\\d/.test(text)) texts.push(text.slice(0, 500));
        }
    }
    return texts;
}
"""

SUBMIT_ENABLED_JS = """
(selector) => {
    for (const el of Array.from(document.querySelectorAll(selector))) {
        if (el.offsetParent !== null && !el.disabled) return true;
    }
    return false;
}
"""


def parse_amount_attrs(items: Optional[List[Dict[str, Any]]]) -> Optional[float]:
    """First positive ``min`` attribute or placeholder range lower bound."""
    for item in items or []:
        value = as_positive_number(item.get("min") or None)
        if value:
            return value
        match = PLACEHOLDER_RANGE_PATTERN.search(item.get("placeholder") or "")
        if match:
            value = parse_amount_text(match.group(1))
            if value:
                return value
    return None


class AmountDetector:
    """Runs the minimum-amount cascade against one page."""

    def __init__(
        self,
        page,
        cache: Optional[AmountCache] = None,
        settings: Optional[Config] = None,
        responses: Optional[ResponseSource] = None,
    ):
        self.page = page
        self.settings = settings or config
        self.cache = cache if cache is not None else AmountCache(self.settings.amount_cache_ttl_seconds)
        self.responses = responses if responses is not None else response_source_for(page)

    async def detect_minimum(
        self,
        from_currency: str,
        to_currency: str,
        fallback_amount: float,
    ) -> DetectionResult:
        key = AmountCache.key(page_domain(self.page), from_currency, to_currency)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"AmountDetector: cached amount {cached.amount} for {':'.join(key)}")
            return cached

        levels: List[Tuple[DetectionMethod, Callable[[], Awaitable[Optional[float]]]]] = [
            (DetectionMethod.API, self.detect_from_api),
            (DetectionMethod.HTML_ATTR, self.detect_from_html_attrs),
            (DetectionMethod.VALIDATION, self.detect_from_validation),
            (DetectionMethod.LADDER, lambda: self.detect_by_ladder(from_currency)),
        ]
        for method, probe in levels:
            detected = await self._run_probe(method, probe)
            if detected:
                raw, amount = detected
                result = DetectionResult(amount=amount, method=method, confidence=METHOD_CONFIDENCE[method])
                self.cache.put(key, result)
                logger.info(f"AmountDetector: {method.value} detected min={raw}, using {amount}")
                return result

        logger.info(f"AmountDetector: using fallback amount {fallback_amount}")
        return DetectionResult(
            amount=fallback_amount,
            method=DetectionMethod.FALLBACK,
            confidence=METHOD_CONFIDENCE[DetectionMethod.FALLBACK],
        )

    async def _run_probe(self, method: DetectionMethod, probe) -> Optional[Tuple[float, float]]:
        """Raw value and its margin-adjusted amount, or None when the level fails."""
        try:
            raw = await probe()
            if not raw:
                return None
            return raw, add_margin(raw)
        except Exception as e:
            logger.debug(f"AmountDetector: {method.value} probe failed: {e}")
            return None

    async def detect_from_api(self) -> Optional[float]:
        loop = asyncio.get_running_loop()
        found: asyncio.Future = loop.create_future()
        deadline = loop.time() + self.settings.api_probe_timeout_ms / 1000.0

        async def on_response(record: ResponseRecord) -> None:
            if found.done():
                return
            try:
                if "json" not in (record.content_type or "").lower():
                    return
                body = await record.read_body()
                if not body:
                    return
                amount = find_min_amount(parse_json(body), MIN_AMOUNT_KEYS, self.settings.json_max_depth)
            except Exception as e:
                logger.debug(f"AmountDetector: unreadable response {record.url}: {e}")
                return
            if amount is not None and not found.done():
                found.set_result(amount)

        self.responses.subscribe(on_response)
        try:
            await self._trigger_rate_refresh()
            remaining = max(deadline - loop.time(), 0)
            return await asyncio.wait_for(found, timeout=remaining)
        except asyncio.TimeoutError:
            return None
        finally:
            self.responses.unsubscribe(on_response)

    async def detect_from_html_attrs(self) -> Optional[float]:
        items = await self.page.evaluate(COLLECT_AMOUNT_ATTRS_JS, list(AMOUNT_INPUT_SELECTORS))
        if items is not None and not isinstance(items, list):
            raise ProbeError(f"Unexpected attribute scan result: {type(items).__name__}")
        return parse_amount_attrs(items)

    async def detect_from_validation(self) -> Optional[float]:
        amount_input = await self._find_amount_input()
        if not amount_input:
            return None

        original = await self._input_value(amount_input)
        try:
            await amount_input.fill(VALIDATION_PROBE_VALUE)
            await amount_input.dispatch_event("input")
            await amount_input.dispatch_event("change")
            await self.page.wait_for_timeout(self.settings.validation_settle_ms)

            texts = await self.page.evaluate(COLLECT_HINT_TEXT_JS, list(ERROR_HINT_SELECTORS)) or []
            for text in texts:
                value = find_min_amount_phrase(text)
                if value:
                    return value
            return None
        finally:
            await self._restore(amount_input, original)

    async def detect_by_ladder(self, currency: str) -> Optional[float]:
        amount_input = await self._find_amount_input()
        if not amount_input:
            return None

        original = await self._input_value(amount_input)
        probe = ladder_seed(currency)
        try:
            for i in range(self.settings.ladder_max_iterations):
                await amount_input.fill(format_amount(probe))
                await amount_input.dispatch_event("input")
                await self.page.wait_for_timeout(self.settings.ladder_step_delay_ms)

                if await self.page.evaluate(SUBMIT_ENABLED_JS, SUBMIT_PROBE_SELECTOR):
                    return probe if i == 0 else probe / 2
                probe *= 2
            return None
        finally:
            await self._restore(amount_input, original)

    async def _find_amount_input(self):
        for selector in AMOUNT_INPUT_SELECTORS:
            el = await self.page.query_selector(selector)
            if not el:
                continue
            try:
                if await el.is_visible():
                    return el
            except Exception as e:
                logger.debug(f"Visibility check failed for {selector}: {e}")
        return None

    @staticmethod
    async def _input_value(el) -> str:
        try:
            return await el.input_value() or ""
        except Exception:
            return ""

    @staticmethod
    async def _restore(el, original: str) -> None:
        try:
            await el.fill(original)
            await el.dispatch_event("input")
        except Exception as e:
            logger.warning(f"AmountDetector: could not restore amount field: {e}")

    async def _trigger_rate_refresh(self) -> None:
        try:
            amount_input = await self._find_amount_input()
            if amount_input:
                await amount_input.click()
                await self.page.wait_for_timeout(RATE_REFRESH_PAUSE_MS)
        except Exception as e:
            logger.debug(f"AmountDetector: rate refresh nudge failed: {e}")


async def detect_minimum_amount(
    page,
    from_currency: str,
    to_currency: str,
    fallback_amount: float,
    cache: Optional[AmountCache] = None,
    settings: Optional[Config] = None,
    responses: Optional[ResponseSource] = None,
) -> DetectionResult:
    """One-shot helper around ``AmountDetector.detect_minimum``."""
    detector = AmountDetector(page, cache=cache, settings=settings, responses=responses)
    return await detector.detect_minimum(from_currency, to_currency, fallback_amount)
