"""
Network Interception - mine API responses for deposit addresses and limits

Many exchangers render the deposit address late, inside a canvas, or not at
all, while the JSON that feeds the page carries it in plain text. During a
capture window every completed response is screened:

1. static assets are skipped outright
2. interesting URLs (api/exchange/order/wallet/...) and JSON/plain-text
   bodies are processed
3. header values and bodies are searched for addresses; JSON bodies are
   walked for address-like keys (with sibling network/memo context) and
   minimum-amount keys

The response callback runs interleaved with the caller's own awaited steps.
It keeps no assumptions about caller state and never raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import config
from .json_tree import JsonValue, as_positive_number, looks_like_json, parse_json, walk
from .patterns import (
    ADDRESS_KEYS,
    ADDRESS_PATTERNS,
    MEMO_KEYS,
    MAX_AMOUNT_KEYS,
    MIN_AMOUNT_KEYS,
    NETWORK_KEYS,
    RATE_KEYS,
    SKIP_EXTENSIONS,
    detect_network,
    is_interesting_url,
    key_matches,
)
from .surface import ResponseRecord, ResponseSource, response_source_for

logger = logging.getLogger(__name__)

SOURCE_JSON = "api-json"
SOURCE_HEADER = "api-header"
SOURCE_TEXT = "api-text"


@dataclass
class InterceptedAddress:
    address: str
    source: str
    url: str
    network: Optional[str] = None
    memo: Optional[str] = None


@dataclass
class InterceptedMinAmount:
    min_amount: float
    url: str
    max_amount: Optional[float] = None
    rate: Optional[float] = None


class NetworkInterceptor:
    """
    Passive response miner for one page.

    Usage:
        interceptor = NetworkInterceptor(page)
        interceptor.start()
        ...  # fill and submit the form
        best = await interceptor.wait_for_address(timeout_ms=10000)
        interceptor.stop()
    """

    def __init__(self, source: Any, max_depth: Optional[int] = None, poll_ms: Optional[int] = None):
        self.source: ResponseSource = response_source_for(source)
        self.max_depth = config.json_max_depth if max_depth is None else max_depth
        self.poll_ms = config.address_poll_ms if poll_ms is None else poll_ms
        self._addresses: List[InterceptedAddress] = []
        self._min_amounts: List[InterceptedMinAmount] = []
        self._seen_addresses = set()
        self._listening = False
        self._generation = 0
        self._stopped = asyncio.Event()

    @property
    def is_listening(self) -> bool:
        return self._listening

    def start(self) -> None:
        """Attach to the response stream and clear previous findings."""
        if self._listening:
            return
        self._addresses = []
        self._min_amounts = []
        self._seen_addresses = set()
        self._stopped = asyncio.Event()
        self._generation += 1
        self.source.subscribe(self.handle_response)
        self._listening = True
        logger.info("NetworkInterceptor: started listening")

    def stop(self) -> None:
        """Detach from the response stream; pending waits return promptly."""
        if not self._listening:
            return
        self.source.unsubscribe(self.handle_response)
        self._listening = False
        self._stopped.set()
        logger.info(
            f"NetworkInterceptor: stopped. Found {len(self._addresses)} addresses, "
            f"{len(self._min_amounts)} min amounts"
        )

    def get_addresses(self) -> List[InterceptedAddress]:
        return list(self._addresses)

    def get_best_address(self) -> Optional[InterceptedAddress]:
        """First discovered; earlier responses are treated as more authoritative."""
        return self._addresses[0] if self._addresses else None

    def get_min_amounts(self) -> List[InterceptedMinAmount]:
        return list(self._min_amounts)

    def get_best_min_amount(self) -> Optional[InterceptedMinAmount]:
        return self._min_amounts[0] if self._min_amounts else None

    async def wait_for_address(self, timeout_ms: int = 15000) -> Optional[InterceptedAddress]:
        """Poll for the first address until found, timed out or stopped."""
        deadline = time.monotonic() + timeout_ms / 1000.0
        while True:
            best = self.get_best_address()
            if best is not None:
                return best
            remaining = deadline - time.monotonic()
            if remaining <= 0 or self._stopped.is_set():
                return None
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=min(self.poll_ms / 1000.0, remaining))
            except asyncio.TimeoutError:
                pass

    async def handle_response(self, record: ResponseRecord) -> None:
        """Response callback; per-response errors are logged and dropped."""
        try:
            await self._process(record, self._generation)
        except Exception as e:
            logger.debug(f"NetworkInterceptor: skipped {getattr(record, 'url', '?')}: {e}")

    def _is_current(self, generation: int) -> bool:
        return self._listening and generation == self._generation

    async def _process(self, record: ResponseRecord, generation: int) -> None:
        if not self._is_current(generation):
            return
        url = record.url or ""
        if record.status_code < 200 or record.status_code >= 400:
            return
        if SKIP_EXTENSIONS.search(url):
            return

        content_type = (record.content_type or "").lower()
        interesting = is_interesting_url(url)
        json_or_text = "json" in content_type or "text/plain" in content_type
        if not interesting and not json_or_text:
            return

        self._scan_headers(record.headers, url)

        body = await record.read_body()
        # the window may have been stopped or restarted while the body was read
        if not body or not self._is_current(generation):
            return

        if "json" in content_type or looks_like_json(body):
            try:
                document = parse_json(body)
            except ValueError:
                self._scan_text(body, url)
                return
            self._scan_json_addresses(document, url)
            self._scan_json_min_amount(document, url)
        elif interesting:
            self._scan_text(body, url)

    def _scan_headers(self, headers: Optional[Dict[str, str]], url: str) -> None:
        for value in (headers or {}).values():
            if not value:
                continue
            for pattern in ADDRESS_PATTERNS:
                match = pattern.search(value)
                if match:
                    self._add_address(InterceptedAddress(address=match.group(1), source=SOURCE_HEADER, url=url))

    def _scan_text(self, text: str, url: str) -> None:
        for pattern in ADDRESS_PATTERNS:
            match = pattern.search(text)
            if match:
                self._add_address(InterceptedAddress(address=match.group(1), source=SOURCE_TEXT, url=url))

    def _scan_json_addresses(self, document: JsonValue, url: str) -> None:
        # one address per object; siblings give network/memo context
        claimed = set()
        for entry in walk(document, self.max_depth):
            parent = entry.parent
            if parent is None or not isinstance(entry.value, str) or id(parent) in claimed:
                continue
            if not key_matches(entry.key, ADDRESS_KEYS):
                continue
            for pattern in ADDRESS_PATTERNS:
                match = pattern.search(entry.value)
                if match:
                    network, memo = _sibling_context(parent)
                    self._add_address(InterceptedAddress(
                        address=match.group(1),
                        source=SOURCE_JSON,
                        url=url,
                        network=network,
                        memo=memo,
                    ))
                    claimed.add(id(parent))
                    break

    def _scan_json_min_amount(self, document: JsonValue, url: str) -> None:
        for entry in walk(document, self.max_depth):
            if entry.parent is None or not key_matches(entry.key, MIN_AMOUNT_KEYS):
                continue
            amount = as_positive_number(entry.value)
            if amount is None:
                continue
            if any(m.url == url for m in self._min_amounts):
                return
            max_amount, rate = _limit_context(entry.parent)
            self._min_amounts.append(InterceptedMinAmount(
                min_amount=amount, url=url, max_amount=max_amount, rate=rate,
            ))
            logger.info(f"NetworkInterceptor: found min_amount={amount} in key \"{entry.key}\" from {url}")
            return

    def _add_address(self, found: InterceptedAddress) -> None:
        if found.address in self._seen_addresses:
            return
        self._seen_addresses.add(found.address)
        if not found.network:
            found.network = detect_network(found.address)
        self._addresses.append(found)
        logger.info(
            f"NetworkInterceptor: found address {found.address} ({found.network or '?'}) "
            f"from {found.source} @ {found.url}"
        )


def _sibling_context(obj: Dict[str, Any]):
    network = None
    memo = None
    for key, value in obj.items():
        if key_matches(key, NETWORK_KEYS) and isinstance(value, str) and value:
            network = value
        if key_matches(key, MEMO_KEYS) and not isinstance(value, bool) and isinstance(value, (str, int, float)):
            memo = str(value)
    return network, memo


def _limit_context(obj: Dict[str, Any]):
    max_amount = None
    rate = None
    for key, value in obj.items():
        if max_amount is None and key_matches(key, MAX_AMOUNT_KEYS):
            max_amount = as_positive_number(value)
        if rate is None and key_matches(key, RATE_KEYS):
            rate = as_positive_number(value)
    return max_amount, rate
