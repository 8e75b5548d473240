"""
Browser surface boundary.

The detectors only need plain data out of the browser: evaluated structure,
sub-document lists and completed network exchanges. Playwright's async
``Page`` and ``Frame`` already provide the document half (``evaluate``,
``content``, ``frames``, ``main_frame``, ``query_selector``); this module
adds the response-stream half as an explicit subscription so the
interceptor and the API probe never touch Playwright ``Response`` objects.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class ResponseRecord:
    """One completed network exchange.

    ``body_text`` may be left ``None`` together with a ``body_loader``; the
    body is then fetched at most once, on the first ``read_body`` call, so
    responses filtered out by URL never pay for a body read.
    """
    url: str
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: str = ""
    body_text: Optional[str] = None
    body_loader: Optional[Callable[[], Awaitable[str]]] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if not self.content_type:
            self.content_type = header_value(self.headers, "content-type")

    async def read_body(self) -> str:
        if self.body_text is None:
            if self.body_loader is None:
                self.body_text = ""
            else:
                try:
                    self.body_text = await self.body_loader() or ""
                except Exception as e:
                    logger.debug(f"Body unavailable for {self.url}: {e}")
                    self.body_text = ""
        return self.body_text


ResponseCallback = Callable[[ResponseRecord], Awaitable[None]]


class ResponseSource(Protocol):
    """Completed-response subscription (one callback per exchange)."""

    def subscribe(self, callback: ResponseCallback) -> None:
        ...

    def unsubscribe(self, callback: ResponseCallback) -> None:
        ...


def header_value(headers: Optional[Dict[str, str]], name: str) -> str:
    if not headers:
        return ""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value or ""
    return ""


def to_response_record(response: Any) -> ResponseRecord:
    """Wrap a Playwright ``Response`` without reading its body yet."""
    headers = dict(response.headers or {})
    return ResponseRecord(
        url=response.url,
        status_code=response.status,
        headers=headers,
        body_loader=response.text,
    )


class PlaywrightResponseSource:
    """ResponseSource over ``page.on("response")``.

    Playwright schedules coroutine listeners as tasks on the page's loop, so
    callbacks interleave freely with whatever the caller is awaiting.
    """

    def __init__(self, page):
        self.page = page
        self._listeners: Dict[ResponseCallback, Callable[[Any], Awaitable[None]]] = {}

    def subscribe(self, callback: ResponseCallback) -> None:
        if callback in self._listeners:
            return

        async def listener(response) -> None:
            try:
                record = to_response_record(response)
            except Exception as e:
                logger.debug(f"Unreadable response skipped: {e}")
                return
            await callback(record)

        self._listeners[callback] = listener
        self.page.on("response", listener)

    def unsubscribe(self, callback: ResponseCallback) -> None:
        listener = self._listeners.pop(callback, None)
        if listener is not None:
            self.page.remove_listener("response", listener)


def response_source_for(target: Any) -> ResponseSource:
    """Accept either a ResponseSource or a Playwright page."""
    if hasattr(target, "subscribe") and hasattr(target, "unsubscribe"):
        return target
    return PlaywrightResponseSource(target)


def page_domain(page: Any) -> str:
    try:
        return urlparse(page.url).hostname or "unknown"
    except Exception:
        return "unknown"
