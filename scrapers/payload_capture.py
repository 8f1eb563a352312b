"""
Structured-payload capture.

A `PayloadCapture` listens to a page's network responses and resolves with
the first JSON body the target recognises as its product payload. The wait
races a fixed deadline measured from subscription; losing the race yields a
`FallbackMarker` instead of an error. The response listener is removed on the
first match, on the deadline and on exit, whichever comes first.

    async with PayloadCapture(page, descriptor.accepts_payload, 30.0) as capture:
        await adapter.navigate_to_search(page, term)
        ...
        payload = await capture.wait()
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from .base_scraper import FallbackMarker, Payload

logger = logging.getLogger(__name__)

# Resource types that carry API data rather than static assets
DATA_FETCH_TYPES = frozenset({"xhr", "fetch"})


class PayloadCapture:

    def __init__(
        self,
        page,
        accepts: Callable[[str, Any], bool],
        timeout_s: float,
        label: str = "",
    ):
        self._page = page
        self._accepts = accepts
        self._timeout_s = timeout_s
        self._label = label or "payload"
        self._future: Optional[asyncio.Future] = None
        self._deadline = 0.0
        self._subscribed = False
        # Same object for on() and remove_listener()
        self._handler = self._on_response

    # ── Subscription ──────────────────────────────────────────────────────────

    def subscribe(self) -> None:
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._deadline = loop.time() + self._timeout_s
        self._page.on("response", self._handler)
        self._subscribed = True

    def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        self._subscribed = False
        try:
            self._page.remove_listener("response", self._handler)
        except Exception as exc:
            logger.debug("[%s] remove_listener failed: %s", self._label, exc)

    @property
    def captured(self) -> bool:
        return bool(self._future and self._future.done() and not self._future.cancelled())

    async def __aenter__(self) -> "PayloadCapture":
        self.subscribe()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()
        if self._future and not self._future.done():
            self._future.cancel()

    # ── Listener ──────────────────────────────────────────────────────────────

    async def _on_response(self, response) -> None:
        if self._future is None or self._future.done():
            return
        try:
            if response.request.resource_type not in DATA_FETCH_TYPES:
                return
            body = await response.json()
        except Exception:
            # Not JSON, or the body is gone
            return
        if self._future.done():
            return
        url = response.url
        if self._accepts(url, body):
            logger.info("[%s] Captured product JSON from: %s", self._label, url)
            self._future.set_result(body)
            self.unsubscribe()

    # ── Race ──────────────────────────────────────────────────────────────────

    async def wait(self) -> Payload:
        """The captured body, or a FallbackMarker once the deadline has passed."""
        if self._future is None:
            raise RuntimeError("PayloadCapture.wait() called before subscribe()")
        if self.captured:
            self.unsubscribe()
            return self._future.result()
        remaining = max(0.0, self._deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=remaining)
        except asyncio.TimeoutError:
            logger.info(
                "[%s] No product JSON within %.0fs, falling back to DOM extraction",
                self._label, self._timeout_s,
            )
            return FallbackMarker(self._page)
        finally:
            self.unsubscribe()
