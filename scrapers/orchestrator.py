"""
Search orchestrator.

Runs every target adapter concurrently against one search term and reports
each target's progress as it happens. Per target the protocol is:

    skipped                      (location never confirmed; terminal)
    loading → navigating         (navigation failure → error; terminal)
            → loading_content → extracting → success | empty | error

The structured-payload listener is subscribed before navigation starts and
raced against a fixed deadline; a lost race hands the adapter a
`FallbackMarker` so it extracts from the DOM instead. If extraction still
throws or finds nothing, one more DOM-only attempt is made before the target
is marked empty/error.

Location setting and add-to-cart are fanned out the same way.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from shared.constants import ALL_TARGETS, TARGET_BLINKIT, TARGET_DISPLAY_NAMES, TARGET_INSTAMART, TARGET_ZEPTO

from .base_scraper import CartResult, FallbackMarker, Product, ScrapeTimeouts, TargetAdapter
from .blinkit_scraper import BlinkitScraper
from .instamart_scraper import InstamartScraper
from .payload_capture import PayloadCapture
from .zepto_scraper import ZeptoScraper

logger = logging.getLogger(__name__)

DEFAULT_PAYLOAD_TIMEOUT_S = 30.0


class SearchStatus(str, Enum):
    SKIPPED = "skipped"
    LOADING = "loading"
    NAVIGATING = "navigating"
    LOADING_CONTENT = "loading_content"
    EXTRACTING = "extracting"
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (SearchStatus.SKIPPED, SearchStatus.SUCCESS, SearchStatus.EMPTY, SearchStatus.ERROR)


# (target, status, message, has_products) -> None
ProgressCallback = Callable[[str, SearchStatus, str, bool], Awaitable[None]]


@dataclass
class TargetResult:
    target: str
    status: SearchStatus
    message: str
    products: list[Product] = field(default_factory=list)


@dataclass
class SearchOutcome:
    term: str
    results: dict[str, TargetResult]

    def products(self) -> dict[str, list[dict]]:
        return {t: [p.to_dict() for p in r.products] for t, r in self.results.items()}

    def product_count(self) -> dict[str, int]:
        counts = {t: len(r.products) for t, r in self.results.items()}
        counts["total"] = sum(counts.values())
        return counts

    @property
    def total(self) -> int:
        return sum(len(r.products) for r in self.results.values())


@dataclass
class LocationResult:
    service: str
    success: bool
    title: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"service": self.service, "success": self.success, "title": self.title}
        if self.error is not None:
            d["error"] = self.error
        return d


def default_adapters(timeouts: ScrapeTimeouts = None) -> dict[str, TargetAdapter]:
    """One adapter per supported target, sharing the same wait bounds."""
    timeouts = timeouts or ScrapeTimeouts()
    return {
        TARGET_BLINKIT: BlinkitScraper(timeouts),
        TARGET_ZEPTO: ZeptoScraper(timeouts),
        TARGET_INSTAMART: InstamartScraper(timeouts),
    }


def _display(target: str) -> str:
    return TARGET_DISPLAY_NAMES.get(target, target)


class SearchOrchestrator:

    def __init__(self, adapters: dict[str, TargetAdapter], payload_timeout_s: float = DEFAULT_PAYLOAD_TIMEOUT_S):
        self.adapters = adapters
        self.payload_timeout_s = payload_timeout_s

    @property
    def targets(self) -> list[str]:
        ordered = [t for t in ALL_TARGETS if t in self.adapters]
        return ordered + [t for t in self.adapters if t not in ordered]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        pages: dict[str, Any],
        location_status: dict[str, bool],
        term: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SearchOutcome:
        """Search every target concurrently; returns once all of them have settled."""
        targets = self.targets
        results = await asyncio.gather(*(
            self._settled(t, pages.get(t), bool(location_status.get(t)), term, on_progress)
            for t in targets
        ))
        outcome = SearchOutcome(term, dict(zip(targets, results)))
        logger.info("Search %r settled: %s", term, outcome.product_count())
        return outcome

    async def _settled(self, target, page, location_ok, term, on_progress) -> TargetResult:
        """`_run_target` with any escaping exception turned into an error result."""
        try:
            return await self._run_target(target, page, location_ok, term, on_progress)
        except Exception as exc:
            logger.exception("Search on %s failed", target)
            msg = f"Search error: {exc}"
            await self._emit(on_progress, target, SearchStatus.ERROR, msg)
            return TargetResult(target, SearchStatus.ERROR, msg)

    async def _run_target(self, target, page, location_ok, term, on_progress) -> TargetResult:
        adapter = self.adapters[target]
        name = _display(target)

        async def step(status: SearchStatus, message: str, products: list = None) -> TargetResult:
            await self._emit(on_progress, target, status, message, bool(products))
            return TargetResult(target, status, message, products or [])

        if not location_ok:
            return await step(SearchStatus.SKIPPED, f"Location not set for {name}.")
        if page is None:
            return await step(SearchStatus.ERROR, f"No browser available for {name}.")

        await step(SearchStatus.LOADING, f"Searching on {name}...")

        async with PayloadCapture(page, adapter.descriptor.accepts_payload, self.payload_timeout_s, name) as capture:
            await step(SearchStatus.NAVIGATING, f"Navigating to {name} search...")
            if not await adapter.navigate_to_search(page, term):
                return await step(SearchStatus.ERROR, f"Failed to navigate to {name} search page.")

            await step(SearchStatus.LOADING_CONTENT, f"Waiting for {name} content to load...")
            if not await adapter.ensure_content_loaded(page):
                logger.info("[%s] Content not confirmed, extracting anyway", name)

            await step(SearchStatus.EXTRACTING, f"Extracting {name} products...")
            payload = await capture.wait()

        products, failed = await self._extract(adapter, page, payload, name)
        if products:
            return await step(SearchStatus.SUCCESS, f"Found {len(products)} products on {name}.", products)
        if failed:
            return await step(SearchStatus.ERROR, f"Failed to get product data from {name}.")
        return await step(SearchStatus.EMPTY, f"No products found on {name}.")

    @staticmethod
    async def _extract(adapter, page, payload, name) -> tuple[list[Product], bool]:
        """
        Extract from `payload`, then once more from the DOM if that raised or
        came back empty. Returns (products, every_attempt_raised).
        """
        first_raised = False
        try:
            products = await adapter.extract_product_information(payload)
            if products:
                return products, False
        except Exception as exc:
            logger.warning("[%s] Extraction failed: %s", name, exc)
            first_raised = True

        logger.info("[%s] Retrying extraction from the page DOM", name)
        try:
            products = await adapter.extract_product_information(
                FallbackMarker(page, reason="extraction retry")
            )
            return products or [], False
        except Exception as exc:
            logger.warning("[%s] DOM extraction retry failed: %s", name, exc)
            return [], first_raised

    @staticmethod
    async def _emit(on_progress, target, status, message, has_products=False) -> None:
        logger.log(logging.INFO if status.terminal else logging.DEBUG, "[%s] %s: %s", target, status.value, message)
        if on_progress is None:
            return
        try:
            await on_progress(target, status, message, has_products)
        except Exception as exc:
            # A dead listener must not stop the search itself
            logger.debug("Progress callback failed for %s: %s", target, exc)

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    async def set_location(
        self,
        pages: dict[str, Any],
        location: str,
        targets: Optional[Iterable[str]] = None,
    ) -> list[LocationResult]:
        """Set `location` on each of `targets` (all when omitted) concurrently."""
        chosen = self.targets if targets is None else list(dict.fromkeys(targets))
        return list(await asyncio.gather(*(
            self._set_one_location(t, pages.get(t), location) for t in chosen
        )))

    async def _set_one_location(self, target, page, location) -> LocationResult:
        adapter = self.adapters.get(target)
        if adapter is None:
            return LocationResult(target, False, error=f"Unknown service: {target}")
        if page is None:
            return LocationResult(target, False, error=f"No browser available for {_display(target)}")
        try:
            title = await adapter.set_location(page, location)
        except Exception as exc:
            logger.exception("Error setting %s location", _display(target))
            return LocationResult(target, False, error=str(exc))
        return LocationResult(target, bool(title), title or None)

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(self, target: str, page, product_id: str) -> CartResult:
        adapter = self.adapters.get(target)
        if adapter is None:
            return CartResult(False, f"Unknown service: {target}")
        if page is None:
            return CartResult(False, f"No browser available for {_display(target)}")
        try:
            return await adapter.add_to_cart(page, product_id)
        except Exception as exc:
            logger.exception("Add to cart failed on %s", target)
            return CartResult(False, f"Error adding product to cart: {exc}")
