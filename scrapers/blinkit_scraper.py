"""
Blinkit target adapter — Playwright (async)

Search surface: https://blinkit.com/s/?q=<term>

Extraction strategies (in order):
  1. Structured payload — `response.snippets` from Blinkit's search API,
     captured off the network by the orchestrator
  2. DOM — product cards (`div[role="button"][id]`) on the rendered page

Location flow:
  1. Open blinkit.com (if not already there)
  2. Type into the locality box, pick the first suggestion
  3. Confirm via the ETA bar's subtitle
"""
import logging
from typing import Optional
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from shared.constants import TARGET_BLINKIT

from . import page_helpers as ph
from .base_scraper import (
    CartResult,
    FallbackMarker,
    Payload,
    Product,
    ScrapeTimeouts,
    TargetDescriptor,
    dig,
    has_identified_snippets,
    snippet_entries,
)
from .pricing import new_product_id, price_text

DESCRIPTOR = TargetDescriptor(
    name=TARGET_BLINKIT,
    display_name="Blinkit",
    home_url="https://blinkit.com/",
    search_url_template="https://blinkit.com/s/?q={term}",
    loading_selector='.LoadingIcon, .spinner, [class*="loading"], [class*="Loading"]',
    content_selectors=(
        'div[role="button"][id]',
        'div[id][data-pf="reset"]',
        ".ProductCard__Wrapper",
        '[data-testid*="product"]',
        "div.tw-flex-col[id]",
        'div[class*="product"]',
    ),
    no_results_selectors=(".EmptySearchResults", '[class*="empty"]', '[class*="no-results"]'),
    product_card_selector='div[role="button"][id]',
    payload_predicate=has_identified_snippets,
)

# Snippets that are layout, not products
_HEADER_WIDGETS = frozenset({"image_text_vr_type_header"})
_CONTAINER_IDS = frozenset({"product_container"})

# ── Location ──────────────────────────────────────────────────────────────────
_LOCALITY_INPUT = '[name="select-locality"]'
_FIRST_SUGGESTION = '[class*="LocationSearchList__LocationListContainer"]:nth-child(1)'
_ETA_CONTAINER = '[class^="LocationBar__EtaContainer-"]'
_ETA_SUBTITLE = '[class^="LocationBar__Subtitle-"]'

# ── DOM fallback ──────────────────────────────────────────────────────────────
_CARD_FIELDS = {
    "name": ['div[class*="line-clamp"]', ".tw-text-300.tw-font-semibold", '[class*="Product__ProductName"]'],
    "price": ['div[class*="tw-font-semibold"][class*="tw-text-200"]', '[class*="Product__Price"]'],
    "mrp": ["div.tw-line-through", '[class*="line-through"]'],
    "quantity": ['[class*="Product__ProductVariant"]', "div.tw-text-200.tw-font-medium"],
    "eta": ['[class*="tw-text-050"][class*="tw-uppercase"]'],
    "discount": ['[class*="offer"]', '[class*="Offer"]'],
    "image": "img",
    "soldOut": '[class*="OutOfStock"], [class*="out-of-stock"]',
}

# ── Cart ──────────────────────────────────────────────────────────────────────
_ADD_BUTTON = '.tw-rounded-md div, .tw-rounded-md button, [role="button"] div'


class BlinkitScraper:
    """Blinkit search, extraction, location and cart on one automation page."""

    name = TARGET_BLINKIT
    descriptor = DESCRIPTOR

    def __init__(self, timeouts: ScrapeTimeouts = None):
        self.timeouts = timeouts or ScrapeTimeouts()
        self._log = logging.getLogger(f"scrapers.{self.name}")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def navigate_to_search(self, page, term: str) -> bool:
        url = self.descriptor.search_url(quote(term, safe=""))
        self._log.info("[Blinkit] Going to: %s", url)
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.timeouts.navigation_ms)
            self._log.debug("[Blinkit] Current page URL: %s", page.url)
            await ph.settle(page, self.timeouts.settle_ms)
            return True
        except PlaywrightError as exc:
            self._log.warning("[Blinkit] Error navigating to search URL: %s", exc)
            return False

    async def ensure_content_loaded(self, page) -> bool:
        t = self.timeouts
        try:
            await ph.wait_for_loader_to_clear(page, self.descriptor.loading_selector, t.loader_ms, self._log)

            if await ph.wait_for_any(page, self.descriptor.content_selectors, t.content_marker_ms, self._log):
                return True

            if await ph.has_any(page, self.descriptor.no_results_selectors):
                self._log.info("[Blinkit] Found 'no results' indicator")
                return True

            self._log.info("[Blinkit] No standard content selectors found, waiting extra time...")
            await ph.settle(page, t.heuristic_wait_ms)
            found = await ph.has_generic_content(page)
            if found:
                self._log.info("[Blinkit] Found generic content indicators")
            return found
        except Exception as exc:
            self._log.warning("[Blinkit] Error ensuring content loaded: %s", exc)
            return True

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_product_information(self, payload: Payload) -> list[Product]:
        if isinstance(payload, FallbackMarker):
            return await self._extract_dom(payload.page)
        return self._extract_structured(payload)

    def _extract_structured(self, payload) -> list[Product]:
        snippets = snippet_entries(payload)
        if not snippets:
            self._log.warning("[Blinkit] Payload has no 'response.snippets' array")
            return []

        products = []
        for idx, snip in enumerate(snippets):
            data = snip.get("data") if isinstance(snip, dict) else None
            if (
                not isinstance(data, dict)
                or snip.get("widget_type") in _HEADER_WIDGETS
                or not data.get("name")
                or not data.get("identity")
                or dig(data, "identity", "id") in _CONTAINER_IDS
            ):
                self._log.debug("[Blinkit] Skipping snippet %d: not a product", idx)
                continue
            try:
                products.append(self._product_from_snippet(data, idx))
            except Exception as exc:
                self._log.warning("[Blinkit] Skipping malformed snippet %d: %s", idx, exc)

        self._log.info("[Blinkit] Processed %d products from JSON response", len(products))
        return products

    def _product_from_snippet(self, raw: dict, idx: int) -> Product:
        name = raw["name"]
        if isinstance(name, dict):
            name = name.get("text")
        price = dig(raw, "normal_price", "text")
        if not price and isinstance(raw.get("price"), (int, float)):
            price = price_text(raw["price"])

        if "is_sold_out" in raw:
            available = not raw["is_sold_out"]
        elif "inventory" in raw:
            available = (raw.get("inventory") or 0) > 0
        else:
            available = True

        offer = dig(raw, "offer_tag", "title", "text")
        return Product(
            id=str(dig(raw, "identity", "id") or f"product_{idx}"),
            name=str(name or "Product Name Not Available"),
            price=price or "Price Not Available",
            original_price=dig(raw, "mrp", "text"),
            quantity=dig(raw, "variant", "text", default="N/A"),
            delivery_time=dig(raw, "eta_tag", "title", "text", default="N/A"),
            discount=offer.replace("\n", " ") if offer else None,
            image_url=dig(raw, "image", "url", default=""),
            available=bool(available),
            source=self.name,
        )

    async def _extract_dom(self, page) -> list[Product]:
        try:
            cards = await ph.read_product_cards(page, self.descriptor.product_card_selector, _CARD_FIELDS)
        except Exception as exc:
            self._log.warning("[Blinkit] DOM extraction failed: %s", exc)
            return []

        products = []
        for card in cards:
            try:
                if not card.get("name"):
                    continue
                products.append(Product(
                    id=card.get("id") or new_product_id(self.name),
                    name=card["name"],
                    price=price_text(card.get("price"), "Price Not Available"),
                    original_price=price_text(card.get("mrp")),
                    quantity=card.get("quantity") or "N/A",
                    delivery_time=card.get("eta") or "N/A",
                    discount=card.get("discount") or None,
                    image_url=card.get("image") or "",
                    available=not card.get("soldOut"),
                    source=self.name,
                ))
            except Exception as exc:
                self._log.warning("[Blinkit] Skipping malformed card: %s", exc)
        self._log.info("[Blinkit] Extracted %d products from DOM", len(products))
        return products

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    async def set_location(self, page, location: str) -> Optional[str]:
        self._log.info("[Blinkit] Setting location to: %s", location)
        return await ph.retry_location(
            page,
            lambda: self._attempt_location(page, location),
            self.timeouts.location_attempts,
            self.timeouts.location_page_ms,
            self._log,
        )

    async def _attempt_location(self, page, location: str) -> Optional[str]:
        step = self.timeouts.location_step_ms
        try:
            if "blinkit.com" not in page.url:
                await page.goto(self.descriptor.home_url, wait_until="domcontentloaded",
                                timeout=self.timeouts.location_page_ms)
            await page.wait_for_selector(_LOCALITY_INPUT, timeout=step)
            await page.click(_LOCALITY_INPUT, timeout=step)
            await page.wait_for_selector(f"{_LOCALITY_INPUT}:not([disabled])", timeout=step)
            await page.locator(_LOCALITY_INPUT).press_sequentially(location, delay=50)
            await ph.settle(page, self.timeouts.settle_ms)
            await page.wait_for_selector(_FIRST_SUGGESTION, timeout=step)
            await page.click(_FIRST_SUGGESTION, timeout=step)
            await ph.settle(page, self.timeouts.settle_ms)
        except PlaywrightError as exc:
            self._log.warning("[Blinkit] Location step failed: %s", exc)
            return None
        return await self._confirmed_location(page)

    async def _confirmed_location(self, page) -> Optional[str]:
        try:
            await page.wait_for_selector(_ETA_CONTAINER, state="visible", timeout=5_000)
        except PlaywrightError:
            self._log.info("[Blinkit] Location ETA container not found within 5 seconds")
            return None
        title = await ph.text_of(page, f"{_ETA_CONTAINER} {_ETA_SUBTITLE}")
        if title:
            self._log.info("[Blinkit] Location title found: %r", title)
        return title or None

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(self, page, product_id: str) -> CartResult:
        card = ph.css_attr("id", product_id)
        return await ph.add_to_cart(
            page,
            card_selector=card,
            out_of_stock_selector='[class*="OutOfStock"], [class*="out-of-stock"]',
            add_button_selector=_ADD_BUTTON,
            click_selectors=[
                f"{card} .tw-rounded-md > div",
                f"{card} .tw-rounded-md",
                f'{card} div[role="button"]',
                f"{card} .tw-text-base-green",
            ],
            log=self._log,
        )
