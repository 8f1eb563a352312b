"""
Swiggy Instamart target adapter — Playwright (async)

Search surface: https://www.swiggy.com/instamart/search?custom_back=true&query=<term>

Swiggy sometimes lands a search on its food tab; navigation corrects that by
clicking the Instamart tab and, failing that, navigating again.

Extraction strategies (in order):
  1. Structured payload — `response.snippets` entries carrying `final_price`
  2. DOM — `[data-testid="default_container_ux4"]` cards
"""
import logging
from typing import Optional
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from shared.constants import TARGET_INSTAMART

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
from .pricing import discount_label, new_product_id, price_text

DESCRIPTOR = TargetDescriptor(
    name=TARGET_INSTAMART,
    display_name="Instamart",
    home_url="https://www.swiggy.com/instamart",
    search_url_template="https://www.swiggy.com/instamart/search?custom_back=true&query={term}",
    loading_selector='.loading, .shimmer, .skeleton, [class*="loading"], [class*="Loader"]',
    content_selectors=('[data-testid="default_container_ux4"], .XjYJe._2_few, ._179Mx',),
    no_results_texts=("No results found", "No matching products", "Try another search"),
    product_card_selector='[data-testid="default_container_ux4"]',
    payload_predicate=has_identified_snippets,
)

_INSTAMART_TAB = 'button[data-testid="instamart-tab"], a[href*="instamart"]'
_CARD_COUNT_JS = """(sel) => document.querySelectorAll(sel).length"""

# Structured payloads carry no ETA; the DOM cards show the express slot
_PAYLOAD_DELIVERY = "15-30 mins"
_DOM_DELIVERY = "10 mins"

# ── Location ──────────────────────────────────────────────────────────────────
_VIEWPORT = {"width": 1536, "height": 695}
_ADDRESS_NAME = '[data-testid="address-name"]'
_SEARCH_LOCATION = '[data-testid="search-location"]'
_AREA_INPUT = '[placeholder="Search for area, street name…"]'
_FIRST_SUGGESTION = "._11n32:nth-child(1)"
_CONFIRM_BUTTON = "._2xPHa"
_LOCATION_DISPLAY = (
    _ADDRESS_NAME,
    "._3FN4I",
    "._3eFQ-",
    ".location-address",
    ".address-text",
)
_REJECTED_LOCATION_WORDS = ("other", "select", "enter")
_MAIN_PAGE_JS = """() => document.querySelector(
    '.product-grid, [class*="product-list"], [class*="items-container"]') !== null"""
_CLICK_FIRST_SUGGESTION_JS = """() => {
    const el = document.querySelector('._11n32');
    if (el) el.click();
    return !!el;
}"""

# ── DOM fallback ──────────────────────────────────────────────────────────────
_CARD_FIELDS = {
    "name": [".novMV", ".sc-aXZVg.kyEzVU"],
    "price": ['[data-testid="item-offer-price"]'],
    "mrp": ['[data-testid="item-mrp-price"]'],
    "discount": ['[data-testid="item-offer-label-discount-text"]'],
    "quantity": ["._3eIPt", ".sc-aXZVg.entQHA"],
    "description": ['[data-testid="small-description"]'],
    "image": "img.sc-dcJsrY, img._1NxA5, img.tPMI1",
    "soldOut": '[data-testid="sold-out"]',
}

# ── Cart ──────────────────────────────────────────────────────────────────────
_ADD_BUTTON = 'button.add-btn, .add-to-cart-button, button[aria-label*="add"], button:has(.plus-icon)'


class InstamartScraper:
    """Instamart search, extraction, location and cart on one automation page."""

    name = TARGET_INSTAMART
    descriptor = DESCRIPTOR

    def __init__(self, timeouts: ScrapeTimeouts = None):
        self.timeouts = timeouts or ScrapeTimeouts()
        self._log = logging.getLogger(f"scrapers.{self.name}")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def navigate_to_search(self, page, term: str) -> bool:
        url = self.descriptor.search_url(quote(term, safe=""))
        self._log.info("[Instamart] Going to: %s", url)
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.timeouts.navigation_ms)
            self._log.debug("[Instamart] Current page URL: %s", page.url)

            if "instamart/search" not in page.url:
                if await ph.click_first(page, [_INSTAMART_TAB], 5_000, self._log):
                    self._log.info("[Instamart] Clicked Instamart tab")
                    await ph.settle(page, self.timeouts.settle_ms)

            if "instamart" not in page.url:
                self._log.info("[Instamart] Not on Instamart page, navigating again")
                await page.goto(url, wait_until="networkidle", timeout=self.timeouts.navigation_ms)
            return True
        except PlaywrightError as exc:
            self._log.warning("[Instamart] Error navigating to search URL: %s", exc)
            return False

    async def ensure_content_loaded(self, page) -> bool:
        t = self.timeouts
        try:
            await ph.wait_for_loader_to_clear(page, self.descriptor.loading_selector, t.loader_ms, self._log)

            await ph.wait_for_any(page, self.descriptor.content_selectors, t.loader_ms, self._log)
            count = await page.evaluate(_CARD_COUNT_JS, '[data-testid="default_container_ux4"], .XjYJe._2_few')
            self._log.info("[Instamart] Found %d product cards on the page", count or 0)
            if count:
                await ph.settle(page, 1_500)
                return True

            # An empty result set is still a loaded page
            if await ph.page_mentions(page, self.descriptor.no_results_texts):
                self._log.info("[Instamart] No results found message detected on page")
                return True
            return False
        except Exception as exc:
            self._log.warning("[Instamart] Error ensuring content loaded: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_product_information(self, payload: Payload) -> list[Product]:
        if isinstance(payload, FallbackMarker):
            return await self._extract_dom(payload.page)
        return self._extract_structured(payload)

    def _extract_structured(self, payload) -> list[Product]:
        products = []
        for snip in snippet_entries(payload):
            data = snip.get("data") if isinstance(snip, dict) else None
            if (
                not isinstance(data, dict)
                or not data.get("identity")
                or dig(data, "identity", "id") == "product_container"
                or not data.get("name")
            ):
                continue
            try:
                products.append(self._product_from_entry(data))
            except Exception as exc:
                self._log.warning("[Instamart] Error processing individual product: %s", exc)
        self._log.info("[Instamart] Extracted %d products from JSON response", len(products))
        return products

    def _product_from_entry(self, raw: dict) -> Product:
        name = raw["name"]
        if isinstance(name, dict):
            name = name.get("text")
        price = price_text(raw.get("final_price"), "Price unavailable")
        original = price_text(raw.get("price"))
        return Product(
            id=str(dig(raw, "identity", "id") or new_product_id(self.name)),
            name=str(name or "Unknown Product"),
            price=price,
            original_price=original,
            quantity=str(raw.get("weight") or raw.get("quantity") or "1 item"),
            delivery_time=str(raw.get("delivery_time") or _PAYLOAD_DELIVERY),
            discount=raw.get("discount_text") or discount_label(price, original),
            image_url=raw.get("image_url") or raw.get("img_url") or "",
            available=not raw.get("out_of_stock"),
            source=self.name,
        )

    async def _extract_dom(self, page) -> list[Product]:
        try:
            cards = await ph.read_product_cards(page, self.descriptor.product_card_selector, _CARD_FIELDS)
        except Exception as exc:
            self._log.warning("[Instamart] DOM extraction failed: %s", exc)
            return []

        products = []
        for card in cards:
            try:
                quantity = (card.get("quantity") or "").split("chevronDownIcon")[0].strip()
                products.append(Product(
                    # Instamart cards carry no stable id attribute
                    id=new_product_id(self.name),
                    name=card.get("name") or "Unknown Product",
                    price=price_text(card.get("price"), "Price unavailable"),
                    original_price=price_text(card.get("mrp")),
                    quantity=quantity or "1 item",
                    delivery_time=_DOM_DELIVERY,
                    discount=card.get("discount") or None,
                    image_url=card.get("image") or "",
                    available=not card.get("soldOut"),
                    description=card.get("description") or None,
                    source=self.name,
                ))
            except Exception as exc:
                self._log.warning("[Instamart] Skipping malformed card: %s", exc)
        self._log.info("[Instamart] Extracted %d products from DOM", len(products))
        return products

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    async def set_location(self, page, location: str) -> Optional[str]:
        self._log.info("[Instamart] Setting location to: %s", location)
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
            if "swiggy.com/instamart" not in page.url:
                await page.goto(self.descriptor.home_url, wait_until="domcontentloaded",
                                timeout=self.timeouts.location_page_ms)
            await page.set_viewport_size(_VIEWPORT)

            if not await ph.click_first(page, [_ADDRESS_NAME], step, self._log):
                self._log.info("[Instamart] Address button not found, trying to proceed anyway")

            await page.wait_for_selector(_SEARCH_LOCATION, timeout=step)
            await page.click(_SEARCH_LOCATION, timeout=step)
            await ph.settle(page, 1_000)

            await page.wait_for_selector(_AREA_INPUT, timeout=step)
            await page.click(_AREA_INPUT, timeout=step)
            await page.wait_for_selector(f"{_AREA_INPUT}:not([disabled])", timeout=step)
            await page.locator(_AREA_INPUT).press_sequentially(location)
            await ph.settle(page, self.timeouts.settle_ms)

            try:
                await page.wait_for_selector(_FIRST_SUGGESTION, timeout=step)
                await page.click(_FIRST_SUGGESTION, timeout=step)
            except PlaywrightError:
                self._log.info("[Instamart] First suggestion not clickable, trying script click")
                await page.evaluate(_CLICK_FIRST_SUGGESTION_JS)

            await page.wait_for_selector(_CONFIRM_BUTTON, timeout=step)
            await page.click(_CONFIRM_BUTTON, timeout=step)
            await ph.settle(page, 3_000)
        except PlaywrightError as exc:
            self._log.warning("[Instamart] Location step failed: %s", exc)
            return None
        return await self._confirmed_location(page)

    async def _confirmed_location(self, page) -> Optional[str]:
        for sel in _LOCATION_DISPLAY:
            txt = await ph.text_of(page, sel)
            low = txt.lower()
            if len(txt) > 2 and not any(w in low for w in _REJECTED_LOCATION_WORDS):
                self._log.info("[Instamart] Location found: %r", txt)
                return txt
        try:
            if await page.evaluate(_MAIN_PAGE_JS):
                self._log.info("[Instamart] On main page with products, assuming location is set")
                return "Location Set"
        except PlaywrightError:
            pass
        return None

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(self, page, product_id: str) -> CartResult:
        cards = [ph.css_attr(attr, product_id) for attr in ("data-testid", "data-product-id", "data-id", "id")]
        return await ph.add_to_cart(
            page,
            card_selector=", ".join(cards),
            out_of_stock_selector='[class*="outOfStock"], [class*="out-of-stock"], .sold-out',
            add_button_selector=_ADD_BUTTON,
            click_selectors=[f"{c} .add-btn, {c} .add-to-cart-button" for c in cards]
            + [f'{c} button[aria-label*="add"], {c} button:has(.plus-icon)' for c in cards],
            log=self._log,
        )
