"""
Zepto target adapter — Playwright (async)

Search surface: https://www.zeptonow.com/srp?q=<term>

Extraction strategies (in order):
  1. Structured payload — `response.snippets` entries carrying `final_price`
  2. DOM — rendered product cards

Location flow: header location button → "Search a new address" → first
suggestion → "Confirm & Continue", then read the header back.
"""
import logging
from typing import Optional
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from shared.constants import TARGET_ZEPTO

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


def _is_zepto_payload(body) -> bool:
    if not has_identified_snippets(body):
        return False
    return any(
        isinstance(dig(s, "data"), dict) and dig(s, "data", "name")
        for s in snippet_entries(body)
    )


DESCRIPTOR = TargetDescriptor(
    name=TARGET_ZEPTO,
    display_name="Zepto",
    home_url="https://www.zeptonow.com/",
    search_url_template="https://www.zeptonow.com/srp?q={term}",
    loading_selector='.loading-container, .loading, .spinner, [class*="loading"], [class*="skeleton"]',
    content_selectors=(
        '[data-testid="product-card"]',
        ".product-card",
        ".product-item",
        'a[href*="/pn/"]',
    ),
    no_results_selectors=('[data-testid="empty-state"]', '[class*="no-result"]'),
    no_results_texts=("No results found", "Sorry, no results", "couldn't find"),
    product_card_selector='[data-testid="product-card"], a[href*="/pn/"]',
    payload_predicate=_is_zepto_payload,
)

_DEFAULT_DELIVERY = "10 mins"

# ── Location ──────────────────────────────────────────────────────────────────
_LOCATION_BUTTON = ".max-w-\\[170px\\] > span"
_ADDRESS_INPUT = '[placeholder="Search a new address"]'
_FIRST_SUGGESTION = ".flex:nth-child(1) > .ml-4 > div > .font-heading"
_CONFIRM_BUTTON = ".bg-skin-primary > .flex"
_LOCATION_DISPLAY = (
    _LOCATION_BUTTON,
    '[data-testid="location-btn"]',
    '[class*="location-display"]',
    '[class*="address-display"]',
    ".selected-location",
    ".delivery-location",
    '[aria-label*="location"]',
    '[aria-label*="address"]',
)
_MAIN_PAGE_JS = """() => window.location.pathname === '/'
    || document.querySelector('.product-grid, [class*="product-list"], [class*="category-list"]') !== null"""

# ── DOM fallback ──────────────────────────────────────────────────────────────
_CARD_FIELDS = {
    "name": ['[data-testid="product-card-name"]', "h5", '[class*="product-title"]'],
    "price": ['[data-testid="product-card-price"]', 'h4[class*="price"]'],
    "mrp": ['[class*="line-through"]', "p.line-through", "del"],
    "quantity": ['[data-testid="product-card-quantity"]', '[class*="quantity"]'],
    "discount": ['[class*="discount"]', '[class*="Discount"]'],
    "image": "img",
    "soldOut": '[class*="OutOfStock"], [class*="out-of-stock"], .sold-out',
}

# ── Cart ──────────────────────────────────────────────────────────────────────
_ADD_BUTTON = 'button.add-btn, .add-to-cart, [class*="AddButton"], button[aria-label*="add" i]'


class ZeptoScraper:
    """Zepto search, extraction, location and cart on one automation page."""

    name = TARGET_ZEPTO
    descriptor = DESCRIPTOR

    def __init__(self, timeouts: ScrapeTimeouts = None):
        self.timeouts = timeouts or ScrapeTimeouts()
        self._log = logging.getLogger(f"scrapers.{self.name}")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def navigate_to_search(self, page, term: str) -> bool:
        url = self.descriptor.search_url(quote(term, safe=""))
        self._log.info("[Zepto] Going to: %s", url)
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.timeouts.navigation_ms)
            await ph.settle(page, self.timeouts.settle_ms)
            return True
        except PlaywrightError as exc:
            self._log.warning("[Zepto] Error navigating to search URL: %s", exc)
            return False

    async def ensure_content_loaded(self, page) -> bool:
        t = self.timeouts
        try:
            await ph.wait_for_loader_to_clear(page, self.descriptor.loading_selector, t.loader_ms, self._log)

            # Product grid renders late on Zepto; give each marker a longer look
            if await ph.wait_for_any(page, self.descriptor.content_selectors, t.content_marker_ms * 2, self._log):
                return True

            if await ph.has_any(page, self.descriptor.no_results_selectors) or \
                    await ph.page_mentions(page, self.descriptor.no_results_texts):
                self._log.info("[Zepto] No results for this search")
                return True

            self._log.info("[Zepto] No product cards found, continuing anyway")
            return await ph.has_generic_content(page)
        except Exception as exc:
            self._log.warning("[Zepto] Error ensuring content loaded: %s", exc)
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
                self._log.warning("[Zepto] Error processing individual product: %s", exc)
        self._log.info("[Zepto] Extracted %d products", len(products))
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
            delivery_time=str(raw.get("delivery_time") or _DEFAULT_DELIVERY),
            discount=raw.get("discount_text") or discount_label(price, original),
            image_url=raw.get("image_url") or raw.get("img_url") or "",
            available=not raw.get("out_of_stock"),
            source=self.name,
        )

    async def _extract_dom(self, page) -> list[Product]:
        try:
            cards = await ph.read_product_cards(page, self.descriptor.product_card_selector, _CARD_FIELDS)
        except Exception as exc:
            self._log.warning("[Zepto] DOM extraction failed: %s", exc)
            return []

        products = []
        seen = set()
        for card in cards:
            name = card.get("name")
            if not name or name in seen:
                continue
            seen.add(name)
            try:
                price = price_text(card.get("price"), "Price unavailable")
                original = price_text(card.get("mrp"))
                products.append(Product(
                    id=card.get("id") or new_product_id(self.name),
                    name=name,
                    price=price,
                    original_price=original,
                    quantity=card.get("quantity") or "1 item",
                    delivery_time=card.get("eta") or _DEFAULT_DELIVERY,
                    discount=card.get("discount") or discount_label(price, original),
                    image_url=card.get("image") or "",
                    available=not card.get("soldOut"),
                    source=self.name,
                ))
            except Exception as exc:
                self._log.warning("[Zepto] Skipping malformed card: %s", exc)
        self._log.info("[Zepto] Extracted %d products from DOM", len(products))
        return products

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    async def set_location(self, page, location: str) -> Optional[str]:
        self._log.info("[Zepto] Setting location to: %s", location)
        return await ph.retry_location(
            page,
            lambda: self._attempt_location(page, location),
            self.timeouts.location_attempts,
            self.timeouts.location_page_ms,
            self._log,
        )

    async def _attempt_location(self, page, location: str) -> Optional[str]:
        step = self.timeouts.location_step_ms
        if "zeptonow.com" not in page.url:
            try:
                await page.goto(self.descriptor.home_url, wait_until="domcontentloaded",
                                timeout=self.timeouts.location_page_ms)
            except PlaywrightError as exc:
                self._log.warning("[Zepto] Could not open home page: %s", exc)
                return None
        try:
            await page.wait_for_selector(_LOCATION_BUTTON, timeout=step)
            await page.click(_LOCATION_BUTTON, timeout=step)
            await ph.settle(page, 3_000)

            await page.wait_for_selector(_ADDRESS_INPUT, timeout=step)
            await page.click(_ADDRESS_INPUT, timeout=step)
            await page.wait_for_selector(f"{_ADDRESS_INPUT}:not([disabled])", timeout=step)
            await page.locator(_ADDRESS_INPUT).press_sequentially(location, delay=100)
            await ph.settle(page, 3_000)

            await page.wait_for_selector(_FIRST_SUGGESTION, timeout=step)
            await page.click(_FIRST_SUGGESTION, timeout=step)
            await ph.settle(page, 3_000)

            await page.wait_for_selector(_CONFIRM_BUTTON, timeout=step)
            await page.click(_CONFIRM_BUTTON, timeout=step)
            await ph.settle(page, 5_000)
        except PlaywrightError as exc:
            # The header may still show a location set earlier; check anyway
            self._log.warning("[Zepto] Error during location selection: %s", exc)
        return await self._confirmed_location(page)

    async def _confirmed_location(self, page) -> Optional[str]:
        await ph.settle(page, 3_000)
        for sel in _LOCATION_DISPLAY:
            txt = await ph.text_of(page, sel)
            low = txt.lower()
            if len(txt) > 2 and "select" not in low and "enter" not in low:
                self._log.info("[Zepto] Location found: %r", txt)
                return txt
        try:
            if await page.evaluate(_MAIN_PAGE_JS):
                self._log.info("[Zepto] On main page, assuming location is set")
                return "Location Set"
        except PlaywrightError:
            pass
        return None

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def add_to_cart(self, page, product_id: str) -> CartResult:
        cards = [ph.css_attr("data-product-id", product_id), ph.css_attr("data-id", product_id),
                 ph.css_attr("id", product_id)]
        return await ph.add_to_cart(
            page,
            card_selector=", ".join(cards),
            out_of_stock_selector='[class*="OutOfStock"], [class*="out-of-stock"], .sold-out',
            add_button_selector=_ADD_BUTTON,
            click_selectors=[f"{c} button.add-btn, {c} .add-to-cart" for c in cards]
            + [f'{c} [class*="AddButton"]' for c in cards],
            log=self._log,
        )
