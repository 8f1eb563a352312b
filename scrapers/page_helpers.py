"""
Bounded page interactions shared by the target adapters.

Every helper here resolves to a plain value when its wait runs out; none of
them lets a Playwright timeout escape.
"""
import logging
from typing import Awaitable, Callable, Iterable, Optional

from playwright.async_api import Error as PlaywrightError

from .base_scraper import CartResult

logger = logging.getLogger(__name__)

_GENERIC_CONTENT_JS = """() => {
    const hasImgs = document.querySelectorAll('img').length > 3;
    const body = document.body ? document.body.innerText : '';
    return hasImgs || body.includes('₹');
}"""

_BODY_TEXT_JS = "() => (document.body && document.body.innerText) || ''"


async def settle(page, ms: int) -> None:
    """Fixed inter-step pause."""
    try:
        await page.wait_for_timeout(ms)
    except PlaywrightError:
        pass


async def wait_for_loader_to_clear(page, selector: str, timeout_ms: int, log=logger) -> bool:
    """
    If a loading indicator is on the page, wait for it to go away.

    Returns True when no indicator is left; False when it was still there at
    the deadline (callers carry on regardless).
    """
    try:
        if not await page.query_selector(selector):
            return True
        await page.wait_for_selector(selector, state="hidden", timeout=timeout_ms)
        await settle(page, 1_000)
        return True
    except PlaywrightError as exc:
        log.info("Loading indicator still present after %dms: %s", timeout_ms, exc)
        return False


async def wait_for_any(page, selectors: Iterable[str], timeout_ms: int, log=logger) -> Optional[str]:
    """Wait for each selector in turn; return the first one that appears."""
    for sel in selectors:
        try:
            await page.wait_for_selector(sel, timeout=timeout_ms)
            log.debug("Found content with selector: %s", sel)
            return sel
        except PlaywrightError:
            log.debug("Selector %s not found within %dms", sel, timeout_ms)
    return None


async def has_any(page, selectors: Iterable[str]) -> bool:
    for sel in selectors:
        try:
            if await page.query_selector(sel):
                return True
        except PlaywrightError:
            continue
    return False


async def body_text(page) -> str:
    try:
        return await page.evaluate(_BODY_TEXT_JS) or ""
    except PlaywrightError:
        return ""


async def page_mentions(page, phrases: Iterable[str]) -> bool:
    text = await body_text(page)
    return any(p in text for p in phrases)


async def has_generic_content(page) -> bool:
    """Last-resort check: several images or any rupee-marked text on the page."""
    try:
        return bool(await page.evaluate(_GENERIC_CONTENT_JS))
    except PlaywrightError:
        return False


async def text_of(page, selector: str) -> str:
    try:
        el = await page.query_selector(selector)
        if not el:
            return ""
        return ((await el.text_content()) or "").strip()
    except PlaywrightError:
        return ""


async def click_first(page, selectors: Iterable[str], timeout_ms: int, log=logger) -> Optional[str]:
    """Click the first selector that exists; return it, or None if nothing was clickable."""
    for sel in selectors:
        try:
            if not await page.query_selector(sel):
                continue
            await page.click(sel, timeout=timeout_ms)
            log.debug("Clicked %s", sel)
            return sel
        except PlaywrightError as exc:
            log.debug("Failed to click %s: %s", sel, exc)
    return None


async def retry_location(
    page,
    attempt: Callable[[], Awaitable[Optional[str]]],
    attempts: int,
    reload_timeout_ms: int,
    log=logger,
) -> Optional[str]:
    """
    Run a location-setting attempt up to `attempts` times.

    Between attempts the page is fully reloaded. Returns the confirmed
    location title, or None once every attempt has failed.
    """
    for n in range(1, attempts + 1):
        log.info("Location attempt %d/%d", n, attempts)
        try:
            title = await attempt()
        except Exception as exc:
            log.warning("Location attempt %d/%d raised: %s", n, attempts, exc)
            title = None
        if title:
            return title
        if n < attempts:
            try:
                await page.reload(wait_until="domcontentloaded", timeout=reload_timeout_ms)
            except PlaywrightError as exc:
                log.warning("Reload before retry failed: %s", exc)
            await settle(page, 3_000)
    log.warning("Failed to confirm location after %d attempts", attempts)
    return None


def css_attr(name: str, value: str) -> str:
    """Attribute selector with the value quoted: [id="123"]."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'[{name}="{escaped}"]'


# ── DOM product cards ─────────────────────────────────────────────────────────
# Reads every card matching `cardSel`. Field selectors are tried first; the
# card's own text is used to fill anything they miss.
_READ_CARDS_JS = r"""({cardSel, fields, limit}) => {
    const pick = (card, sels) => {
        for (const s of (sels || [])) {
            const el = card.querySelector(s);
            const t = el && el.textContent ? el.textContent.trim() : '';
            if (t) return t;
        }
        return '';
    };
    const money = /₹\s?([\d,]+(?:\.\d{1,2})?)/g;
    const qty = /^\d+(\.\d+)?\s*(g|gm|kg|ml|l|ltr|pc|pcs|piece|pieces|unit|units|pack)\b/i;
    return [...document.querySelectorAll(cardSel)].slice(0, limit).map(card => {
        const text = card.innerText || '';
        const lines = text.split('\n').map(l => l.trim()).filter(Boolean);
        const amounts = [...text.matchAll(money)].map(m => '₹' + m[1]);
        const img = card.querySelector(fields.image || 'img');
        const soldOutEl = fields.soldOut ? card.querySelector(fields.soldOut) : null;
        return {
            id: card.getAttribute('id') || card.getAttribute('data-product-id')
                || card.getAttribute('data-id') || '',
            name: pick(card, fields.name) || lines.find(l =>
                l.length > 3 && !l.includes('₹') && !/\bmins?\b/i.test(l)
                && !/%\s*off/i.test(l) && !/^add$/i.test(l) && !qty.test(l)) || '',
            price: pick(card, fields.price) || amounts[0] || '',
            mrp: pick(card, fields.mrp) || amounts[1] || '',
            quantity: pick(card, fields.quantity) || lines.find(l => qty.test(l)) || '',
            eta: pick(card, fields.eta) || lines.find(l => /\d+\s*mins?\b/i.test(l)) || '',
            discount: pick(card, fields.discount) || lines.find(l => /%\s*off/i.test(l)) || '',
            description: pick(card, fields.description),
            image: img ? (img.getAttribute('src') || '') : '',
            soldOut: !!soldOutEl || /out of stock|sold out/i.test(text),
        };
    });
}"""


async def read_product_cards(page, card_selector: str, fields: dict, limit: int = 60) -> list[dict]:
    """Raw per-card field values from the rendered search page."""
    cards = await page.evaluate(
        _READ_CARDS_JS, {"cardSel": card_selector, "fields": fields, "limit": limit}
    )
    return cards if isinstance(cards, list) else []


# ── Cart ──────────────────────────────────────────────────────────────────────
_CART_CHECK_JS = """([cardSel, oosSel, btnSel]) => {
    const card = document.querySelector(cardSel);
    if (!card) return {available: false, reason: 'Product not found on page'};
    if (oosSel && card.querySelector(oosSel))
        return {available: false, reason: 'Product is out of stock'};
    const btn = card.querySelector(btnSel);
    if (!btn) return {available: false, reason: 'Add button not found'};
    const style = window.getComputedStyle(btn);
    if (style.pointerEvents === 'none' || style.cursor === 'not-allowed'
            || style.opacity === '0.5' || btn.disabled)
        return {available: false, reason: 'Add button is disabled'};
    return {available: true};
}"""

_CART_SCRIPT_CLICK_JS = """([cardSel, btnSel]) => {
    const card = document.querySelector(cardSel);
    if (!card) return false;
    const btn = card.querySelector(btnSel);
    if (!btn) return false;
    btn.click();
    return true;
}"""


async def add_to_cart(
    page,
    card_selector: str,
    out_of_stock_selector: str,
    add_button_selector: str,
    click_selectors: Iterable[str],
    log=logger,
):
    """
    Best-effort click on a product card's add button.

    Returns a CartResult; never raises.
    """
    try:
        check = await page.evaluate(
            _CART_CHECK_JS, [card_selector, out_of_stock_selector, add_button_selector]
        )
        if not check or not check.get("available"):
            reason = (check or {}).get("reason", "Product not available")
            return CartResult(False, f"Cannot add product to cart: {reason}")

        clicked = await click_first(page, click_selectors, timeout_ms=2_000, log=log)
        if not clicked:
            log.info("Trying script click as fallback")
            clicked = await page.evaluate(
                _CART_SCRIPT_CLICK_JS, [card_selector, add_button_selector]
            )
        if clicked:
            await settle(page, 1_000)
            return CartResult(True, "Product added to cart")
        return CartResult(False, "Failed to add product to cart after multiple attempts")
    except Exception as exc:
        log.warning("Add to cart failed: %s", exc)
        return CartResult(False, f"Error adding product to cart: {exc}")
