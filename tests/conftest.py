"""
Browser-free fakes for the scraping core and the gateway.

FakePage / FakeContext / FakeBrowser stand in for Playwright objects; only
the calls the code under test makes are implemented. FakeAdapter satisfies
the TargetAdapter contract with scripted behaviour.
"""
import asyncio
from typing import Any, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from scrapers.base_scraper import (
    CartResult,
    FallbackMarker,
    Product,
    TargetDescriptor,
    has_identified_snippets,
)
from shared.constants import ALL_TARGETS

NOT_JSON = object()


# ---------------------------------------------------------------------------
# Playwright stand-ins
# ---------------------------------------------------------------------------

class FakeRequest:
    def __init__(self, resource_type: str):
        self.resource_type = resource_type


class FakeResponse:
    def __init__(self, url: str, body: Any = NOT_JSON, resource_type: str = "xhr"):
        self.url = url
        self.request = FakeRequest(resource_type)
        self._body = body

    async def json(self):
        if self._body is NOT_JSON:
            raise ValueError("not JSON")
        return self._body


class FakePage:
    def __init__(self, url: str = "about:blank", cards: Optional[list] = None, present=(), text: str = ""):
        self.url = url
        self.cards = cards or []
        self.text = text
        self.present = set(present)
        self.listeners: dict[str, list] = {}
        self.visited: list[str] = []
        self.clicked: list[str] = []
        self.reloads = 0
        self.default_timeout = None

    # events
    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners.get(event, []).remove(handler)

    def listener_count(self, event="response") -> int:
        return len(self.listeners.get(event, []))

    async def emit_response(self, response: FakeResponse):
        for handler in list(self.listeners.get("response", [])):
            await handler(response)

    # navigation / waits
    def set_default_timeout(self, ms):
        self.default_timeout = ms

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        self.url = url

    async def set_viewport_size(self, size):
        self.viewport = size

    async def reload(self, **kwargs):
        self.reloads += 1

    async def click(self, selector, **kwargs):
        if selector not in self.present:
            raise PlaywrightTimeoutError(f"Timeout clicking {selector}")
        self.clicked.append(selector)

    async def wait_for_timeout(self, ms):
        await asyncio.sleep(0)

    async def query_selector(self, selector):
        return object() if selector in self.present else None

    async def wait_for_selector(self, selector, **kwargs):
        if selector in self.present:
            return object()
        raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")

    async def evaluate(self, script, arg=None):
        if isinstance(arg, dict) and "cardSel" in arg:
            return self.cards
        if "innerText" in script:
            return self.text
        return None


class FakeContext:
    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.init_scripts: list[str] = []

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def new_page(self):
        page = FakePage()
        self.pages.append(page)
        return page


class FakeBrowser:
    def __init__(self, contexts=None, context_delay: float = 0.0):
        self.contexts = list(contexts or [])
        self.context_delay = context_delay
        self.context_kwargs = None
        self.close_calls = 0

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        if self.context_delay:
            await asyncio.sleep(self.context_delay)
        ctx = FakeContext()
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.close_calls += 1


class FakeLauncher:
    """
    Async callable standing in for chromium.launch; raises when `fail` is set.
    `context_delay` makes each browser slow to open its context.
    """

    def __init__(self, fail: bool = False, context_delay: float = 0.0):
        self.fail = fail
        self.context_delay = context_delay
        self.browsers: list[FakeBrowser] = []
        self.options = []

    async def __call__(self, options):
        self.options.append(options)
        if self.fail:
            raise RuntimeError("Executable doesn't exist")
        browser = FakeBrowser(context_delay=self.context_delay)
        self.browsers.append(browser)
        return browser


# ---------------------------------------------------------------------------
# Scripted adapter
# ---------------------------------------------------------------------------

def make_product(source: str, name: str = "Amul Taaza Milk", price="₹27", original="₹28") -> Product:
    return Product(id=f"{source}-{name}", name=name, price=price, original_price=original, source=source)


def snippet_payload(*names: str) -> dict:
    return {"response": {"snippets": [
        {"data": {"identity": {"id": str(i)}, "name": n, "final_price": 20 + i, "price": 25 + i}}
        for i, n in enumerate(names, 1)
    ]}}


class FakeAdapter:

    def __init__(
        self,
        name: str,
        *,
        navigate_ok: bool = True,
        payload: Any = None,
        structured: Optional[list] = None,
        dom: Optional[list] = None,
        extract_error: Optional[Exception] = None,
        dom_error: Optional[Exception] = None,
        navigate_error: Optional[Exception] = None,
        location_title: Any = "Koramangala, Bengaluru",
        cart: Optional[CartResult] = None,
    ):
        self.name = name
        self.descriptor = TargetDescriptor(
            name=name,
            display_name=name.title(),
            home_url=f"https://{name}.test/",
            search_url_template=f"https://{name}.test/s?q={{term}}",
            loading_selector=".loading",
            content_selectors=(".card",),
            payload_predicate=has_identified_snippets,
        )
        self.navigate_ok = navigate_ok
        self.payload = payload
        self.structured = structured
        self.dom = dom
        self.extract_error = extract_error
        self.dom_error = dom_error
        self.navigate_error = navigate_error
        self.location_title = location_title
        self.cart = cart
        self.calls: list[tuple] = []

    async def navigate_to_search(self, page, term):
        self.calls.append(("navigate", term))
        if self.navigate_error:
            raise self.navigate_error
        if self.payload is not None:
            await page.emit_response(FakeResponse(f"https://{self.name}.test/api/search", self.payload))
        return self.navigate_ok

    async def ensure_content_loaded(self, page):
        self.calls.append(("content",))
        return True

    async def extract_product_information(self, payload):
        if isinstance(payload, FallbackMarker):
            self.calls.append(("extract", "dom"))
            if self.dom_error:
                raise self.dom_error
            return list(self.dom or [])
        self.calls.append(("extract", "payload"))
        if self.extract_error:
            raise self.extract_error
        return list(self.structured or [])

    async def set_location(self, page, location):
        self.calls.append(("location", location))
        if isinstance(self.location_title, Exception):
            raise self.location_title
        return self.location_title

    async def add_to_cart(self, page, product_id):
        self.calls.append(("cart", product_id))
        return self.cart or CartResult(True, "Product added to cart")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def fake_adapters():
    """One scripted adapter per target, each answering with a structured payload."""
    return {
        t: FakeAdapter(t, payload=snippet_payload("milk"), structured=[make_product(t)])
        for t in ALL_TARGETS
    }
