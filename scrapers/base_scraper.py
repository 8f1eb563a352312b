"""
Contract shared by the three target adapters.

Each adapter (Blinkit, Zepto, Instamart) is an independent strategy object that
satisfies `TargetAdapter`: navigate to a search page, wait for its content,
turn a captured payload (or the live page) into `Product` records, set the
delivery location and add an item to the cart. None of these operations raise;
failures are reported through their return values and logged.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable

from shared.constants import NEGATIVE_RESULT_URL_MARKERS

from .pricing import compute_savings


@dataclass
class Product:
    """Normalised search hit. `savings` is always derived, never taken from the source."""
    id: str
    name: str
    price: str
    source: str
    original_price: Optional[str] = None
    quantity: str = "N/A"
    delivery_time: str = "N/A"
    discount: Optional[str] = None
    image_url: str = ""
    available: bool = True
    description: Optional[str] = None
    savings: Optional[str] = field(default=None, init=False)

    def __post_init__(self):
        self.savings = compute_savings(self.price, self.original_price)

    def to_dict(self) -> dict:
        d = asdict(self)
        return {
            "id": d["id"],
            "name": d["name"],
            "price": d["price"],
            "originalPrice": d["original_price"],
            "savings": d["savings"],
            "quantity": d["quantity"],
            "deliveryTime": d["delivery_time"],
            "discount": d["discount"],
            "imageUrl": d["image_url"],
            "available": d["available"],
            "description": d["description"],
            "source": d["source"],
        }


@dataclass(frozen=True)
class TargetDescriptor:
    """Static per-site configuration. Not session-scoped."""
    name: str
    display_name: str
    home_url: str
    search_url_template: str           # must contain "{term}"
    loading_selector: str
    content_selectors: tuple[str, ...]
    no_results_selectors: tuple[str, ...] = ()
    no_results_texts: tuple[str, ...] = ()
    product_card_selector: str = ""
    payload_predicate: Callable[[Any], bool] = lambda body: False
    negative_url_markers: tuple[str, ...] = NEGATIVE_RESULT_URL_MARKERS

    def search_url(self, encoded_term: str) -> str:
        return self.search_url_template.format(term=encoded_term)

    def accepts_payload(self, url: str, body: Any) -> bool:
        """A JSON body from `url` qualifies as this target's structured payload."""
        if any(marker in url for marker in self.negative_url_markers):
            return False
        try:
            return bool(self.payload_predicate(body))
        except Exception:
            return False


@dataclass(frozen=True)
class ScrapeTimeouts:
    """Every bounded wait used by the adapters, in milliseconds unless noted."""
    navigation_ms: int = 50_000
    loader_ms: int = 10_000
    content_marker_ms: int = 3_000
    settle_ms: int = 2_000
    heuristic_wait_ms: int = 5_000
    location_step_ms: int = 10_000
    location_page_ms: int = 60_000
    location_attempts: int = 2
    payload_s: float = 30.0


@dataclass(frozen=True)
class FallbackMarker:
    """Stand-in for a structured payload that never arrived; carries the live page."""
    page: Any
    reason: str = "payload deadline expired"


Payload = Union[dict, list, FallbackMarker, None]


@dataclass
class CartResult:
    success: bool
    message: str


@runtime_checkable
class TargetAdapter(Protocol):
    name: str
    descriptor: TargetDescriptor

    async def navigate_to_search(self, page, term: str) -> bool: ...

    async def ensure_content_loaded(self, page) -> bool: ...

    async def extract_product_information(self, payload: Payload) -> list[Product]: ...

    async def set_location(self, page, location: str) -> Optional[str]: ...

    async def add_to_cart(self, page, product_id: str) -> CartResult: ...


def snippet_entries(body: Any) -> list:
    """`body.response.snippets` when it is a list, else []."""
    if not isinstance(body, dict):
        return []
    response = body.get("response")
    if not isinstance(response, dict):
        return []
    snippets = response.get("snippets")
    return snippets if isinstance(snippets, list) else []


def has_identified_snippets(body: Any) -> bool:
    """True when the body holds a snippet list with at least one identity-marked entry."""
    for snip in snippet_entries(body):
        data = snip.get("data") if isinstance(snip, dict) else None
        if isinstance(data, dict) and data.get("identity"):
            return True
    return False


def dig(obj: Any, *keys, default=None):
    """obj[k1][k2]... with `default` as soon as a level is missing or not a dict."""
    for key in keys:
        if not isinstance(obj, dict) or key not in obj:
            return default
        obj = obj[key]
    return default if obj is None else obj
