"""
End-to-end websocket protocol against fake browsers and scripted adapters,
plus the HTTP surface (health, API 404, client fallback, asset caching).
"""
import pytest
from fastapi.testclient import TestClient

from conftest import FakeAdapter, FakeLauncher, make_product, snippet_payload

from backend.app.api.ws import EventGateway
from backend.app.config import Settings
from backend.app.main import create_app
from scrapers.context_pool import AutomationContextPool
from shared.constants import ALL_TARGETS


def build_app(tmp_path, adapters=None, launcher=None, **overrides):
    settings = Settings(app_env="test", static_dir=str(tmp_path), payload_timeout_s=1.0, **overrides)
    adapters = adapters or {
        t: FakeAdapter(t, payload=snippet_payload("milk"), structured=[make_product(t)]) for t in ALL_TARGETS
    }
    pool = AutomationContextPool(launcher=launcher or FakeLauncher())
    return create_app(settings=settings, pool=pool, adapters=adapters)


@pytest.fixture
def app(tmp_path):
    return build_app(tmp_path)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def initialize(ws):
    ws.send_json({"action": "initialize"})
    loading = ws.receive_json()
    done = ws.receive_json()
    return loading, done


def set_location(ws, location="Koramangala", **extra):
    ws.send_json({"action": "setLocation", "location": location, **extra})
    assert ws.receive_json()["status"] == "loading"
    return ws.receive_json()


def receive_until(ws, action):
    seen = []
    while True:
        msg = ws.receive_json()
        seen.append(msg)
        if msg.get("action") == action:
            return seen


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------

def test_initialize_completes(client, app):
    with client.websocket_connect("/") as ws:
        loading, done = initialize(ws)
    assert loading == {"action": "statusUpdate", "step": "initialize", "status": "loading",
                       "message": "Initializing browsers..."}
    assert done["step"] == "initialize"
    assert done["status"] == "completed"
    assert done["success"] is True


def test_initialize_launch_failure_is_reported(tmp_path):
    app = build_app(tmp_path, launcher=FakeLauncher(fail=True))
    with TestClient(app) as client, client.websocket_connect("/ws") as ws:
        _, done = initialize(ws)
        assert done["status"] == "error"
        assert done["success"] is False
        assert "Failed to initialize browsers" in done["message"]

        # session stays unusable but the socket stays open
        ws.send_json({"action": "search", "searchTerm": "milk"})
        reply = ws.receive_json()
        assert reply["status"] == "error"
        assert "initialize" in reply["message"]


# ---------------------------------------------------------------------------
# setLocation
# ---------------------------------------------------------------------------

def test_set_location_reports_every_target(client):
    with client.websocket_connect("/") as ws:
        initialize(ws)
        done = set_location(ws)
    assert done["action"] == "statusUpdate"
    assert done["step"] == "setLocation"
    assert done["status"] == "completed"
    assert done["success"] is True
    assert sorted(r["service"] for r in done["locationResults"]) == sorted(ALL_TARGETS)
    assert all(r["success"] for r in done["locationResults"])


def test_set_location_failing_everywhere(tmp_path):
    adapters = {t: FakeAdapter(t, location_title=None) for t in ALL_TARGETS}
    with TestClient(build_app(tmp_path, adapters)) as client, client.websocket_connect("/") as ws:
        initialize(ws)
        done = set_location(ws)
    assert done["status"] == "error"
    assert done["success"] is False
    assert len(done["locationResults"]) == 3


def test_retry_set_location_is_scoped(tmp_path):
    adapters = {t: FakeAdapter(t) for t in ALL_TARGETS}
    with TestClient(build_app(tmp_path, adapters)) as client, client.websocket_connect("/") as ws:
        initialize(ws)
        ws.send_json({"action": "retrySetLocation", "retryLocation": "HSR Layout", "retryServices": ["zepto"]})
        ws.receive_json()
        done = ws.receive_json()
    assert [r["service"] for r in done["locationResults"]] == ["zepto"]
    assert adapters["blinkit"].calls == []


def test_set_location_before_initialize(client):
    with client.websocket_connect("/") as ws:
        done = set_location_raw(ws)
    assert done["step"] == "setLocation"
    assert done["status"] == "error"


def set_location_raw(ws):
    ws.send_json({"action": "setLocation", "location": "Koramangala"})
    return ws.receive_json()


# ---------------------------------------------------------------------------
# search without any confirmed location
# ---------------------------------------------------------------------------

def test_search_without_location_fails_immediately(tmp_path):
    adapters = {t: FakeAdapter(t, location_title=None) for t in ALL_TARGETS}
    with TestClient(build_app(tmp_path, adapters)) as client, client.websocket_connect("/") as ws:
        initialize(ws)
        ws.send_json({"action": "search", "searchTerm": "milk"})
        reply = ws.receive_json()
        assert reply["action"] == "statusUpdate"
        assert reply["step"] == "search"
        assert reply["status"] == "error"

        # the next frame answers the next command: no serviceSearchUpdate was queued
        ws.send_json({"action": "close"})
        assert ws.receive_json()["action"] == "close"
    assert all(("navigate", "milk") not in a.calls for a in adapters.values())


# ---------------------------------------------------------------------------
# search, including the payload deadline falling back to DOM
# ---------------------------------------------------------------------------

def test_search_streams_progress_then_results(client):
    with client.websocket_connect("/") as ws:
        initialize(ws)
        set_location(ws)
        ws.send_json({"action": "search", "searchTerm": "milk"})
        messages = receive_until(ws, "searchResults")
        closing = ws.receive_json()

    assert messages[0]["step"] == "search" and messages[0]["status"] == "loading"
    updates = [m for m in messages if m["action"] == "serviceSearchUpdate"]
    for target in ALL_TARGETS:
        statuses = [m["status"] for m in updates if m["service"] == target]
        assert statuses == ["loading", "navigating", "loading_content", "extracting", "success"]

    results = messages[-1]
    assert results["status"] == "success"
    assert results["productCount"] == {"blinkit": 1, "zepto": 1, "instamart": 1, "total": 3}
    assert results["products"]["blinkit"][0]["originalPrice"] == "₹28"
    assert results["products"]["blinkit"][0]["savings"] == "₹1"
    assert closing == {"action": "statusUpdate", "step": "search", "status": "completed", "success": True,
                       "message": 'Search completed for "milk".'}


def test_payload_deadline_falls_back_to_dom(tmp_path):
    adapters = {
        "blinkit": FakeAdapter("blinkit", payload=snippet_payload("milk"), structured=[make_product("blinkit")]),
        "zepto": FakeAdapter("zepto", payload=None, dom=[make_product("zepto", "Amul Gold")]),
        "instamart": FakeAdapter("instamart", payload=snippet_payload("milk"), structured=[make_product("instamart")]),
    }
    app = build_app(tmp_path, adapters)
    app.state.orchestrator.payload_timeout_s = 0.05
    with TestClient(app) as client, client.websocket_connect("/") as ws:
        initialize(ws)
        set_location(ws)
        ws.send_json({"action": "search", "searchTerm": "milk"})
        messages = receive_until(ws, "searchResults")

    zepto = [m["status"] for m in messages if m.get("service") == "zepto"]
    assert zepto[-1] == "success"
    assert "error" not in zepto
    assert messages[-1]["products"]["zepto"][0]["name"] == "Amul Gold"


def test_skipped_targets_count_as_settled(tmp_path):
    adapters = {
        "blinkit": FakeAdapter("blinkit", payload=snippet_payload("milk"), structured=[make_product("blinkit")]),
        "zepto": FakeAdapter("zepto", location_title=None),
        "instamart": FakeAdapter("instamart", location_title=None),
    }
    with TestClient(build_app(tmp_path, adapters)) as client, client.websocket_connect("/") as ws:
        initialize(ws)
        set_location(ws)
        ws.send_json({"action": "search", "searchTerm": "milk"})
        messages = receive_until(ws, "searchResults")

    for target in ("zepto", "instamart"):
        assert [m["status"] for m in messages if m.get("service") == target] == ["skipped"]
    assert messages[-1]["productCount"]["total"] == 1


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------

def test_close_without_session(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"action": "close"})
        reply = ws.receive_json()
    assert reply == {"status": "error", "action": "close", "message": "No active browsers to close."}


def test_close_releases_all_contexts(client, app):
    with client.websocket_connect("/") as ws:
        initialize(ws)
        ws.send_json({"action": "close"})
        reply = ws.receive_json()
        assert reply["status"] == "success"
        assert reply["action"] == "close"
        pool = app.state.pool
        assert all(b.close_calls == 1 for b in pool._launcher.browsers)
        assert len(pool._contexts) == 0


class RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


async def test_cleanup_tears_the_session_down(tmp_path):
    app = build_app(tmp_path)
    registry, pool = app.state.registry, app.state.pool
    socket = RecordingSocket()
    gateway = EventGateway(socket, registry, app.state.orchestrator, app.state.settings)
    registry.create(gateway.session_id)

    task = await gateway.dispatch('{"action": "initialize"}')
    await task
    assert socket.sent[-1]["success"] is True
    assert len(pool._launcher.browsers) == 3

    await gateway.cleanup()
    assert all(b.close_calls == 1 for b in pool._launcher.browsers)
    assert pool.contexts_for(gateway.session_id) == {}
    assert len(registry) == 0
    assert gateway.session_id not in registry._locks


# ---------------------------------------------------------------------------
# Malformed input and supplementary commands
# ---------------------------------------------------------------------------

def test_invalid_json(client):
    with client.websocket_connect("/") as ws:
        ws.send_text("{not json")
        reply = ws.receive_json()
    assert reply["status"] == "error"
    assert reply["action"] == "processMessage"


def test_missing_action(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"searchTerm": "milk"})
        reply = ws.receive_json()
    assert reply["action"] == "processMessage"
    assert "action" in reply["message"]


def test_unknown_action(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"action": "checkout"})
        reply = ws.receive_json()
    assert reply == {"status": "error", "action": "unknownAction", "message": "Unknown action: checkout"}


@pytest.mark.parametrize("payload, field", [
    ({"action": "search"}, "searchTerm"),
    ({"action": "search", "searchTerm": "   "}, "searchTerm"),
    ({"action": "setLocation"}, "location"),
    ({"action": "setLocation", "location": "HSR", "services": ["bigbasket"]}, "services"),
    ({"action": "retrySetLocation", "retryLocation": "HSR"}, "retryServices"),
    ({"action": "addToCart", "productId": "1", "service": "amazon"}, "service"),
])
def test_malformed_commands_name_the_field(client, payload, field):
    with client.websocket_connect("/") as ws:
        ws.send_json(payload)
        reply = ws.receive_json()
        assert reply["status"] == "error"
        assert reply["action"] == payload["action"]
        assert field in reply["message"]

        # connection survives
        ws.send_json({"action": "checkout"})
        assert ws.receive_json()["action"] == "unknownAction"


def test_add_to_cart(client):
    with client.websocket_connect("/") as ws:
        initialize(ws)
        ws.send_json({"action": "addToCart", "productId": "392", "service": "blinkit"})
        reply = ws.receive_json()
    assert reply == {"status": "success", "action": "addToCart", "message": "Product added to cart",
                     "service": "blinkit", "productId": "392"}


def test_add_to_cart_before_initialize(client):
    with client.websocket_connect("/") as ws:
        ws.send_json({"action": "addToCart", "productId": "392", "service": "zepto"})
        reply = ws.receive_json()
    assert reply["status"] == "error"
    assert reply["service"] == "zepto"


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------

def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["environment"] == "test"
    assert "T" in body["timestamp"]


def test_unknown_api_path(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "API endpoint not found"}


def test_client_routes_fall_back_to_index(tmp_path):
    (tmp_path / "index.html").write_text("<div id=root></div>")
    (tmp_path / "assets").mkdir()
    (tmp_path / "assets" / "app.js").write_text("console.log(1)")
    with TestClient(build_app(tmp_path)) as client:
        page = client.get("/compare/milk")
        assert page.status_code == 200
        assert "root" in page.text

        asset = client.get("/assets/app.js")
        assert asset.headers["cache-control"] == "public, max-age=2592000"


def test_missing_client_build(client):
    assert client.get("/anything").status_code == 404
