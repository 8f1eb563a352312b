"""
Event gateway: websocket endpoint.

One `EventGateway` per connection. It owns the connection's session id,
parses inbound JSON commands, runs each one as a task serialised on the
session's lock and turns orchestrator progress into wire messages.

Inbound:  initialize | setLocation | retrySetLocation | search | addToCart | close
Outbound: statusUpdate | serviceSearchUpdate | searchResults | {status, action, message}
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from scrapers.context_pool import ContextLaunchError
from scrapers.orchestrator import SearchOrchestrator, SearchStatus
from shared.constants import (
    ACTION_ADD_TO_CART,
    ACTION_CLOSE,
    ACTION_INITIALIZE,
    ACTION_PROCESS_MESSAGE,
    ACTION_RETRY_SET_LOCATION,
    ACTION_SEARCH,
    ACTION_SET_LOCATION,
    ACTION_UNKNOWN,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_LOADING,
    STATUS_SUCCESS,
    TARGET_DISPLAY_NAMES,
)

from ..config import Settings
from ..schemas.messages import (
    AddToCartCommand,
    Command,
    CommandReply,
    Outbound,
    RetrySetLocationCommand,
    SearchCommand,
    SearchResults,
    ServiceSearchUpdate,
    SetLocationCommand,
    StatusUpdate,
    describe_validation_error,
)
from ..sessions import SessionNotInitialized, SessionRegistry, new_session_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websockets"])


class EventGateway:

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        orchestrator: SearchOrchestrator,
        settings: Settings,
    ):
        self.websocket = websocket
        self.registry = registry
        self.orchestrator = orchestrator
        self.settings = settings
        self.session_id = new_session_id()
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._handlers: dict[str, Callable[[dict], Awaitable[None]]] = {
            ACTION_INITIALIZE: self.on_initialize,
            ACTION_SET_LOCATION: self.on_set_location,
            ACTION_RETRY_SET_LOCATION: self.on_retry_set_location,
            ACTION_SEARCH: self.on_search,
            ACTION_ADD_TO_CART: self.on_add_to_cart,
            ACTION_CLOSE: self.on_close,
        }

    # ── Connection lifecycle ──────────────────────────────────────────────────

    async def run(self) -> None:
        await self.websocket.accept()
        self.registry.create(self.session_id)
        logger.info("[WS] Client connected: %s", self.session_id)
        try:
            while True:
                raw = await self.websocket.receive_text()
                await self.dispatch(raw)
        except WebSocketDisconnect:
            logger.info("[WS] Client disconnected: %s", self.session_id)
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.registry.destroy(self.session_id)
        self.registry.forget(self.session_id)

    async def send(self, message: Outbound) -> None:
        async with self._send_lock:
            try:
                await self.websocket.send_json(message.wire())
            except Exception as exc:
                logger.debug("[WS] Send to %s failed: %s", self.session_id, exc)

    async def reply_error(self, action: str, message: str, **extra) -> None:
        await self.send(CommandReply(status=STATUS_ERROR, action=action, message=message, **extra))

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def dispatch(self, raw: str) -> Optional[asyncio.Task]:
        """Parse one inbound frame and schedule its handler. Never raises."""
        try:
            data = json.loads(raw)
            command = Command.model_validate(data)
        except json.JSONDecodeError as exc:
            await self.reply_error(ACTION_PROCESS_MESSAGE, f"Error processing message: {exc}")
            return None
        except ValidationError as exc:
            await self.reply_error(ACTION_PROCESS_MESSAGE, describe_validation_error(exc))
            return None

        logger.info("[WS] Received message: %s", command.action)
        handler = self._handlers.get(command.action)
        if handler is None:
            await self.reply_error(ACTION_UNKNOWN, f"Unknown action: {command.action}")
            return None

        task = asyncio.create_task(self._run(command.action, handler, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, action: str, handler, data: dict) -> None:
        async with self.registry.lock(self.session_id):
            try:
                await handler(data)
            except ValidationError as exc:
                await self.reply_error(action, describe_validation_error(exc))
            except SessionNotInitialized as exc:
                await self.reply_error(action, str(exc))
            except Exception as exc:
                logger.exception("[WS] %s failed for %s", action, self.session_id)
                await self.reply_error(action, f"Error processing {action}: {exc}")

    # ── Handlers ──────────────────────────────────────────────────────────────

    async def on_initialize(self, data: dict) -> None:
        step = ACTION_INITIALIZE
        await self.send(StatusUpdate(step=step, status=STATUS_LOADING, message="Initializing browsers..."))
        try:
            await self.registry.initialize(self.session_id, self.settings.launch_options())
        except ContextLaunchError as exc:
            logger.error("[WS] Browser launch failed for %s: %s", self.session_id, exc)
            await self.send(StatusUpdate(
                step=step, status=STATUS_ERROR, success=False,
                message=f"Failed to initialize browsers: {exc}",
            ))
            return
        await self.send(StatusUpdate(
            step=step, status=STATUS_COMPLETED, success=True,
            message="All browsers initialized successfully.",
        ))

    async def on_set_location(self, data: dict) -> None:
        cmd = SetLocationCommand.model_validate(data)
        await self.set_location(cmd.location, cmd.services)

    async def on_retry_set_location(self, data: dict) -> None:
        cmd = RetrySetLocationCommand.model_validate(data)
        await self.set_location(cmd.location, cmd.services)

    async def set_location(self, location: str, services: Optional[list[str]]) -> None:
        step = ACTION_SET_LOCATION
        try:
            session = self.registry.get(self.session_id)
        except SessionNotInitialized as exc:
            await self.send(StatusUpdate(step=step, status=STATUS_ERROR, success=False, message=str(exc)))
            return

        where = ", ".join(TARGET_DISPLAY_NAMES.get(s, s) for s in services) if services else "all services"
        await self.send(StatusUpdate(
            step=step, status=STATUS_LOADING, message=f"Setting location to {location} on {where}...",
        ))

        results = await self.orchestrator.set_location(session.pages, location, services)
        for r in results:
            if r.service in session.location_status:
                self.registry.mark_location_status(self.session_id, r.service, r.success, r.title)

        location_results = [r.to_dict() for r in results]
        if any(r.success for r in results):
            await self.send(StatusUpdate(
                step=step, status=STATUS_COMPLETED, success=True,
                location_results=location_results,
                message="Location set on one or more services",
            ))
        else:
            await self.send(StatusUpdate(
                step=step, status=STATUS_ERROR, success=False,
                location_results=location_results,
                message="Failed to set location on any service.",
            ))

    async def on_search(self, data: dict) -> None:
        step = ACTION_SEARCH
        cmd = SearchCommand.model_validate(data)
        try:
            session = self.registry.get(self.session_id)
        except SessionNotInitialized as exc:
            await self.send(StatusUpdate(step=step, status=STATUS_ERROR, success=False, message=str(exc)))
            return

        if not session.confirmed_targets():
            await self.send(StatusUpdate(
                step=step, status=STATUS_ERROR, success=False,
                message="Location not set on any service. Please set location first.",
            ))
            return

        term = cmd.search_term
        await self.send(StatusUpdate(
            step=step, status=STATUS_LOADING, message=f'Searching for "{term}" across all services...',
        ))

        async def progress(target: str, status: SearchStatus, message: str, has_products: bool) -> None:
            await self.send(ServiceSearchUpdate(
                service=target, status=status.value, message=message, has_products=has_products,
            ))

        outcome = await self.orchestrator.search(
            session.pages, dict(session.location_status), term, on_progress=progress,
        )
        await self.send(SearchResults(
            products=outcome.products(),
            product_count=outcome.product_count(),
            message=f"Found {outcome.total} products across all services.",
        ))
        await self.send(StatusUpdate(
            step=step, status=STATUS_COMPLETED, success=True, message=f'Search completed for "{term}".',
        ))

    async def on_add_to_cart(self, data: dict) -> None:
        action = ACTION_ADD_TO_CART
        cmd = AddToCartCommand.model_validate(data)
        extra = {"service": cmd.service, "product_id": cmd.product_id}
        try:
            session = self.registry.get(self.session_id)
        except SessionNotInitialized as exc:
            await self.reply_error(action, str(exc), **extra)
            return

        result = await self.orchestrator.add_to_cart(cmd.service, session.pages.get(cmd.service), cmd.product_id)
        await self.send(CommandReply(
            status=STATUS_SUCCESS if result.success else STATUS_ERROR,
            action=action, message=result.message, **extra,
        ))

    async def on_close(self, data: dict) -> None:
        if await self.registry.destroy(self.session_id):
            await self.send(CommandReply(
                status=STATUS_SUCCESS, action=ACTION_CLOSE, message="All browsers closed successfully.",
            ))
        else:
            await self.reply_error(ACTION_CLOSE, "No active browsers to close.")


async def _serve(websocket: WebSocket) -> None:
    state = websocket.app.state
    gateway = EventGateway(websocket, state.registry, state.orchestrator, state.settings)
    await gateway.run()


# The web client connects to the bare origin; "/ws" is kept for reverse proxies
@router.websocket("/")
async def root_websocket(websocket: WebSocket):
    await _serve(websocket)


@router.websocket("/ws")
async def ws_websocket(websocket: WebSocket):
    await _serve(websocket)
