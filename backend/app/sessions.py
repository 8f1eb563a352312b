"""
Session registry.

One `Session` per websocket connection: its automation contexts (one per
target, owned by the `AutomationContextPool`) and which targets have a
confirmed delivery location. Handlers take `registry.lock(session_id)` before
touching a session so commands for the same connection never interleave.
"""
import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from scrapers.context_pool import AutomationContext, AutomationContextPool, LaunchOptions
from shared.constants import ALL_TARGETS

logger = logging.getLogger(__name__)

_counter = itertools.count(1)


def new_session_id() -> str:
    """Timestamp-derived token, unique within the process."""
    return f"{time.time_ns() // 1_000_000}-{next(_counter)}"


class SessionNotInitialized(Exception):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Browsers not initialized. Please initialize first.")


@dataclass
class Session:
    session_id: str
    location_status: dict[str, bool]
    location_titles: dict[str, Optional[str]] = field(default_factory=dict)
    contexts: dict[str, AutomationContext] = field(default_factory=dict)

    @property
    def initialized(self) -> bool:
        return bool(self.contexts)

    @property
    def pages(self) -> dict[str, Any]:
        return {t: c.page for t, c in self.contexts.items()}

    def confirmed_targets(self) -> list[str]:
        return [t for t, ok in self.location_status.items() if ok]


class SessionRegistry:

    def __init__(self, pool: AutomationContextPool, targets: list[str] = None):
        self.pool = pool
        self.targets = list(targets or ALL_TARGETS)
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def create(self, session_id: str) -> Session:
        """Fresh session with no contexts and every location unconfirmed."""
        session = Session(session_id, {t: False for t in self.targets})
        self._sessions[session_id] = session
        return session

    async def initialize(self, session_id: str, options: LaunchOptions) -> Session:
        """
        Acquire one automation context per target.

        On a launch failure every context already opened for the session is
        released and the ContextLaunchError propagates; the session is left
        uninitialised.
        """
        session = self._sessions.get(session_id) or self.create(session_id)
        results = await asyncio.gather(
            *(self.pool.acquire(session_id, t, options) for t in self.targets),
            return_exceptions=True,
        )
        failure = next((r for r in results if isinstance(r, BaseException)), None)
        if failure is not None:
            await self.pool.release_all(session_id)
            session.contexts = {}
            raise failure
        session.contexts = dict(zip(self.targets, results))
        logger.info("Session %s initialized with %d browsers", session_id, len(session.contexts))
        return session

    def mark_location_status(self, session_id: str, target: str, confirmed: bool, title: Optional[str] = None) -> None:
        session = self.get(session_id)
        session.location_status[target] = bool(confirmed)
        session.location_titles[target] = title if confirmed else None

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None or not session.initialized:
            raise SessionNotInitialized(session_id)
        return session

    async def destroy(self, session_id: str) -> bool:
        """
        Drop the session and release its contexts. Returns True when an
        initialised session was torn down; repeat calls are no-ops.
        """
        session = self._sessions.pop(session_id, None)
        released = await self.pool.release_all(session_id)
        if session is not None or released:
            logger.info("Session %s destroyed (%d browsers closed)", session_id, released)
        return bool(session and session.initialized) or released > 0

    def forget(self, session_id: str) -> None:
        """Drop the per-session lock once the connection is gone."""
        self._locks.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
