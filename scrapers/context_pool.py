"""
Automation context pool.

Owns one isolated Chromium process + one page per (session, target). A single
Playwright driver is started lazily and shared by every browser the pool
launches; `stop()` closes everything and the driver with it.

    pool = AutomationContextPool()
    ctx = await pool.acquire(session_id, "blinkit", LaunchOptions())
    await ctx.page.goto(...)
    await pool.release_all(session_id)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright

from .stealth import apply_evasion_profile, context_options

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 800}


@dataclass(frozen=True)
class LaunchOptions:
    headless: bool = True
    executable_path: Optional[str] = None
    args: tuple[str, ...] = ("--disable-blink-features=AutomationControlled",)
    viewport: dict = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    default_timeout_ms: int = 30_000


@dataclass
class AutomationContext:
    session_id: str
    target: str
    browser: Any
    context: Any
    page: Any


class ContextLaunchError(Exception):
    """A browser process (or its first page) for one target could not be started."""

    def __init__(self, target: str, cause: BaseException):
        self.target = target
        self.cause = cause
        super().__init__(f"Failed to launch browser for {target}: {cause}")


# (options) -> Browser
Launcher = Callable[[LaunchOptions], Awaitable[Any]]


class AutomationContextPool:

    def __init__(self, launcher: Optional[Launcher] = None):
        self._launcher = launcher
        self._pw = None
        self._driver_lock = asyncio.Lock()
        self._contexts: dict[tuple[str, str], AutomationContext] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    # ── Browser lifecycle ─────────────────────────────────────────────────────

    async def _launch(self, options: LaunchOptions):
        if self._launcher is not None:
            return await self._launcher(options)
        async with self._driver_lock:
            if self._pw is None:
                self._pw = await async_playwright().start()
        kwargs = {"headless": options.headless, "args": list(options.args)}
        if options.executable_path:
            kwargs["executable_path"] = options.executable_path
        return await self._pw.chromium.launch(**kwargs)

    @staticmethod
    async def _open_surface(browser, options: LaunchOptions):
        """First existing context/page of the process if it has one, else fresh ones."""
        existing = list(browser.contexts)
        if existing:
            context = existing[0]
        else:
            context = await browser.new_context(**context_options(options.viewport))
        await apply_evasion_profile(context)
        page = context.pages[0] if context.pages else await context.new_page()
        page.set_default_timeout(options.default_timeout_ms)
        return context, page

    @staticmethod
    async def _close_quietly(browser, label: str) -> None:
        try:
            await browser.close()
        except Exception as exc:
            logger.debug("Closing browser for %s failed: %s", label, exc)

    # ── Public API ────────────────────────────────────────────────────────────

    async def acquire(self, session_id: str, target: str, options: LaunchOptions) -> AutomationContext:
        """The (session, target) context, launching it on first use."""
        key = (session_id, target)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            existing = self._contexts.get(key)
            if existing is not None:
                return existing

            logger.info("Launching browser for %s (session %s)", target, session_id)
            browser = None
            ctx = None
            try:
                browser = await self._launch(options)
                context, page = await self._open_surface(browser, options)
                ctx = AutomationContext(session_id, target, browser, context, page)
                self._contexts[key] = ctx
                return ctx
            except Exception as exc:
                raise ContextLaunchError(target, exc) from exc
            finally:
                # Runs on cancellation too; an unregistered browser is never released later
                if ctx is None and browser is not None:
                    await self._close_quietly(browser, target)

    def contexts_for(self, session_id: str) -> dict[str, AutomationContext]:
        return {t: c for (s, t), c in self._contexts.items() if s == session_id}

    async def release(self, session_id: str, target: str) -> bool:
        """Close one context. Returns False when there was nothing to close."""
        key = (session_id, target)
        self._locks.pop(key, None)
        ctx = self._contexts.pop(key, None)
        if ctx is None:
            return False
        await self._close_quietly(ctx.browser, target)
        logger.info("Closed browser for %s (session %s)", target, session_id)
        return True

    async def release_all(self, session_id: str) -> int:
        targets = [t for (s, t) in list(self._contexts) if s == session_id]
        results = await asyncio.gather(*(self.release(session_id, t) for t in targets))
        return sum(1 for r in results if r)

    async def stop(self) -> None:
        for session_id in {s for (s, _) in list(self._contexts)}:
            await self.release_all(session_id)
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception as exc:
                logger.debug("Stopping Playwright failed: %s", exc)
            self._pw = None
