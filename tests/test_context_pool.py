"""Automation context pool: idempotent acquire/release, structured launch failures."""
import asyncio

import pytest

from conftest import FakeBrowser, FakeContext, FakeLauncher, FakePage

from scrapers.context_pool import AutomationContextPool, ContextLaunchError, LaunchOptions
from scrapers.stealth import STEALTH_SCRIPT


@pytest.fixture
def pool(launcher):
    return AutomationContextPool(launcher=launcher)


async def test_acquire_is_idempotent_per_session_and_target(pool, launcher):
    first = await pool.acquire("s1", "blinkit", LaunchOptions())
    again = await pool.acquire("s1", "blinkit", LaunchOptions())
    assert first is again
    assert len(launcher.browsers) == 1


async def test_concurrent_acquire_launches_once(pool, launcher):
    a, b = await asyncio.gather(
        pool.acquire("s1", "zepto", LaunchOptions()),
        pool.acquire("s1", "zepto", LaunchOptions()),
    )
    assert a is b
    assert len(launcher.browsers) == 1


async def test_each_pair_gets_its_own_browser(pool, launcher):
    a = await pool.acquire("s1", "blinkit", LaunchOptions())
    b = await pool.acquire("s1", "zepto", LaunchOptions())
    c = await pool.acquire("s2", "blinkit", LaunchOptions())
    assert len({id(a.browser), id(b.browser), id(c.browser)}) == 3
    assert set(pool.contexts_for("s1")) == {"blinkit", "zepto"}


async def test_fresh_context_gets_profile_and_page(pool, launcher):
    ctx = await pool.acquire("s1", "blinkit", LaunchOptions(viewport={"width": 1536, "height": 695}))
    browser = launcher.browsers[0]
    assert browser.context_kwargs["viewport"] == {"width": 1536, "height": 695}
    assert browser.context_kwargs["locale"] == "en-IN"
    assert ctx.context.init_scripts == [STEALTH_SCRIPT]
    assert ctx.page in ctx.context.pages
    assert ctx.page.default_timeout == 30_000


async def test_existing_surface_is_reused():
    existing_page = FakePage()
    existing_ctx = FakeContext(pages=[existing_page])
    browser = FakeBrowser(contexts=[existing_ctx])

    async def launch(options):
        return browser

    pool = AutomationContextPool(launcher=launch)
    ctx = await pool.acquire("s1", "instamart", LaunchOptions())
    assert ctx.context is existing_ctx
    assert ctx.page is existing_page
    assert browser.context_kwargs is None


async def test_launch_failure_is_structured():
    pool = AutomationContextPool(launcher=FakeLauncher(fail=True))
    with pytest.raises(ContextLaunchError) as exc_info:
        await pool.acquire("s1", "zepto", LaunchOptions())
    assert exc_info.value.target == "zepto"
    assert "Executable doesn't exist" in str(exc_info.value)
    assert pool.contexts_for("s1") == {}


async def test_failure_after_launch_closes_the_browser():
    browser = FakeBrowser()

    async def broken_context(**kwargs):
        raise RuntimeError("context crashed")

    browser.new_context = broken_context

    async def launch(options):
        return browser

    pool = AutomationContextPool(launcher=launch)
    with pytest.raises(ContextLaunchError):
        await pool.acquire("s1", "blinkit", LaunchOptions())
    assert browser.close_calls == 1


async def test_release_is_idempotent(pool, launcher):
    await pool.acquire("s1", "blinkit", LaunchOptions())
    assert await pool.release("s1", "blinkit") is True
    assert await pool.release("s1", "blinkit") is False
    assert await pool.release("never", "zepto") is False
    assert launcher.browsers[0].close_calls == 1


async def test_release_all_only_touches_one_session(pool, launcher):
    for target in ("blinkit", "zepto", "instamart"):
        await pool.acquire("s1", target, LaunchOptions())
    await pool.acquire("s2", "blinkit", LaunchOptions())

    assert await pool.release_all("s1") == 3
    assert await pool.release_all("s1") == 0
    assert pool.contexts_for("s1") == {}
    assert set(pool.contexts_for("s2")) == {"blinkit"}


async def test_stop_releases_everything(pool, launcher):
    await pool.acquire("s1", "blinkit", LaunchOptions())
    await pool.acquire("s2", "zepto", LaunchOptions())
    await pool.stop()
    assert all(b.close_calls == 1 for b in launcher.browsers)
    assert pool.contexts_for("s1") == {} and pool.contexts_for("s2") == {}


async def test_cancelled_acquire_closes_the_launched_browser():
    launcher = FakeLauncher(context_delay=10)
    pool = AutomationContextPool(launcher=launcher)
    task = asyncio.create_task(pool.acquire("s1", "blinkit", LaunchOptions()))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(launcher.browsers) == 1
    assert launcher.browsers[0].close_calls == 1
    assert pool.contexts_for("s1") == {}
