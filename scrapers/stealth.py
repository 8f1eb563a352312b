"""
Evasion profile applied once to every automation context after creation.

The profile is opaque to the rest of the system: callers only ever invoke
`apply_evasion_profile(context)`.
"""
import logging
from functools import lru_cache

from fake_useragent import UserAgent

logger = logging.getLogger(__name__)

_FALLBACK_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

# ── Injected before any page JS runs ─────────────────────────────────────────
STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    Object.defineProperty(navigator, 'plugins', {get: () => [1,2,3,4,5]});
    Object.defineProperty(navigator, 'languages', {get: () => ['en-IN','en-US','en']});
    window.chrome = {runtime: {}};
    const origQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = p =>
        p.name === 'notifications'
            ? Promise.resolve({state: Notification.permission})
            : origQuery(p);
"""


@lru_cache()
def _user_agents() -> UserAgent:
    return UserAgent(fallback=_FALLBACK_UA)


def desktop_user_agent() -> str:
    try:
        return _user_agents().chrome
    except Exception as exc:
        logger.debug("fake_useragent unavailable, using fallback UA: %s", exc)
        return _FALLBACK_UA


def context_options(viewport: dict) -> dict:
    """Options for `browser.new_context()` that match the profile."""
    return {
        "user_agent": desktop_user_agent(),
        "viewport": viewport,
        "locale": "en-IN",
        "timezone_id": "Asia/Kolkata",
    }


async def apply_evasion_profile(context) -> bool:
    """Install the stealth init script on a browser context. Returns False on failure."""
    try:
        await context.add_init_script(STEALTH_SCRIPT)
        return True
    except Exception as exc:
        logger.warning("Failed to apply evasion profile: %s", exc)
        return False
