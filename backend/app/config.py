from pathlib import Path
from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings

from scrapers.base_scraper import ScrapeTimeouts
from scrapers.context_pool import LaunchOptions

# .env lives at the project root (two levels above this file: app/config.py → backend/ → root/)
_ENV_FILE = str(Path(__file__).parent.parent.parent / ".env")

_BASE_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
)
_PRODUCTION_BROWSER_ARGS = (
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
)


class Settings(BaseSettings):
    app_env: str = Field(default="development", alias="APP_ENV")

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    frontend_url: str = "http://localhost:5173"
    static_dir: str = "./public"
    log_level: str = ""

    # Browser
    browser_headless: bool = True
    browser_executable_path: str = ""

    # Scraping bounds
    payload_timeout_s: float = 30.0
    navigation_timeout_ms: int = 50_000

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "INFO" if self.is_production else "DEBUG"

    def launch_options(self) -> LaunchOptions:
        args = _BASE_BROWSER_ARGS + (_PRODUCTION_BROWSER_ARGS if self.is_production else ())
        return LaunchOptions(
            headless=self.browser_headless,
            executable_path=self.browser_executable_path or None,
            args=args,
        )

    def scrape_timeouts(self) -> ScrapeTimeouts:
        # Production hosts are slower; give each location-setting step longer
        return ScrapeTimeouts(
            navigation_ms=self.navigation_timeout_ms,
            location_step_ms=30_000 if self.is_production else 10_000,
            payload_s=self.payload_timeout_s,
        )

    def cors_origins(self) -> list[str]:
        if self.is_production:
            return [self.frontend_url]
        return list(dict.fromkeys([self.frontend_url, "http://localhost:5173", "http://127.0.0.1:5173"]))

    model_config = {
        "env_file": _ENV_FILE,
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
