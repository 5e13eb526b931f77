import os
from dataclasses import dataclass

from dotenv import load_dotenv

from boardgames_core.constants import PLACEHOLDER_URL
from boardgames_core.utils import parse_duration

load_dotenv()

PORT = os.getenv("PORT", "8080")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DATABASE_PATH = os.getenv("DATABASE_PATH", "./data/boardgames.db")
CACHE_DIR = os.getenv("CACHE_DIR", "./data/cache")
CACHE_TTL = os.getenv("CACHE_TTL", "168h")  # image files, janitor interval
PAYLOAD_TTL = os.getenv("PAYLOAD_TTL", "240h")  # provider payload rows
JANITOR_INTERVAL = os.getenv("JANITOR_INTERVAL", "")  # defaults to CACHE_TTL
POLL_INTERVAL = os.getenv("POLL_INTERVAL", "10")  # seconds
GITHUB_OWNER = os.getenv("GITHUB_OWNER", "")
GITHUB_REPO = os.getenv("GITHUB_REPO", "")
GITHUB_PATH = os.getenv("GITHUB_PATH", "")
GITHUB_REF = os.getenv("GITHUB_REF", "heads/main")
GITHUB_TOKEN = os.getenv("GHA_PAT", "")
LUDOPEDIA_APP_ID = os.getenv("LUDOPEDIA_APP_ID", "")
LUDOPEDIA_APP_KEY = os.getenv("LUDOPEDIA_APP_KEY", "")
LUDOPEDIA_ACCESS_TOKEN = os.getenv("LUDOPEDIA_ACCESS_TOKEN", "")
ADMIN_TOKEN = os.getenv("BOARDGAMES_TOKEN", "")
PLACEHOLDER = os.getenv("PLACEHOLDER_URL", PLACEHOLDER_URL)
IMAGE_BUILD_CONCURRENCY = os.getenv("IMAGE_BUILD_CONCURRENCY", "4")


@dataclass
class Settings:
    port: int = 8080
    database_path: str = "./data/boardgames.db"
    cache_dir: str = "./data/cache"
    cache_ttl: float = 168 * 3600
    payload_ttl: float = 240 * 3600
    janitor_interval: float = 168 * 3600
    poll_interval: float = 10.0
    github_owner: str = ""
    github_repo: str = ""
    github_path: str = ""
    github_ref: str = "heads/main"
    github_token: str = ""
    ludopedia_app_id: str = ""
    ludopedia_app_key: str = ""
    ludopedia_access_token: str = ""
    admin_token: str = ""
    placeholder_url: str = PLACEHOLDER_URL
    image_build_concurrency: int = 4

    @property
    def image_dir(self) -> str:
        return os.path.join(self.cache_dir, "images")

    @property
    def poller_enabled(self) -> bool:
        return bool(self.github_owner and self.github_repo and self.github_path)


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def load_settings() -> Settings:
    """Builds Settings from the environment. Raises ValueError on malformed numbers or durations."""
    cache_ttl = parse_duration(CACHE_TTL)
    return Settings(
        port=_parse_int("PORT", PORT),
        database_path=DATABASE_PATH,
        cache_dir=CACHE_DIR,
        cache_ttl=cache_ttl,
        payload_ttl=parse_duration(PAYLOAD_TTL),
        janitor_interval=parse_duration(JANITOR_INTERVAL) if JANITOR_INTERVAL else cache_ttl,
        poll_interval=float(_parse_int("POLL_INTERVAL", POLL_INTERVAL)),
        github_owner=GITHUB_OWNER,
        github_repo=GITHUB_REPO,
        github_path=GITHUB_PATH,
        github_ref=GITHUB_REF,
        github_token=GITHUB_TOKEN,
        ludopedia_app_id=LUDOPEDIA_APP_ID,
        ludopedia_app_key=LUDOPEDIA_APP_KEY,
        ludopedia_access_token=LUDOPEDIA_ACCESS_TOKEN,
        admin_token=ADMIN_TOKEN,
        placeholder_url=PLACEHOLDER,
        image_build_concurrency=_parse_int("IMAGE_BUILD_CONCURRENCY", IMAGE_BUILD_CONCURRENCY),
    )
