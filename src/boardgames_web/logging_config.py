import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from colorama import Fore, Style
from colorama import init as colorama_init

from .config import ADMIN_TOKEN, GITHUB_TOKEN, LOG_LEVEL, LUDOPEDIA_ACCESS_TOKEN, LUDOPEDIA_APP_KEY

SECRETS = {
    "GHA_PAT": GITHUB_TOKEN,
    "LUDOPEDIA_APP_KEY": LUDOPEDIA_APP_KEY,
    "LUDOPEDIA_ACCESS_TOKEN": LUDOPEDIA_ACCESS_TOKEN,
    "BOARDGAMES_TOKEN": ADMIN_TOKEN,
}


class SensitiveDataFilter(logging.Filter):
    """Filter to mask credentials in logs (provider keys end up in request URLs)."""

    def __init__(self, secrets: dict[str, str] | None = None):
        super().__init__()
        self.secrets = {k: v for k, v in (secrets if secrets is not None else SECRETS).items() if v}

    def mask(self, text):
        if isinstance(text, str):
            for label, secret in self.secrets.items():
                if secret in text:
                    text = text.replace(secret, f"***{label}***")
        return text

    def filter(self, record):
        record.msg = self.mask(record.msg)

        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(self.mask(arg) for arg in record.args)
            elif isinstance(record.args, dict):
                record.args = {k: self.mask(v) for k, v in record.args.items()}

        return True


class ConsoleNoiseFilter(logging.Filter):
    """Filter to keep successful image hits out of the console; the file log still has them."""

    def filter(self, record):
        if record.name == "aiohttp.access" and record.levelno < logging.WARNING:
            if "/image/" in record.getMessage():
                return False
        return True


CONSOLE_FORMAT = (
    f"{Fore.CYAN}%(asctime)s{Style.RESET_ALL} | "
    f"{Fore.GREEN}%(levelname)s{Style.RESET_ALL}: "
    f"{Fore.YELLOW}%(name)s{Style.RESET_ALL} - %(message)s"
)
FILE_FORMAT = "%(asctime)s | %(levelname)s: %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE = "boardgames.log"

# Libraries that flood DEBUG output
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "PIL")


def _console_handler(level: str, filters: list[logging.Filter]) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    for f in filters:
        handler.addFilter(f)
    return handler


def _file_handler(log_dir: str, filters: list[logging.Filter]) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE), maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    for f in filters:
        handler.addFilter(f)
    return handler


def setup_logging(level: str = LOG_LEVEL, log_dir: str = "logs"):
    """
    Colored console at `level`, rotating plain-text file at DEBUG.
    Both handlers mask configured secrets; only the console drops image hits.
    """
    # FORCE_COLOR keeps ANSI codes when stdout is not a TTY (docker logs)
    force_color = os.getenv("FORCE_COLOR", "").lower() in ("1", "true")
    colorama_init(autoreset=True, strip=False if force_color else None)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(logging.DEBUG)

    sensitive = SensitiveDataFilter()
    root.addHandler(_console_handler(level, [sensitive, ConsoleNoiseFilter()]))
    root.addHandler(_file_handler(log_dir, [sensitive]))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
