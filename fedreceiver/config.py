import os
import tempfile
from pathlib import Path

import pydantic
import tomli
from loguru import logger

ROOT_DIR = Path().parent.resolve()

_CONFIG_FILE = os.getenv("FEDRECEIVER_CONFIG_FILE", "fedreceiver.toml")

VERSION = "1.0.0"
USER_AGENT = f"fedreceiver/{VERSION}"
AP_CONTENT_TYPE = "application/activity+json"


class _BlockedServer(pydantic.BaseModel):
    hostname: str
    reason: str | None = None


class Config(pydantic.BaseModel):
    debug: bool = False

    # Dump activities that reached the unhandled/unknown buckets
    ap_log_unknown: bool = False
    unhandled_activities_dir: str | None = None

    blocked_servers: list[_BlockedServer] = []

    # Outgoing fetches (activities, objects, actors, keys)
    fetch_timeout: float = 10.0
    max_fetches_per_delivery: int = 12

    inbox_workers: int = 4
    inbox_processing_timeout: float = 60.0

    signature_max_age_hours: int = 12


def load_config() -> Config:
    config_path = ROOT_DIR / "data" / _CONFIG_FILE
    try:
        return Config.model_validate(tomli.loads(config_path.read_text()))
    except FileNotFoundError:
        logger.info(f"{config_path} is missing, using the default config")
        return Config()


CONFIG = load_config()

DEBUG = CONFIG.debug
AP_LOG_UNKNOWN = CONFIG.ap_log_unknown
UNHANDLED_ACTIVITIES_DIR = Path(
    CONFIG.unhandled_activities_dir or tempfile.gettempdir()
)
BLOCKED_SERVERS = {blocked_server.hostname for blocked_server in CONFIG.blocked_servers}

FETCH_TIMEOUT = CONFIG.fetch_timeout
MAX_FETCHES_PER_DELIVERY = CONFIG.max_fetches_per_delivery

INBOX_WORKERS = CONFIG.inbox_workers
INBOX_PROCESSING_TIMEOUT = CONFIG.inbox_processing_timeout

SIGNATURE_MAX_AGE_HOURS = CONFIG.signature_max_age_hours
