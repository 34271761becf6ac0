import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI

from agents.attendance_agent.credentials import CredentialCipher
from agents.attendance_agent.engine import AttendanceEngine
from agents.attendance_agent.navigator import PlaywrightNavigator
from agents.attendance_agent.poller import DueSchedulePoller
from agents.attendance_agent.recorder import OutcomeRecorder
from agents.attendance_agent.store import AttendanceStore
from agents.attendance_agent.ticks import AsyncioTickSource
from agents.notifications.discord import DiscordNotifier
from agents.notifications.dispatcher import NotificationDispatcher
from agents.notifications.telegram import TelegramNotifier
from agents.notifications.whatsapp import WhatsAppNotifier
from routers.attendance_agent import create_attendance_router


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("attendance_runner")


# Home Assistant add-ons mount /data for persistence.
OPTIONS_PATH = Path(os.getenv("OPTIONS_PATH", "/data/options.json"))


def _load_addon_options() -> Dict[str, Any]:
    """Load persisted add-on options from options.json."""
    if not OPTIONS_PATH.exists():
        logger.info("No options.json found; using environment variables or defaults")
        return {}
    try:
        options = json.loads(OPTIONS_PATH.read_text(encoding="utf-8"))
        logger.info("Add-on options loaded from %s", OPTIONS_PATH)
        return options if isinstance(options, dict) else {}
    except Exception:
        logger.exception("Could not parse %s; using defaults", OPTIONS_PATH)
        return {}


ADDON_OPTIONS = _load_addon_options()


def _setting(name: str, default: str = "") -> str:
    """Read a setting from ENV first, then options.json."""
    env_name = name.upper()
    if env_name in os.environ:
        return os.getenv(env_name, default)
    return str(ADDON_OPTIONS.get(name.lower(), default))


# basicConfig above only sees the environment; options.json may override the level.
LOG_LEVEL = _setting("log_level", "INFO").strip().upper() or "INFO"
logging.getLogger().setLevel(LOG_LEVEL)


def _int_setting(name: str, default: int) -> int:
    try:
        return int(_setting(name, str(default)))
    except ValueError:
        logger.warning("Invalid integer for %s; using %s", name, default)
        return default


DATA_DIR = Path(_setting("data_dir", "/data")).resolve()
DATA_DIR.mkdir(parents=True, exist_ok=True)
SCREENSHOT_DIR = DATA_DIR / "screenshots"
SCREENSHOT_DIR.mkdir(parents=True, exist_ok=True)

# === Security ===
JOB_SECRET = _setting("job_secret", "")
CREDENTIAL_KEY = _setting("credential_key", "")

# === Portal ===
PORTAL_BASE_URL = _setting("portal_base_url", "https://spada.upnyk.ac.id")
HEADLESS = _setting("headless", "true").strip().lower() not in {"0", "false", "no"}
NAVIGATION_TIMEOUT_MS = _int_setting("navigation_timeout_ms", 30_000)
POLL_INTERVAL_SECONDS = _int_setting("poll_interval_seconds", 60)

# === Notifications ===
PUBLIC_BASE_URL = _setting("public_base_url", "")
REQUEST_TIMEOUT_SECONDS = _int_setting("request_timeout_seconds", 15)
PROXY_SECRET = _setting("proxy_secret", "")
TELEGRAM_BOT_TOKEN = _setting("telegram_bot_token", "")
TELEGRAM_PROXY_URL = _setting("telegram_proxy_url", "")
DISCORD_PROXY_URL = _setting("discord_proxy_url", "")
WHATSAPP_API_URL = _setting("whatsapp_api_url", "")
WHATSAPP_API_KEY = _setting("whatsapp_api_key", "")
WHATSAPP_PROXY_URL = _setting("whatsapp_proxy_url", "")


def missing_config() -> List[str]:
    missing = []
    if not CREDENTIAL_KEY:
        missing.append("credential_key")
    if not PORTAL_BASE_URL:
        missing.append("portal_base_url")
    return missing


def _build_cipher() -> CredentialCipher:
    key = CREDENTIAL_KEY
    if not key:
        # Nothing stored can be decrypted without the configured key; runs are skipped.
        logger.warning("credential_key is not configured; scheduled runs will be skipped")
        key = CredentialCipher.generate_key()
    return CredentialCipher(key, logging.getLogger("attendance_runner.credentials"))


store = AttendanceStore(DATA_DIR, logging.getLogger("attendance_runner.store"))
engine = AttendanceEngine(
    navigator_factory=lambda: PlaywrightNavigator(
        PORTAL_BASE_URL,
        logging.getLogger("attendance_runner.navigator"),
        headless=HEADLESS,
        navigation_timeout_ms=NAVIGATION_TIMEOUT_MS,
    ),
    screenshot_dir=SCREENSHOT_DIR,
    logger=logging.getLogger("attendance_runner.engine"),
)
notifier_kwargs = {"proxy_secret": PROXY_SECRET, "request_timeout_seconds": REQUEST_TIMEOUT_SECONDS}
dispatcher = NotificationDispatcher(
    telegram=TelegramNotifier(
        TELEGRAM_BOT_TOKEN,
        logging.getLogger("attendance_runner.telegram"),
        proxy_url=TELEGRAM_PROXY_URL,
        **notifier_kwargs,
    ),
    discord=DiscordNotifier(
        logging.getLogger("attendance_runner.discord"),
        proxy_url=DISCORD_PROXY_URL,
        **notifier_kwargs,
    ),
    whatsapp=WhatsAppNotifier(
        WHATSAPP_API_URL,
        WHATSAPP_API_KEY,
        logging.getLogger("attendance_runner.whatsapp"),
        proxy_url=WHATSAPP_PROXY_URL,
        **notifier_kwargs,
    ),
    logger=logging.getLogger("attendance_runner.dispatcher"),
    public_base_url=PUBLIC_BASE_URL,
)
poller = DueSchedulePoller(
    store=store,
    engine=engine,
    recorder=OutcomeRecorder(store, logging.getLogger("attendance_runner.recorder")),
    dispatcher=dispatcher,
    cipher=_build_cipher(),
    logger=logging.getLogger("attendance_runner.poller"),
)
ticks = AsyncioTickSource(logging.getLogger("attendance_runner.ticks"))
ticks.register("attendance_due_check", POLL_INTERVAL_SECONDS, poller.tick)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ticks.start()
    try:
        yield
    finally:
        await ticks.stop()


APP = FastAPI(title="Attendance Runner", lifespan=lifespan)
APP.include_router(
    create_attendance_router(
        store=store,
        poller=poller,
        screenshot_dir=SCREENSHOT_DIR,
        job_secret=JOB_SECRET,
        missing_config_fn=missing_config,
        tick_status_fn=ticks.jobs,
    )
)


@APP.get("/health")
def health():
    """Liveness plus the effective configuration (without secrets)."""
    return {
        "ok": True,
        "data_dir": str(DATA_DIR),
        "portal_base_url": PORTAL_BASE_URL,
        "log_level": LOG_LEVEL,
        "poll_interval_seconds": POLL_INTERVAL_SECONDS,
        "has_job_secret": bool(JOB_SECRET),
        "has_credential_key": bool(CREDENTIAL_KEY),
        "has_public_base_url": bool(PUBLIC_BASE_URL),
        "has_telegram_token": bool(TELEGRAM_BOT_TOKEN),
        "has_telegram_proxy": bool(TELEGRAM_PROXY_URL),
        "has_discord_proxy": bool(DISCORD_PROXY_URL),
        "has_whatsapp_gateway": bool(WHATSAPP_API_URL),
        "missing_config": missing_config(),
        "jobs": ticks.jobs(),
    }
