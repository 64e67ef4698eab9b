import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _resolve_path(raw: Optional[str], default_name: str) -> str:
    raw = (raw or "").strip()
    if not raw:
        return os.path.join(BASE_DIR, default_name)
    if os.path.isabs(raw):
        return raw
    return os.path.join(BASE_DIR, raw)


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = os.getenv(name)
    try:
        val = float(raw) if raw is not None and raw.strip() else default
    except Exception:
        val = default
    if val < lo:
        val = lo
    if val > hi:
        val = hi
    return val


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None and raw.strip() else default
    except Exception:
        return default


@dataclass(frozen=True)
class BotConfig:
    token: str
    assets_dir: str
    assets_base_url: str = ""
    settings_backend: str = "json"
    settings_file: str = ""
    settings_db_file: str = ""
    search_language: str = "zh-TW"
    search_timeout: float = 15.0
    send_timeout: float = 30.0
    bot_username: str = ""
    run_mode: str = "POLLING"
    webhook_url: Optional[str] = None
    webhook_path: str = ""
    listen: str = "0.0.0.0"
    port: int = 8080
    webhook_secret_token: Optional[str] = None
    log_level: str = "INFO"


def load_config(use_dotenv: bool = True) -> BotConfig:
    if use_dotenv:
        load_dotenv()
    # TELOXIDE_TOKEN is what older deployments of this bot exported
    token = (os.getenv("TELEGRAM_BOT_TOKEN") or os.getenv("TELOXIDE_TOKEN") or "").strip()
    if not token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
    backend = (os.getenv("SETTINGS_BACKEND") or "json").strip().lower()
    if backend not in ("json", "sqlite"):
        backend = "json"
    run_mode = (os.getenv("RUN_MODE") or "POLLING").strip().upper()
    if run_mode not in ("POLLING", "WEBHOOK"):
        run_mode = "POLLING"
    return BotConfig(
        token=token,
        assets_dir=_resolve_path(os.getenv("ASSETS_DIR"), "assets"),
        assets_base_url=(os.getenv("ASSETS_BASE_URL") or "").strip(),
        settings_backend=backend,
        settings_file=_resolve_path(os.getenv("SETTINGS_FILE"), "settings.json"),
        settings_db_file=_resolve_path(os.getenv("SETTINGS_DB_FILE"), "settings.db"),
        search_language=(os.getenv("SEARCH_LANGUAGE") or "zh-TW").strip(),
        search_timeout=_env_float("SEARCH_TIMEOUT", 15.0, 1.0, 120.0),
        send_timeout=_env_float("SEND_TIMEOUT", 30.0, 1.0, 300.0),
        bot_username=(os.getenv("BOT_USERNAME") or "").strip().lstrip("@").lower(),
        run_mode=run_mode,
        webhook_url=os.getenv("WEBHOOK_URL") or None,
        webhook_path=(os.getenv("WEBHOOK_PATH") or "").strip(),
        listen=(os.getenv("LISTEN") or "0.0.0.0").strip(),
        port=_env_int("PORT", 8080),
        webhook_secret_token=os.getenv("WEBHOOK_SECRET_TOKEN") or None,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
