"""基础配置与环境变量加载器，支持 .env 文件与系统环境并存。"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BACKEND_ROOT = Path(__file__).resolve().parent.parent
_ENV_PATH = BACKEND_ROOT / ".env"

# 不覆盖已存在的环境变量
load_dotenv(dotenv_path=_ENV_PATH, override=False)

_ALLOWED_PROVIDERS = {"local", "llm", "gemini"}
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

LIMIT_PARAGRAPHS_DEFAULT = 20
LIMIT_PARAGRAPHS_MAX = 100
LIMIT_NODES_DEFAULT = 2
LIMIT_NODES_MAX = 5

DEFAULT_DB_PATH = BACKEND_ROOT / "data" / "storyforge.db"

TOPONE_API_KEY: str | None = os.getenv("TOPONE_API_KEY")
TOPONE_BASE_URL: str = os.getenv("TOPONE_BASE_URL", "https://api.toponeapi.top")
TOPONE_DEFAULT_MODEL: str = os.getenv(
    "TOPONE_DEFAULT_MODEL", "gemini-3-pro-preview-11-2025"
)
TOPONE_SECONDARY_MODEL: str = os.getenv("TOPONE_SECONDARY_MODEL", "gemini-2.5-flash")
try:
    TOPONE_TIMEOUT_SECONDS: float = float(os.getenv("TOPONE_TIMEOUT_SECONDS", "30"))
except ValueError:
    TOPONE_TIMEOUT_SECONDS = 30.0
try:
    WRITE_LOCK_TIMEOUT_SECONDS: float = float(
        os.getenv("STORYFORGE_WRITE_LOCK_TIMEOUT_SECONDS", "30")
    )
except ValueError:
    WRITE_LOCK_TIMEOUT_SECONDS = 30.0


def db_path() -> Path:
    """KUZU_DB_PATH 优先；相对路径以 backend 目录为基准。"""
    env_path = os.getenv("KUZU_DB_PATH")
    if not env_path:
        return DEFAULT_DB_PATH
    candidate = Path(env_path)
    return candidate if candidate.is_absolute() else BACKEND_ROOT / candidate


def provider_mode() -> str:
    raw = os.getenv("STORYFORGE_PROVIDER")
    if raw is None:
        raise RuntimeError(
            "STORYFORGE_PROVIDER is not set: must be explicitly local/llm/gemini "
            "(e.g. STORYFORGE_PROVIDER=local)."
        )
    mode = raw.strip().lower()
    if mode not in _ALLOWED_PROVIDERS:
        raise RuntimeError(f"STORYFORGE_PROVIDER={raw!r} is invalid: must be local/llm/gemini.")
    return mode


def deduplicate_ingredients() -> bool:
    """配方重复原料的处理方式：默认按多重集合（保留重复）。"""
    raw = os.getenv("STORYFORGE_DEDUPLICATE_INGREDIENTS", "")
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise RuntimeError(
        f"STORYFORGE_DEDUPLICATE_INGREDIENTS={raw!r} is invalid: must be a boolean."
    )


def configure_logging(level: str | None = None) -> None:
    name = (level or os.getenv("STORYFORGE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
