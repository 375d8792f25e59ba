"""
Runtime settings, read from the environment (and an optional .env next to
the project) once per process.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
POOLING_MODES = ("mean", "first")


@dataclass(frozen=True)
class Settings:
    cache_dir: Path
    hf_base_url: str
    download_retries: int
    download_timeout: float
    db_path: Path
    top_k: int
    pooling: str
    log_level: str


def _int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%d is below %d, using %d", name, value, minimum, default)
        return default
    return value


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number, using %s", name, raw, default)
        return default
    return value if value > 0 else default


def load_settings(env_file: Path | None = ENV_FILE) -> Settings:
    if env_file is not None:
        load_dotenv(dotenv_path=env_file, override=False)

    pooling = os.getenv("POCKET_EMBED_POOLING", "mean").lower()
    if pooling not in POOLING_MODES:
        logger.warning("unknown POCKET_EMBED_POOLING=%r, using 'mean'", pooling)
        pooling = "mean"

    cache_dir = os.getenv("POCKET_EMBED_CACHE_DIR")
    return Settings(
        cache_dir=Path(cache_dir) if cache_dir else Path.home() / ".cache" / "pocket_embed",
        hf_base_url=os.getenv("POCKET_EMBED_HF_BASE_URL", "https://huggingface.co"),
        download_retries=_int("POCKET_EMBED_DOWNLOAD_RETRIES", 3, minimum=1),
        download_timeout=_float("POCKET_EMBED_DOWNLOAD_TIMEOUT", 30.0),
        db_path=Path(os.getenv("POCKET_EMBED_DB_PATH", "search.db")),
        top_k=_int("POCKET_EMBED_TOP_K", 3, minimum=1),
        pooling=pooling,
        log_level=os.getenv("POCKET_EMBED_LOG_LEVEL", "INFO").upper(),
    )
