import logging
import os
from functools import lru_cache
from pathlib import Path

UPDATE_POLICIES = ("inverse_of_new", "reverse_and_reapply")


class Settings:
    def __init__(
        self,
        database_url: str,
        update_policy: str,
        log_level: str,
        host: str,
        port: int,
    ) -> None:
        self.database_url = database_url
        self.update_policy = update_policy
        self.log_level = log_level
        self.host = host
        self.port = port


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BOOKKEEPING_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "bookkeeping.db"
    database_url = os.getenv("BOOKKEEPING_DATABASE_URL", f"sqlite:///{default_db}")
    update_policy = os.getenv("BOOKKEEPING_UPDATE_POLICY", "inverse_of_new")
    if update_policy not in UPDATE_POLICIES:
        raise ValueError(
            f"BOOKKEEPING_UPDATE_POLICY must be one of {', '.join(UPDATE_POLICIES)}"
        )
    log_level = os.getenv("BOOKKEEPING_LOG_LEVEL", "INFO").upper()
    host = os.getenv("BOOKKEEPING_HOST", "0.0.0.0")
    port = int(os.getenv("BOOKKEEPING_PORT", "8000"))
    return Settings(
        database_url=database_url,
        update_policy=update_policy,
        log_level=log_level,
        host=host,
        port=port,
    )


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, get_settings().log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
