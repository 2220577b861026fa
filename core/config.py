"""Environment-driven settings for the line-item service.

Reads configuration from environment variables, loading a ``.env`` file at the
repository root first if one exists:

- LINE_ITEMS_DB_PATH: SQLite database holding the job_parts table
- TELEMETRY_DB_PATH: SQLite database for durable telemetry counters
- TELEMETRY_BACKENDS: Ordered backend preference (e.g. "session,durable")
- LINE_ITEMS_VENDOR_COLUMN: Whether job_parts.vendor_id is assumed to exist
- LINE_ITEMS_SCHEDULED_TIMES_COLUMN: Whether the scheduled time columns exist
- LOG_LEVEL / LOG_JSON: Logging level and output format
- TEMPORAL_ENDPOINT / TEMPORAL_NAMESPACE / TEMPORAL_API_KEY / TEMPORAL_TASK_QUEUE
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = REPO_ROOT / "line_items.db"


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag ("1", "true", "yes", "on" are truthy)."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [part.strip().lower() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    """Runtime configuration.

    Attributes:
        db_path: SQLite database for line items
        telemetry_db_path: SQLite database for durable telemetry counters
        telemetry_backends: Backend names in preference order
        vendor_column: Initial state of the vendor capability
        scheduled_times_column: Initial state of the scheduling-times capability
        log_level: Logging level name
        log_json: Emit JSON log lines instead of human-readable ones
        temporal_endpoint: Temporal host:port
        temporal_namespace: Temporal namespace
        temporal_api_key: Temporal Cloud API key
        task_queue: Task queue polled by the line-item worker
    """
    db_path: Path = DEFAULT_DB_PATH
    telemetry_db_path: Path = DEFAULT_DB_PATH
    telemetry_backends: List[str] = field(default_factory=lambda: ["session", "durable"])
    vendor_column: bool = True
    scheduled_times_column: bool = True
    log_level: str = "INFO"
    log_json: bool = False
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None
    task_queue: str = "line-items"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        db_path = Path(os.getenv("LINE_ITEMS_DB_PATH") or DEFAULT_DB_PATH)
        return cls(
            db_path=db_path,
            telemetry_db_path=Path(os.getenv("TELEMETRY_DB_PATH") or db_path),
            telemetry_backends=_env_list("TELEMETRY_BACKENDS", ["session", "durable"]),
            vendor_column=_env_bool("LINE_ITEMS_VENDOR_COLUMN", True),
            scheduled_times_column=_env_bool("LINE_ITEMS_SCHEDULED_TIMES_COLUMN", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON", False),
            temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT"),
            temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=os.getenv("TEMPORAL_API_KEY"),
            task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "line-items"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the cached process settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
