import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_QUEUE_PATH = Path.home() / ".training_engine" / "offline_queue.json"


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    queue_path: Path = DEFAULT_QUEUE_PATH
    catalog_path: Path | None = None
    rules_path: Path | None = None
    probe_timeout_seconds: float = 2.0
    log_format: str = "json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        catalog_path = os.environ.get("TRAINING_CATALOG_PATH")
        rules_path = os.environ.get("TRAINING_RULES_PATH")
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            queue_path=Path(os.environ.get("TRAINING_QUEUE_PATH", str(DEFAULT_QUEUE_PATH))),
            catalog_path=Path(catalog_path) if catalog_path else None,
            rules_path=Path(rules_path) if rules_path else None,
            probe_timeout_seconds=float(os.environ.get("TRAINING_PROBE_TIMEOUT_SECONDS", "2.0")),
            log_format=os.environ.get("TRAINING_LOG_FORMAT", "json"),
            log_level=os.environ.get("TRAINING_LOG_LEVEL", "INFO").upper(),
        )

    def require_database_url(self) -> str:
        if not self.database_url:
            raise RuntimeError("DATABASE_URL must be set")
        return self.database_url
