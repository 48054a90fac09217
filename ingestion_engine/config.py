"""
SupplementScribe Ingestion Configuration
All settings loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class IngestionSettings:
    """Runtime knobs for the ingestion pipeline and its HTTP surface."""
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    anthropic_api_key: str = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    parser_model: str = field(
        default_factory=lambda: os.getenv("INGESTION_PARSER_MODEL", "claude-sonnet-4-20250514")
    )
    parser_timeout: float = field(
        default_factory=lambda: float(os.getenv("INGESTION_PARSER_TIMEOUT", "60"))
    )
    max_file_size: int = field(
        default_factory=lambda: int(os.getenv("INGESTION_MAX_FILE_SIZE", str(10 * 1024 * 1024)))
    )
    backoff_ms: int = field(default_factory=lambda: int(os.getenv("INGESTION_BACKOFF_MS", "1000")))
    batch_size: int = field(default_factory=lambda: int(os.getenv("INGESTION_BATCH_SIZE", "50")))
    events_enabled: bool = field(default_factory=lambda: _env_bool("INGESTION_EVENTS_ENABLED", "false"))
    allowed_content_types: FrozenSet[str] = frozenset({
        "text/plain",
        "text/csv",
        "text/tab-separated-values",
        "application/json",
        "application/pdf",
        "application/octet-stream",
    })


_settings = None


def get_settings() -> IngestionSettings:
    """Get singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = IngestionSettings()
    return _settings
