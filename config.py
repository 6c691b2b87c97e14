"""
config.py
---------
Centralised configuration management for the EAV Schema Migrator.

Loads settings from environment variables (with .env file support via
python-dotenv). Provides typed settings as frozen dataclasses so
configuration is immutable at runtime.

Design Decision:
    Using a dataclass with class-level defaults means the engine works
    "out of the box" without any .env file, while still allowing
    environment-based overrides for production deployments.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MigrationConfig:
    """Migration engine settings."""
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_BATCH_SIZE", "1000"))
    )
    parallel_workers: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_PARALLEL_WORKERS", "4"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_MAX_RETRIES", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("MIGRATION_RETRY_DELAY", "0.5"))
    )
    confidence_threshold: float = field(
        default_factory=lambda: float(os.getenv("MAPPING_CONFIDENCE_THRESHOLD", "0.8"))
    )
    rollback_window_hours: int = field(
        default_factory=lambda: int(os.getenv("ROLLBACK_WINDOW_HOURS", "24"))
    )
    block_on_data_quality: bool = field(
        default_factory=lambda: _env_bool("BLOCK_ON_DATA_QUALITY")
    )
    organization_id: str = field(
        default_factory=lambda: os.getenv("ORGANIZATION_ID", "default")
    )
    assumed_rows_per_second: int = field(
        default_factory=lambda: int(os.getenv("ASSUMED_ROWS_PER_SECOND", "5000"))
    )
    min_rows_per_second: float = field(
        default_factory=lambda: float(os.getenv("MIN_ROWS_PER_SECOND", "100"))
    )
    migration_log_file: Path = field(
        default_factory=lambda: Path(os.getenv("MIGRATION_LOG_FILE", "migration_log.jsonl"))
    )
    mapping_file: Path = field(
        default_factory=lambda: Path(os.getenv("MAPPING_FILE", "entity_mappings.json"))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )
    scripts_dir: Path = field(
        default_factory=lambda: Path(os.getenv("SCRIPTS_DIR", "."))
    )


@dataclass(frozen=True)
class AnalysisConfig:
    """Schema analysis and mapping heuristics."""
    sample_rows: int = field(
        default_factory=lambda: int(os.getenv("ANALYSIS_SAMPLE_ROWS", "100"))
    )
    split_column_threshold: int = field(
        default_factory=lambda: int(os.getenv("SPLIT_COLUMN_THRESHOLD", "60"))
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    app_name: str = "EAV Schema Migrator"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.migration.batch_size)            # 1000
        print(cfg.migration.confidence_threshold)  # 0.8
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.migration.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
