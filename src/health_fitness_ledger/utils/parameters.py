"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the entire application.
All parameters are loaded from YAML and validated using Pydantic models.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from health_fitness_ledger.utils.exceptions import ConfigurationError


class StorageConfig(BaseModel):
    """Document store configuration."""

    backend: str = Field(default="sql", pattern="^(sql|memory)$")
    url: str = "sqlite:///data/health_fitness_ledger.db"
    echo: bool = False
    health_logs_collection: str = "health-logs"
    lab_results_collection: str = "lab-results"
    goals_collection: str = "fitness-goals"
    workouts_collection: str = "strava-workouts"
    strava_tokens_collection: str = "strava-tokens"


class MigrationConfig(BaseModel):
    """Legacy log migration configuration."""

    legacy_collection: str = "health-logs"
    incidents_collection: str = "health-incidents"
    backup_collection: str = "health-logs-backup"
    digest_algorithm: str = "sha256"


class StravaConfig(BaseModel):
    """Strava API configuration."""

    api_base: str = "https://www.strava.com/api/v3"
    oauth_base: str = "https://www.strava.com/oauth"
    client_id: str = ""
    client_secret: str = ""
    timeout_seconds: float = 10.0
    per_page: int = Field(default=30, ge=1, le=200)
    refresh_margin_seconds: int = 300


class IncidentsConfig(BaseModel):
    """Incident query configuration."""

    default_limit: int = 50
    autocomplete_incident_limit: int = 50


class OutputFilesConfig(BaseModel):
    """Output file names configuration."""

    incidents_csv: str = "incidents.csv"
    incidents_parquet: str = "incidents.parquet"
    workout_stats: str = "workout_stats.csv"
    lab_trends: str = "lab_trends.csv"
    migration_report: str = "migration_report.json"


class ParquetConfig(BaseModel):
    """Parquet output configuration."""

    compression: str = "snappy"
    engine: str = "pyarrow"


class OutputConfig(BaseModel):
    """Output configuration."""

    dir: str = "output"
    files: OutputFilesConfig = Field(default_factory=OutputFilesConfig)
    formats: list[str] = Field(default_factory=lambda: ["csv"])
    parquet: ParquetConfig = Field(default_factory=ParquetConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class CSVConfig(BaseModel):
    """Legacy health-log CSV import configuration."""

    encodings: list[str] = Field(default_factory=lambda: ["utf-8", "utf-8-sig", "latin-1"])
    delimiters: list[str] = Field(default_factory=lambda: [",", ";", "\t"])
    tag_separator: str = "|"
    column_mappings: dict[str, str] = Field(default_factory=dict)


class AppConfig(BaseSettings):
    """Main application configuration."""

    timezone: str = "UTC"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    strava: StravaConfig = Field(default_factory=StravaConfig)
    incidents: IncidentsConfig = Field(default_factory=IncidentsConfig)
    csv: CSVConfig = Field(default_factory=CSVConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HFL_", env_nested_delimiter="__", case_sensitive=False
    )


class ParameterLoader:
    """
    Centralized parameter loader for the application.

    Loads and validates configuration from YAML files using Pydantic models.
    Environment variables prefixed with ``HFL_`` (nested with ``__``) are
    applied by pydantic-settings, so secrets such as
    ``HFL_STRAVA__CLIENT_SECRET`` can stay out of the YAML file.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            self.config = AppConfig(**config_dict)

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_storage_config(self) -> StorageConfig:
        """Get document store configuration."""
        return self.config.storage

    def get_migration_config(self) -> MigrationConfig:
        """Get migration configuration."""
        return self.config.migration

    def get_strava_config(self) -> StravaConfig:
        """Get Strava API configuration."""
        return self.config.strava

    def get_incidents_config(self) -> IncidentsConfig:
        """Get incident query configuration."""
        return self.config.incidents

    def get_csv_config(self) -> CSVConfig:
        """Get CSV import configuration."""
        return self.config.csv

    def get_output_config(self) -> OutputConfig:
        """Get output configuration."""
        return self.config.output

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging

