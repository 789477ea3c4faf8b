"""Pydantic models for database and lifecycle configuration."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Environment(str, Enum):
    """Deployment environment the lifecycle runs in."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


class LifecycleConfig(BaseModel):
    """Options recognized by the lifecycle manager (``[lifecycle]`` in db.toml).

    Attributes:
        environment: development, production, or test.
        use_migration_files: Run migration files outside production.
        allow_sync_in_production: Unlock direct schema sync in production
            when no migration files exist.
        index_ceiling: Maximum indexes per table, primary key included.
        index_warning_margin: Health reports ``warning`` when a table is
            within this many indexes of the ceiling.
        health_sample_interval_ms: Health monitor tick interval.
        warn_latency_ms: Latency at or above which a check is ``warning``.
        critical_latency_ms: Latency at or above which a check is ``critical``.
        migrations_dir: Directory of ``<version>_<name>.sql`` files.
        models_file: TOML file of ``[[models]]`` descriptors.
        schema_name: PostgreSQL schema managed by the lifecycle.
        max_concurrency: Tables processed at once by emergency cleanup.
        db_timeout_seconds: Timeout applied to every database call.
        lock_timeout_seconds: Timeout for acquiring a per-table lock.
        retry_attempts: Attempts (first try included) for transient errors.
        retry_base_delay_seconds: First backoff delay; doubles per retry.
        start_health_monitor: Start the periodic monitor after setup.
    """

    environment: Environment = Environment.DEVELOPMENT
    use_migration_files: bool = False
    allow_sync_in_production: bool = False
    index_ceiling: int = Field(default=64, gt=0)
    index_warning_margin: int = Field(default=4, ge=0)
    health_sample_interval_ms: int = Field(default=30_000, gt=0)
    warn_latency_ms: float = Field(default=100.0, ge=0)
    critical_latency_ms: float = Field(default=500.0, ge=0)
    migrations_dir: str = "migrations"
    models_file: str = "models.toml"
    schema_name: str = "public"
    max_concurrency: int = Field(default=4, gt=0)
    db_timeout_seconds: float = Field(default=10.0, gt=0)
    lock_timeout_seconds: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    start_health_monitor: bool = True

    @model_validator(mode="after")
    def _check_latency_thresholds(self) -> "LifecycleConfig":
        if self.critical_latency_ms <= self.warn_latency_ms:
            raise ValueError(
                f"critical_latency_ms ({self.critical_latency_ms}) must be greater "
                f"than warn_latency_ms ({self.warn_latency_ms})"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
