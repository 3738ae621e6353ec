"""Configuration management for the Library Ledger service.

Settings are loaded with pydantic-settings from, in order of precedence:
1. Explicit keyword arguments (tests, embedding applications)
2. ``LIBRARY_LEDGER_*`` environment variables
3. A local ``.env`` file
4. The defaults declared below
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Service configuration.

    Groups the settings used by the database layer, the loan ledger, the
    REST and MCP surfaces, the static access layer and observability.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    service_name: str = Field(
        default="library-ledger",
        description="Service name reported by the MCP handshake and the REST API",
        pattern=r"^[a-z0-9-]+$",
    )

    service_version: str = Field(
        default="0.1.0",
        description="Semantic version of the service",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library_ledger.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a SQLite writer waits for the database lock",
        gt=0,
    )

    # === Lending Policy ===

    loan_period_days: int = Field(
        default=14,
        description="Days between borrow date and due date",
        ge=1,
        le=365,
    )

    default_page_size: int = Field(default=20, ge=1, le=100)

    max_page_size: int = Field(default=100, ge=1, le=500)

    # === Transport Configuration ===

    transport: str = Field(
        default="rest",
        description="Surface started by the entry point",
        pattern=r"^(stdio|rest)$",
    )

    http_host: str = Field(default="127.0.0.1", description="REST API bind address")

    http_port: int = Field(
        default=8000,
        description="REST API port",
        ge=1024,
        le=65535,
    )

    # === Access Layer ===

    # token -> "role:user_id", e.g. {"s3cret": "librarian:alice"}
    access_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Static bearer tokens accepted by the development authenticator",
        repr=False,
    )

    # === Development Configuration ===

    debug: bool = Field(default=False, description="Enable debug logging")

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    # === Observability ===

    observability_enabled: bool = Field(
        default=False,
        description="Configure logfire spans and metrics at startup",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path and make sure its directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)

        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")

        return abs_path

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Service name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Service name must not exceed 50 characters")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @property
    def is_development(self) -> bool:
        """True when verbose diagnostics should be produced."""
        return self.debug or self.log_level == "DEBUG"

    @property
    def service_info(self) -> dict[str, str]:
        return {
            "name": self.service_name,
            "version": self.service_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for the configuration singleton."""

    _instance: LedgerConfig | None = None


def get_config() -> LedgerConfig:
    """Get or create the process-wide configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LedgerConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def set_config(config: LedgerConfig) -> None:
    """Install an explicit configuration (embedding applications, tests)."""
    _ConfigStore._instance = config  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Drop the cached configuration so the next access reloads it."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
