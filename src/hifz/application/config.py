from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from hifz.domain.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONTEXT_SIZE,
    DUE_CHECK_INTERVAL,
    DUE_REVIEW_LIMIT,
    MAX_RETRIES,
    READ_AHEAD,
    RETRY_BACKOFF,
)

CONFIG_FILES = [
    Path.home() / ".config/hifz/config.toml",
    Path.home() / ".hifz.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for hifz.
    Supports loading from:
    1. Environment variables (HIFZ_*)
    2. Config file (~/.config/hifz/config.toml)
    3. Manual overrides (CLI / server requests)
    """

    model_config = SettingsConfigDict(
        env_prefix="HIFZ_",
        extra="ignore",
    )

    # Storage
    backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: Path = Field(default_factory=lambda: Path.home() / ".local/share/hifz/hifz.db")

    # Session
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    read_ahead: int = Field(default=READ_AHEAD, ge=0)
    context_size: int = Field(default=DEFAULT_CONTEXT_SIZE, ge=0)

    # Due review detection
    check_interval: float = Field(default=DUE_CHECK_INTERVAL, gt=0)
    due_limit: int = Field(default=DUE_REVIEW_LIMIT, ge=1)

    # Resilience
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    retry_backoff: float = Field(default=RETRY_BACKOFF, ge=0)

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Find the first existing file
        toml_file = None
        for f in CONFIG_FILES:
            if f.exists():
                toml_file = f
                break

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("db_path", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path:
        return Path(v).expanduser()


def resolve_config(overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/hifz/config.toml (if exists)
    3. Environment variables (HIFZ_*)
    4. overrides (passed from Typer or the server), None values ignored
    """
    cleaned = {k: v for k, v in (overrides or {}).items() if v is not None}
    return AppConfig(**cleaned)
