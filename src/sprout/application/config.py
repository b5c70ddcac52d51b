from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from sprout.domain.constants import MAX_BACKUPS, SAVE_MAX_ATTEMPTS

CONFIG_FILES = [
    Path.home() / ".config/sprout/config.toml",
    Path.home() / ".sprout.toml",
]


class AppConfig(BaseSettings):
    """
    Process configuration for sprout.
    Supports loading from:
    1. Environment variables (SPROUT_*)
    2. Config file (~/.config/sprout/config.toml)
    3. Manual overrides (CLI)

    Card-format and scheduling preferences are not here: they live in the
    ``settings`` section of the data file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPROUT_",
        toml_file=CONFIG_FILES,
        extra="ignore",
    )

    # Paths
    root_input: Path | None = None
    vault_root: Path | None = None
    data_file: Path | None = None
    backup_dir: Path | None = None
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/sprout/logs")

    # Persistence
    max_backups: int = MAX_BACKUPS
    save_attempts: int = SAVE_MAX_ATTEMPTS

    # Server
    host: str = "127.0.0.1"
    port: int = 8777

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

        # Home may have changed since import (tests patch HOME).
        home = Path.home()
        toml_file = next(
            (f for f in (home / ".config/sprout/config.toml", home / ".sprout.toml") if f.exists()),
            None,
        )

        # Later sources lose: CLI overrides beat env, env beats the TOML file.
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("root_input", "vault_root", "data_file", "backup_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser().resolve()


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/sprout/config.toml (if exists)
    3. Environment variables (SPROUT_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.root_input is None:
        # No CLI path provided? Prefer configured vault_root, else CWD.
        config.root_input = config.vault_root if config.vault_root else Path.cwd()

    if config.vault_root is None:
        config.vault_root = (
            config.root_input if config.root_input.is_dir() else config.root_input.parent
        )
    elif not config.root_input.is_relative_to(config.vault_root):
        # The configured vault is irrelevant for a path outside it.
        config.vault_root = (
            config.root_input if config.root_input.is_dir() else config.root_input.parent
        )

    if config.data_file is None:
        config.data_file = config.vault_root / ".sprout" / "data.json"
    if config.backup_dir is None:
        config.backup_dir = config.data_file.parent / "backups"

    return config
