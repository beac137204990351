"""Load ShelfRag configuration from YAML files, environment and kwargs.

Precedence, highest first:

1. ``load_config(**kwargs)`` overrides
2. ``SHELFRAG__SECTION__KEY`` environment variables
3. ``<project>/.shelfrag/config.yaml``
4. ``~/.config/shelfrag/config.yaml``
5. Model defaults
"""

from pathlib import Path
from typing import Any, NamedTuple

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from shelfrag.config.models import (
    ChunkingConfig,
    CloudEmbeddingConfig,
    IndexingConfig,
    LocalEmbeddingConfig,
    LoggingConfig,
    SearchConfig,
    ShelfRagConfig,
    StoreConfig,
)
from shelfrag.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/shelfrag/config.yaml").expanduser()
PROJECT_DIR_NAME = ".shelfrag"
CONFIG_FILE_NAME = "config.yaml"


class ResolvedPaths(NamedTuple):
    db_path: Path
    model_dir: Path


def _load_yaml(path: Path) -> dict[str, Any]:
    """Parse one config file; a missing or empty file is ``{}``."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top level must be a mapping")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class _YamlSource(PydanticBaseSettingsSource):
    """Lowest-precedence source fed from the merged YAML files."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        value = self._yaml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _settings_for(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    # A class per call keeps the YAML payload off shared class state.
    class ShelfRagSettings(BaseSettings):
        model_config = SettingsConfigDict(
            env_prefix="SHELFRAG__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        store: StoreConfig = StoreConfig()
        cloud: CloudEmbeddingConfig = CloudEmbeddingConfig()
        local: LocalEmbeddingConfig = LocalEmbeddingConfig()
        chunking: ChunkingConfig = ChunkingConfig()
        indexing: IndexingConfig = IndexingConfig()
        search: SearchConfig = SearchConfig()

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return ShelfRagSettings


def config_files(project_root: Path) -> list[Path]:
    """Config files consulted for ``project_root``, lowest precedence first."""
    return [GLOBAL_CONFIG_PATH, project_root / PROJECT_DIR_NAME / CONFIG_FILE_NAME]


def load_config(project_root: Path | None = None, **kwargs: Any) -> ShelfRagConfig:
    """Resolve the configuration for a project directory.

    Args:
        project_root: Directory holding ``.shelfrag/``. Defaults to the
                      current working directory.
        **kwargs: Section overrides, e.g. ``search={"default_limit": 10}``.

    Raises:
        ConfigError: On unreadable YAML or a value that fails validation.
    """
    project_root = project_root or Path.cwd()

    yaml_config: dict[str, Any] = {}
    for path in config_files(project_root):
        yaml_config = _deep_merge(yaml_config, _load_yaml(path))

    try:
        settings = _settings_for(yaml_config)(**kwargs)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first["loc"])
        raise ConfigError.invalid_value(where, first.get("input"), first["msg"]) from e
    return ShelfRagConfig.model_validate(settings.model_dump())


def resolve_paths(config: ShelfRagConfig, project_root: Path) -> ResolvedPaths:
    """Database file and model cache directory for ``project_root``.

    Unset paths default under ``<project_root>/.shelfrag/``; relative ones
    are taken relative to the project root, not the working directory.
    """
    data_dir = project_root / PROJECT_DIR_NAME

    def _anchor(value: str | None, default: Path) -> Path:
        if not value:
            return default
        path = Path(value).expanduser()
        return path if path.is_absolute() else project_root / path

    return ResolvedPaths(
        db_path=_anchor(config.store.db_path, data_dir / "vectors.db"),
        model_dir=_anchor(config.local.cache_dir, data_dir / "models"),
    )
