"""RulesSettings: CLI flags, environment and ``pricerules.toml`` in one object.

Priority (highest first):
  1. constructor kwargs (the CLI flags),
  2. ``PRICERULES_*`` environment variables (``__`` for nesting, e.g.
     ``PRICERULES_PROMOTIONS__PRECEDENCE=combined``),
  3. the TOML file found by walk-up,
  4. section model defaults.
"""

from __future__ import annotations

import threading
import tomllib
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import tzinfo
from pathlib import Path
from typing import Any

import click
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from pricerules.config.discovery import find_config, read_toml
from pricerules.config.models import (
    CatalogConfig,
    EvaluationConfig,
    PromotionsConfig,
    TimeConfig,
)
from pricerules.domain.timeparse import resolve_timezone


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Top-level tables of one TOML file, one per settings section."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path is None or not toml_path.is_file():
            return
        try:
            self._data = read_toml(toml_path)
        except tomllib.TOMLDecodeError as exc:
            raise click.ClickException(f"Invalid TOML in {toml_path}: {exc}") from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


# settings_customise_sources is a classmethod, so the file chosen by
# from_cli reaches it through this per-thread slot.
_pending = threading.local()


@contextmanager
def _reading(toml_path: Path | None) -> Iterator[None]:
    _pending.toml_path = toml_path
    try:
        yield
    finally:
        _pending.toml_path = None


class RulesSettings(BaseSettings):
    """Everything a command or service needs to know about its catalog.

    Attributes:
        catalog_root: Directory holding ``.pricerules/`` (the config file's
            directory, ``--root``, or the cwd).
        config_path: The TOML file in effect, if any.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "PRICERULES_",
        "env_nested_delimiter": "__",
    }

    catalog_root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    time: TimeConfig = Field(default_factory=TimeConfig)
    promotions: PromotionsConfig = Field(default_factory=PromotionsConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)

    @property
    def tz(self) -> tzinfo:
        """Zone that local admin dates and times are read in."""
        return resolve_timezone(self.time.timezone)

    @property
    def db_path(self) -> Path:
        return self.catalog_root / ".pricerules" / self.catalog.db_filename

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_path = getattr(_pending, "toml_path", None)
        return init_settings, env_settings, TomlSettingsSource(settings_cls, toml_path)

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        catalog_root: Path | None = None,
        **cli_flags: Any,
    ) -> RulesSettings:
        """Build settings for one CLI invocation.

        An explicit *config_path* must exist. Otherwise the config is
        discovered by walking up from *catalog_root* (or the cwd), and the
        catalog lives next to it unless *catalog_root* says where.
        """
        if config_path:
            toml_path: Path | None = Path(config_path)
            if not toml_path.is_file():
                raise click.ClickException(f"Config file not found: {config_path}")
        else:
            toml_path = find_config(catalog_root)

        if catalog_root is None:
            catalog_root = toml_path.parent if toml_path else Path.cwd()

        with _reading(toml_path):
            return cls(catalog_root=catalog_root, config_path=toml_path, **cli_flags)
