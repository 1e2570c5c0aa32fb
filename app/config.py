from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from domain.models import LayoutConfig

DEFAULT_CONFIG_PATH = Path("config/layout.yaml")


class LayoutSettings(BaseModel):
    card_width: float = Field(130.0, gt=0)
    card_height: float = Field(65.0, gt=0)
    horizontal_gap: float = Field(15.0, ge=0)
    vertical_gap: float = Field(80.0, gt=0)
    partner_gap: float = Field(12.0, ge=0)
    padding: float = Field(50.0, ge=0)
    min_edge_clearance: float = Field(14.0, ge=0)
    tolerance: float = Field(0.5, gt=0)
    strict_mode: bool = False

    def to_layout_config(self) -> LayoutConfig:
        return LayoutConfig(**self.model_dump())


class SelectionSettings(BaseModel):
    select_all: bool = False
    include_spouse_ancestors: bool = False


class OutputSettings(BaseModel):
    directory: Path = Path("data/layouts")
    suffix: str = ".layout.json"

    @field_validator("suffix", mode="before")
    @classmethod
    def normalize_suffix(cls, value: object) -> str:
        raw = str(value or "").strip()
        if not raw:
            return ".layout.json"
        return raw if raw.startswith(".") else f".{raw}"

    def path_for(self, input_path: Path) -> Path:
        return self.directory / f"{input_path.stem}{self.suffix}"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STROM_", env_nested_delimiter="__")

    layout: LayoutSettings = LayoutSettings()
    selection: SelectionSettings = SelectionSettings()
    output: OutputSettings = OutputSettings()

    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv("STROM_CONFIG_PATH")
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
