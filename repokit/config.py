"""Settings base class and YAML loading.

Every settings class owns one section, named after the class
(``RepositoryCacheSettings`` -> ``repository_cache``). Values come from, in
order of precedence: keyword arguments, ``REPOKIT_<SECTION>_<FIELD>``
environment variables, the section of a YAML file given to
:func:`load_settings`, and the field defaults.
"""

from pathlib import Path

import typing as t
import yaml
from inflection import underscore
from pydantic_settings import BaseSettings, SettingsConfigDict

from .depends import depends

_registry: dict[str, type["Settings"]] = {}


def section_name(settings_cls: type["Settings"]) -> str:
    return underscore(settings_cls.__name__.removesuffix("Settings")) or "app"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_default=True,
        env_nested_delimiter="__",
    )

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: t.Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        section = section_name(cls)
        cls.model_config["env_prefix"] = f"REPOKIT_{section.upper()}_"
        _registry[section] = cls

    @classmethod
    def section(cls) -> str:
        return section_name(cls)


def registered_settings() -> dict[str, type[Settings]]:
    return dict(_registry)


def read_yaml(path: str | Path) -> dict[str, t.Any]:
    path = Path(path)
    if not path.is_file():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        msg = f"Settings file {path} must contain a mapping of sections"
        raise ValueError(msg)
    return data


def load_settings(path: str | Path) -> dict[str, Settings]:
    """Build every known settings class from ``path`` and register them.

    Sections missing from the file fall back to environment and defaults.
    Returns the instances keyed by section name.
    """
    data = read_yaml(path)
    loaded: dict[str, Settings] = {}
    for section, settings_cls in _registry.items():
        values = data.get(section) or {}
        instance = settings_cls(**values)
        depends.set(settings_cls, instance)
        loaded[section] = instance
    return loaded
