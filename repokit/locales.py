"""Locale enumeration and the active locale of the current context.

Cached reads are keyed by the active locale because translated attributes
differ per locale. Writes must invalidate every locale, so invalidation asks
a :class:`LocaleProvider` for the full set and passes each code explicitly
instead of switching the active locale.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar

import typing as t
from pydantic import Field, model_validator

from .config import Settings
from .depends import depends


class LocaleSettings(Settings):
    locales: list[str] = Field(default_factory=lambda: ["en"], min_length=1)
    default_locale: str = "en"

    @model_validator(mode="after")
    def default_is_known(self) -> "LocaleSettings":
        if self.default_locale not in self.locales:
            msg = (
                f"default_locale '{self.default_locale}' is not one of "
                f"{', '.join(self.locales)}"
            )
            raise ValueError(msg)
        return self


_current_locale: ContextVar[str | None] = ContextVar("_current_locale", default=None)


def get_locale(settings: LocaleSettings | None = None) -> str:
    """Return the locale active in this context, or the configured default."""
    locale = _current_locale.get()
    if locale is not None:
        return locale
    settings = settings or depends.get_sync(LocaleSettings)
    return settings.default_locale


@contextmanager
def use_locale(locale: str) -> Iterator[str]:
    """Make ``locale`` active for the enclosed block (task-local)."""
    token = _current_locale.set(locale)
    try:
        yield locale
    finally:
        _current_locale.reset(token)


@t.runtime_checkable
class LocaleProvider(t.Protocol):
    async def all_locales(self) -> Sequence[str]: ...


class StaticLocaleProvider:
    """Locale provider over a fixed, configured list."""

    def __init__(
        self,
        locales: Sequence[str] | None = None,
        settings: LocaleSettings | None = None,
    ) -> None:
        if locales is None:
            settings = settings or depends.get_sync(LocaleSettings)
            locales = settings.locales
        if not locales:
            msg = "A locale provider needs at least one locale"
            raise ValueError(msg)
        self._locales = tuple(dict.fromkeys(locales))

    async def all_locales(self) -> Sequence[str]:
        return self._locales

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._locales)!r})"


depends.set(LocaleSettings)
depends.set(LocaleProvider, StaticLocaleProvider())
