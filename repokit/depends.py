"""Dependency registry.

A thin layer over the bevy container. Settings, the logger, the locale
provider and the default cache register themselves here when their modules
are imported; application code replaces them with ``depends.set``.
"""

import logging

import typing as t
from bevy import Inject, auto_inject, get_container


class Depends:
    """Register and resolve shared instances by class."""

    @staticmethod
    def inject(func: t.Callable[..., t.Any]) -> t.Callable[..., t.Any]:
        """Decorator to inject ``Inject[...]`` annotated parameters."""
        return t.cast("t.Callable[..., t.Any]", auto_inject(func))

    @staticmethod
    def set(class_: t.Any, instance: t.Any = None) -> t.Any:
        """Register ``instance`` (or a fresh ``class_()``) and return it."""
        if instance is None:
            instance = class_()
        get_container().add(class_, instance)
        return instance

    @staticmethod
    def get_sync(class_: t.Any) -> t.Any:
        """Resolve the registered instance for ``class_``."""
        result = get_container().get(class_)
        if isinstance(result, tuple):
            if len(result) != 1:
                msg = f"Dependency '{class_}' resolved to {len(result)} values"
                raise RuntimeError(msg)
            logging.getLogger(__name__).warning(
                f"Dependency {class_} was registered as a tuple, unwrapping it",
            )
            return result[0]
        return result

    async def get(self, class_: t.Any) -> t.Any:
        """Async alias of :meth:`get_sync` for use inside coroutines."""
        return self.get_sync(class_)


depends = Depends()

__all__ = ["Depends", "Inject", "depends", "get_container"]
