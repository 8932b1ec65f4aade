"""Loguru-backed logger registered in the dependency container."""

import os
import sys

import typing as t
from loguru import logger as _loguru_logger

from .config import Settings
from .depends import depends


class LoggerSettings(Settings):
    log_level: str = "INFO"
    serialize: bool = False
    format: str = (
        "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>"
        " <level>{level:>8}</level>"
        " <b><w>in</w></b> <b>{extra[mod_name]:>20}</b>"
        "  <level>{message}</level>"
    )


class Logger:
    """Small facade over a bound loguru logger.

    Every record carries a ``mod_name`` extra so the configured format can
    show which component logged it.
    """

    def __init__(
        self,
        settings: LoggerSettings | None = None,
        mod_name: str = "repokit",
        **extra: t.Any,
    ) -> None:
        self.settings = settings or LoggerSettings()
        self._extra = {"mod_name": mod_name} | extra
        self._logger = _loguru_logger.bind(**self._extra)
        self._sink_id: int | None = None

    def init(self) -> None:
        """Replace loguru's default sink with the configured one."""
        _loguru_logger.remove()
        self._sink_id = _loguru_logger.add(
            sys.stderr,
            level=self.settings.log_level,
            format=self.settings.format,
            serialize=self.settings.serialize,
            filter=lambda record: "mod_name" in record["extra"],
        )

    def bind(self, **extra: t.Any) -> "Logger":
        extra = self._extra | extra
        return Logger(self.settings, **extra)

    def debug(self, msg: str, *args: t.Any, **kwargs: t.Any) -> None:
        self._logger.opt(depth=1).debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: t.Any, **kwargs: t.Any) -> None:
        self._logger.opt(depth=1).info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: t.Any, **kwargs: t.Any) -> None:
        self._logger.opt(depth=1).warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: t.Any, **kwargs: t.Any) -> None:
        self._logger.opt(depth=1).error(msg, *args, **kwargs)

    def exception(self, msg: str, *args: t.Any, **kwargs: t.Any) -> None:
        self._logger.opt(depth=1, exception=True).error(msg, *args, **kwargs)


def _testing() -> bool:
    return "pytest" in sys.modules or os.getenv("TESTING", "").lower() == "true"


def get_logger(mod_name: str) -> Logger:
    """Return the registered logger bound to ``mod_name``."""
    return depends.get_sync(Logger).bind(mod_name=mod_name)


depends.set(LoggerSettings)
_default_logger = depends.set(Logger, Logger(depends.get_sync(LoggerSettings)))
if not _testing():
    _default_logger.init()
