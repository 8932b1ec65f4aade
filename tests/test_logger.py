"""Tests for the loguru-backed logger."""

import pytest
from loguru import logger as loguru_logger

from repokit.depends import depends
from repokit.logger import Logger, LoggerSettings, get_logger


@pytest.fixture
def captured():
    records: list[dict] = []
    sink_id = loguru_logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    loguru_logger.remove(sink_id)


@pytest.mark.unit
class TestLogger:
    def test_records_carry_mod_name(self, captured: list[dict]) -> None:
        log = Logger(LoggerSettings(), mod_name="repository.user")

        log.info("created")
        log.bind(request_id="r1").warning("slow")

        assert [r["message"] for r in captured] == ["created", "slow"]
        assert captured[0]["extra"]["mod_name"] == "repository.user"
        assert captured[1]["extra"] == {"mod_name": "repository.user", "request_id": "r1"}
        assert captured[1]["level"].name == "WARNING"

    def test_get_logger_binds_registered_logger(self, captured: list[dict]) -> None:
        get_logger("cache").debug("hit")

        assert captured[-1]["extra"]["mod_name"] == "cache"
        assert isinstance(depends.get_sync(Logger), Logger)

    def test_exception_includes_traceback(self, captured: list[dict]) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            Logger().exception("failed")

        assert captured[-1]["exception"] is not None
