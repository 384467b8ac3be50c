import io
import logging

import pytest

from core.config import CoreConfig
from core.logger import PACKAGE_LOGGERS, configure_logging, get_logger, set_level


@pytest.fixture
def restore_loggers():
    saved = {}
    for name in PACKAGE_LOGGERS:
        logger = logging.getLogger(name)
        saved[name] = (list(logger.handlers), logger.propagate, logger.level)
    yield
    for name, (handlers, propagate, level) in saved.items():
        logger = logging.getLogger(name)
        logger.handlers[:] = handlers
        logger.propagate = propagate
        logger.setLevel(level)


def test_configure_logging_routes_module_loggers(restore_loggers) -> None:
    stream = io.StringIO()
    configure_logging("INFO", stream=stream)
    configure_logging("INFO", stream=stream)

    logging.getLogger("services.lifecycle_service").info("Práctica %s registrada", "p-1")
    logging.getLogger("services.lifecycle_service").debug("no visible")

    output = stream.getvalue()
    assert output.count("Práctica p-1 registrada") == 1
    assert "services.lifecycle_service" in output
    assert "no visible" not in output


def test_set_level_applies_to_every_package(restore_loggers) -> None:
    set_level("ERROR")

    assert {logging.getLogger(name).level for name in PACKAGE_LOGGERS} == {logging.ERROR}


def test_get_logger_children_share_the_practicas_root() -> None:
    assert get_logger("alertas").name == "practicas.alertas"
    assert get_logger().name == "practicas"


def test_configure_logging_defaults_to_config_level(restore_loggers) -> None:
    stream = io.StringIO()
    configure_logging(stream=stream, config=CoreConfig(log_level="WARNING"))

    logging.getLogger("services.alert_service").info("oculto")
    logging.getLogger("services.alert_service").warning("visible")

    assert "visible" in stream.getvalue()
    assert "oculto" not in stream.getvalue()
