# tests/conftest.py
import os
import logging
import pytest

from evdispatch.core import log
from evdispatch.core.context import Context
from evdispatch.core.dispatcher import Dispatcher
from evdispatch.core.metrics import start_exporter, stop_exporter


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_logging_and_metrics():
    # reads LOG_LEVEL / LOG_JSON / .env if available
    log.setup()

    interval = float(os.getenv("METRICS_INTERVAL_TEST", "1.0"))
    json_mode = (os.getenv("LOG_JSON", "0") == "1")
    start_exporter(interval_sec=interval, json_mode=json_mode,
                   logger=logging.getLogger("metrics"))
    yield
    stop_exporter()


@pytest.fixture
def dispatcher():
    return Dispatcher()


@pytest.fixture
def ctx():
    return Context.background()
