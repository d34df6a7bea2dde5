import logging

import pytest

from vpnguard.config import reset_config
from vpnguard.logger import get_logger


@pytest.fixture(autouse=True)
def _isolated_logger():
    """Each test starts with a bare, propagating vpnguard logger."""
    yield
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in ("VPNGUARD_CONFIG", "VPNGUARD_SERVER_NAME", "VPNGUARD_OPERATOR",
                 "VPNGUARD_LOG_DIR", "VPNGUARD_VERBOSITY"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
