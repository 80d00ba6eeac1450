import logging

import pytest

from snaptop.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_snaptop_logger():
    """Undo setup_logging() so caplog sees snaptop records in every test."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
