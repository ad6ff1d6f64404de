import logging

import pytest

from seqflow.logging import logger, set_log_level


def test_set_log_level() -> None:
    level = logger.level
    try:
        set_log_level("debug")
        assert logger.level == logging.DEBUG

        with pytest.raises(ValueError):
            set_log_level("LOUD")
    finally:
        logger.setLevel(level)
