"""Test configuration for pytest."""

import logging
import os

import pytest


@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests to be minimal."""
    os.environ['PHOTOCULL_LOG_LEVEL'] = 'WARNING'

    logging.getLogger().setLevel(logging.WARNING)

    # The grouping and router loggers report every skipped item
    for logger_name in ['photocull.dedup.model', 'photocull.decode.router']:
        logging.getLogger(logger_name).setLevel(logging.ERROR)
