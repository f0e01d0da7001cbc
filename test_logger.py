#!/usr/bin/env python3
"""
Tests for the console and run-log file handlers.
"""

import logging
import sys
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent / 'src'
sys.path.insert(0, str(src_path))

from rich.logging import RichHandler

from workflow_eve.logger import reset_handlers, setup_logging


def test_debug_records_reach_the_log_file_only():
    with tempfile.TemporaryDirectory() as tmp:
        logger = setup_logging(Path(tmp) / 'logs', log_filename='run.log')
        try:
            assert logger.name == 'workflow_eve'
            handlers = {type(h): h for h in logger.handlers}
            assert handlers[RichHandler].level == logging.INFO
            assert handlers[RotatingFileHandler].level == logging.DEBUG

            logging.getLogger('workflow_eve').debug('depth filter applied')
            handlers[RotatingFileHandler].flush()
            text = (Path(tmp) / 'logs' / 'run.log').read_text()
            assert 'depth filter applied' in text
            assert 'DEBUG' in text
        finally:
            reset_handlers(logger)


def test_repeated_setup_replaces_handlers():
    with tempfile.TemporaryDirectory() as tmp:
        setup_logging(tmp, log_filename='first.log')
        logger = setup_logging(tmp, log_filename='second.log')
        try:
            assert len(logger.handlers) == 2
            files = [h.baseFilename for h in logger.handlers
                     if isinstance(h, RotatingFileHandler)]
            assert [Path(f).name for f in files] == ['second.log']
        finally:
            reset_handlers(logger)
        assert logger.handlers == []
