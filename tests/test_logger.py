#!/usr/bin/env python3
"""Test suite for logging configuration"""

import logging
import os
import tempfile
import unittest

from pyrtk.logger import (ROOT_LOGGER, LogContext, LogLevel, get_logger, level_value,
                          setup_logger, setup_logger_from_config)


class TestLogger(unittest.TestCase):

    def tearDown(self):
        logger = logging.getLogger(ROOT_LOGGER)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)

    def test_level_value(self):
        self.assertEqual(level_value('debug'), logging.DEBUG)
        self.assertEqual(level_value('TRACE'), LogLevel.TRACE.value)
        with self.assertRaises(ValueError):
            level_value('verbose')

    def test_setup_console_and_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'pyrtk.log')
            logger = setup_logger(level='DEBUG', log_file=path)
            self.assertEqual(logger.level, logging.DEBUG)
            self.assertEqual(len(logger.handlers), 2)
            get_logger('navigation.session').debug("hello")
            for handler in logger.handlers:
                handler.flush()
            with open(path) as fh:
                content = fh.read()
            self.assertIn("pyrtk.navigation.session - DEBUG - hello", content)
            self.tearDown()

    def test_setup_replaces_handlers(self):
        setup_logger()
        logger = setup_logger(console=True)
        self.assertEqual(len(logger.handlers), 1)

    def test_get_logger_prefix(self):
        self.assertEqual(get_logger('rtk').name, 'pyrtk.rtk')
        self.assertEqual(get_logger('pyrtk.rtk').name, 'pyrtk.rtk')
        self.assertEqual(get_logger(ROOT_LOGGER).name, 'pyrtk')

    def test_trace(self):
        logger = setup_logger(level='TRACE', console=False)
        with self.assertLogs(logger, level=LogLevel.TRACE.value) as cm:
            logger.trace("fine detail")
        self.assertEqual(cm.records[0].levelname, 'TRACE')

    def test_log_context(self):
        logger = logging.getLogger('pyrtk.estimation')
        logger.setLevel(logging.WARNING)
        with LogContext(logger, 'DEBUG'):
            self.assertEqual(logger.level, logging.DEBUG)
        self.assertEqual(logger.level, logging.WARNING)
        logger.setLevel(logging.NOTSET)

    def test_from_config(self):
        root = setup_logger_from_config({
            'default_level': 'WARNING',
            'console': False,
            'module_levels': {'pyrtk.rtk': 'DEBUG'},
        })
        self.assertEqual(root.level, logging.WARNING)
        self.assertEqual(logging.getLogger('pyrtk.rtk').level, logging.DEBUG)
        logging.getLogger('pyrtk.rtk').setLevel(logging.NOTSET)


if __name__ == '__main__':
    unittest.main()
