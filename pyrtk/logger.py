# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging configuration for pyrtk

Importing this module registers a TRACE level (below DEBUG) and a
``Logger.trace`` method, used for per-observation diagnostics.
"""

import logging
import sys
from enum import Enum
from typing import Dict, Optional

ROOT_LOGGER = "pyrtk"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class LogLevel(Enum):
    """Log levels used by pyrtk"""
    TRACE = 5
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


logging.addLevelName(LogLevel.TRACE.value, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log at TRACE level"""
    if self.isEnabledFor(LogLevel.TRACE.value):
        self._log(LogLevel.TRACE.value, message, args, **kwargs)


logging.Logger.trace = trace


def level_value(level: str) -> int:
    try:
        return LogLevel[level.upper()].value
    except KeyError:
        raise ValueError(f"unknown log level {level!r}") from None


class ColoredFormatter(logging.Formatter):
    """Console formatter coloring the level name"""

    COLORS = {
        'TRACE': '\033[36m',     # Cyan
        'DEBUG': '\033[34m',     # Blue
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # color a copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logger(name: str = ROOT_LOGGER,
                 level: str = "INFO",
                 log_file: Optional[str] = None,
                 console: bool = True) -> logging.Logger:
    """
    Configure a logger with console and/or file output

    Parameters
    ----------
    name : str
        Logger name; ``"pyrtk"`` configures every module of the package
    level : str
        TRACE, DEBUG, INFO, WARNING, ERROR or CRITICAL
    log_file : str, optional
        Also write plain records to this file
    console : bool
        Colored output on stdout

    Returns
    -------
    logging.Logger
    """
    value = level_value(level)
    logger = logging.getLogger(name)
    logger.setLevel(value)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt='%H:%M:%S'))
        logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the package namespace"""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + '.'):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class LogContext:
    """Temporarily change a logger's level

    >>> with LogContext(logging.getLogger('pyrtk.estimation'), 'TRACE'):
    ...     session.process_epoch(epoch)
    """

    def __init__(self, logger: logging.Logger, level: str):
        self.logger = logger
        self.new_level = level_value(level)
        self.old_level = None

    def __enter__(self):
        self.old_level = self.logger.level
        self.logger.setLevel(self.new_level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self.old_level)


class LoggerConfig:
    """Package-wide default level plus per-module overrides"""

    def __init__(self):
        self.module_levels: Dict[str, str] = {}
        self.default_level = "INFO"
        self.log_file = None
        self.console = True

    def set_module_level(self, module_name: str, level: str):
        value = level_value(level)
        self.module_levels[module_name] = level
        logging.getLogger(module_name).setLevel(value)

    def configure_from_dict(self, config: dict):
        self.default_level = config.get('default_level', self.default_level)
        self.log_file = config.get('log_file', self.log_file)
        self.console = config.get('console', self.console)
        for module, level in config.get('module_levels', {}).items():
            self.set_module_level(module, level)

    def setup_all_loggers(self) -> logging.Logger:
        root = setup_logger(ROOT_LOGGER, self.default_level, self.log_file, self.console)
        # module loggers propagate to the package logger; only their level changes
        for module, level in self.module_levels.items():
            logging.getLogger(module).setLevel(level_value(level))
        return root


logger_config = LoggerConfig()


def setup_logger_from_config(config: dict) -> logging.Logger:
    """Configure pyrtk logging from a dictionary

    Example::

        {
            'default_level': 'INFO',
            'log_file': 'pyrtk.log',
            'console': True,
            'module_levels': {
                'pyrtk.gnss.preprocessing': 'TRACE',
                'pyrtk.rtk': 'DEBUG',
            }
        }
    """
    logger_config.configure_from_dict(config)
    return logger_config.setup_all_loggers()
