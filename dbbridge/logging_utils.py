# dbbridge/logging_utils.py
"""
Logging utilities for export and load jobs.

Creates timestamped log files like job_name_YYYYMMDD_HHMMSS.log, with an
error log that only appears when something is logged at ERROR or above.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from .defaults import settings

logger = logging.getLogger(__name__)

# Module-level state for error tracking
_error_handler: Optional['ErrorCountHandler'] = None
_main_log_path: Optional[str] = None
_error_log_path: Optional[str] = None
_split_errors: bool = False


class ErrorCountHandler(logging.Handler):
    """Counts ERROR and CRITICAL messages and creates the error log on the first one."""

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__()
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self._error_file_handler = None

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1

        if self.error_log_path and self._error_file_handler is None:
            try:
                self._error_file_handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
            except OSError as e:
                logger.warning(f"Failed to create error log file: {e}")
                return
            self._error_file_handler.setLevel(logging.ERROR)
            if self.formatter:
                self._error_file_handler.setFormatter(self.formatter)
            logging.getLogger().addHandler(self._error_file_handler)


def setup_logging(
    script_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Configure root logging for a job.

    Creates log files with pattern: {script_name}_{datetime}.log
    Optionally creates separate error log: {script_name}_{datetime}_error.log

    Args:
        script_name: Base name for log files (defaults to script filename without extension)
        log_dir: Directory for log files (defaults to settings['logging']['directory'])
        level: DEBUG, INFO, WARNING, ERROR (defaults to settings['logging']['level'])
        split_errors: Create separate error log file (defaults to settings)
        console: Also log to stdout (defaults to settings)

    Returns:
        Tuple of (log_file_path, error_log_path or None)

    Example
    -------
    ::
        import dbbridge

        dbbridge.setup_logging('nightly_export')
        dbbridge.setup_logging('orders_load', log_dir='/var/log/etl', level='DEBUG')

    Note:
        Set 'logging.filename_format' in dbbridge.yml to change the file name pattern:
        - '%Y%m%d_%H%M%S' - One log per run (default)
        - '%Y%m%d' - One log per day
        - '' - Single log file
    """
    if script_name is None:
        script_name = Path(sys.argv[0]).stem

    logging_config = settings.get('logging', {})
    log_dir = log_dir or logging_config.get('directory', './logs')
    level = (level or logging_config.get('level', 'INFO')).upper()
    split_errors = split_errors if split_errors is not None else logging_config.get('split_errors', True)
    console = console if console is not None else logging_config.get('console', True)

    log_format = logging_config.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    timestamp_format = logging_config.get('timestamp_format', '%Y-%m-%d %H:%M:%S')
    filename_format = logging_config.get('filename_format', '%Y%m%d_%H%M%S')

    log_dir_path = Path(log_dir)
    log_dir_path.mkdir(parents=True, exist_ok=True)

    if filename_format:
        base_name = f"{script_name}_{datetime.now().strftime(filename_format)}"
    else:
        base_name = script_name
    log_file = log_dir_path / f"{base_name}.log"
    error_file = log_dir_path / f"{base_name}_error.log" if split_errors else None

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format, datefmt=timestamp_format)

    global _error_handler, _main_log_path, _error_log_path, _split_errors
    _error_handler = ErrorCountHandler(
        error_log_path=str(error_file) if error_file else None,
        formatter=formatter
    )
    _error_handler.setLevel(logging.ERROR)
    root_logger.addHandler(_error_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logger.info(f"Logging initialized: {log_file}")

    _main_log_path = str(log_file)
    _error_log_path = str(error_file) if error_file else None
    _split_errors = split_errors

    return _main_log_path, _error_log_path


def errors_logged() -> Optional[str]:
    """
    Check if any ERROR or CRITICAL messages were logged since setup_logging().

    Returns
    -------
    str or None
        Path to the error log (split_errors=True) or the main log when errors
        were logged. None if no errors were logged or setup_logging() was not called.

    Example
    -------
    ::

        dbbridge.setup_logging('nightly_export')
        try:
            export_query(query, 'out.csv', 'warehouse')
        except DbBridgeError as e:
            logging.error(f"Export failed: {e}")

        error_log = dbbridge.errors_logged()
        if error_log:
            print(f"Errors detected! See: {error_log}")
    """
    if _error_handler is None:
        logger.warning("errors_logged() called but setup_logging() was not called")
        return None
    if _error_handler.error_count == 0:
        return None
    if _split_errors and _error_log_path:
        return _error_log_path
    return _main_log_path
