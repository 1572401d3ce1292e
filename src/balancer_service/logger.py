import logging
import sys
import json
import os
import gzip
import shutil
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from app_config import LoggingConfig
from balancer_service.context import get_current_account

# LogRecord attributes that are not user supplied extras
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'getMessage', 'exc_info', 'exc_text',
    'stack_info', 'message', 'account_id',
}


class CompressingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """TimedRotatingFileHandler that compresses rotated files"""

    def doRollover(self):
        super().doRollover()

        dir_name, base_name = os.path.split(self.baseFilename)
        try:
            for file_name in os.listdir(dir_name):
                if file_name.startswith(base_name) and not file_name.endswith('.gz') and file_name != base_name:
                    full_path = os.path.join(dir_name, file_name)
                    with open(full_path, 'rb') as f_in:
                        with gzip.open(f'{full_path}.gz', 'wb') as f_out:
                            shutil.copyfileobj(f_in, f_out)
                    os.remove(full_path)
        except OSError as e:
            # Rollover itself already succeeded
            print(f"Error during log compression: {e}", file=sys.stderr)


class AccountContextFilter(logging.Filter):
    """Stamp records with the account of the running iteration"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'account_id'):
            account_id = get_current_account()
            if account_id is not None:
                record.account_id = account_id
        return True


class StructuredFormatter(logging.Formatter):
    """Structured text or JSON output with account_id support"""

    def __init__(self, output_format: str = 'text'):
        super().__init__()
        self.output_format = output_format

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage()
        }

        if hasattr(record, 'account_id'):
            log_data['account_id'] = record.account_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                if isinstance(value, datetime):
                    log_data[key] = value.isoformat()
                else:
                    log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        if self.output_format == 'json':
            return json.dumps(log_data, default=str, ensure_ascii=False)

        base_msg = f"{log_data['timestamp']} - {log_data['logger']} - {log_data['level']} - {log_data['message']}"
        if 'account_id' in log_data:
            base_msg += f" [account_id={log_data['account_id']}]"
        if 'exception' in log_data:
            base_msg += f"\n{log_data['exception']}"
        return base_msg


def configure_root_logger(config: Optional[LoggingConfig] = None):
    """Configure the root logger to use structured formatting for all logs"""
    config = config or LoggingConfig()
    root_logger = logging.getLogger()

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    formatter = StructuredFormatter(config.format)
    context_filter = AccountContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(context_filter)
    root_logger.addHandler(console_handler)

    if config.file_path:
        log_dir = os.path.dirname(config.file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = CompressingTimedRotatingFileHandler(
            filename=config.file_path,
            when='midnight',
            interval=1,
            backupCount=365,  # Keep 365 days of logs
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context_filter)
        root_logger.addHandler(file_handler)

    _configure_third_party_loggers()


def _configure_third_party_loggers():
    """Configure specific third-party library loggers with appropriate levels"""
    # aiohttp: reduce HTTP request/response noise
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    # APScheduler logs every job run at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


class AppLogger:
    """Logger that attaches the current account from the ContextVar to every record"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _extra(self) -> dict:
        account_id = get_current_account()
        return {'account_id': account_id} if account_id else {}

    def log_debug(self, message: str):
        self.logger.debug(message, extra=self._extra())

    def log_info(self, message: str):
        self.logger.info(message, extra=self._extra())

    def log_warning(self, message: str):
        self.logger.warning(message, extra=self._extra())

    def log_error(self, message: str):
        self.logger.error(message, extra=self._extra())
