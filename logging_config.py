import json
import logging
import os
from logging.handlers import RotatingFileHandler

from config import Config

# Create logs directory if it doesn't exist
LOG_DIR = Config.LOG_DIR
if not os.path.exists(LOG_DIR):
    try:
        os.makedirs(LOG_DIR)
    except OSError:
        LOG_DIR = '.'  # Fall back to current directory

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class JsonFormatter(logging.Formatter):
    """Outputs log records as single-line JSON objects."""

    def format(self, record):
        log_entry = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "filename": record.filename,
            "lineno": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def _rotating_handler(filename, level, max_bytes, backup_count):
    try:
        handler = RotatingFileHandler(
            os.path.join(LOG_DIR, filename),
            maxBytes=max_bytes,
            backupCount=backup_count
        )
    except OSError:
        return None
    handler.setLevel(level)
    return handler


formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
if Config.LOG_FORMAT.lower() == 'json':
    formatter = JsonFormatter()

# Console handler (always enabled)
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)

# Full log (5MB x 5) and error-only log (2MB x 3)
file_handler = _rotating_handler('aquamonitor.log', logging.DEBUG, 5*1024*1024, 5)
error_handler = _rotating_handler('errors.log', logging.ERROR, 2*1024*1024, 3)

root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)
for handler in (console_handler, file_handler, error_handler):
    if handler:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

logger = logging.getLogger('aquamonitor')
logger.setLevel(logging.DEBUG)

# Reduce noise from third-party libraries
logging.getLogger('werkzeug').setLevel(logging.WARNING)
logging.getLogger('urllib3').setLevel(logging.WARNING)

logger.info("Aquamonitor logging initialized")
