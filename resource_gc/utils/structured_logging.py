import logging
import logging.handlers
import os
import time
from datetime import datetime, timezone
from functools import wraps
from pythonjsonlogger import jsonlogger

class StructuredLogger:
    """Structured logging of the garbage collector, one JSON object per line"""

    @staticmethod
    def setup_logging(app):
        """Send the resource_gc loggers to a JSON log file for CI log collection"""
        gc_logger = logging.getLogger('resource_gc')
        gc_logger.handlers.clear()

        if not app.config.get('LOG_TO_FILE', True):
            return

        log_dir = app.config.get('LOG_DIR', 'logs')
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)

        json_formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(threadName)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, 'resource_gc_structured.log'),
            maxBytes=10 * 1024 * 1024,
            backupCount=10,
            encoding='utf-8'
        )
        file_handler.setFormatter(json_formatter)
        file_handler.setLevel(logging.INFO)
        gc_logger.addHandler(file_handler)

    @staticmethod
    def log_cleanup(report, duration: float):
        """Log the outcome of one cleanup run with structured data"""
        logger = logging.getLogger('resource_gc.cleanup')

        log_data = {
            'deleted': dict(report.deleted),
            'failures': dict(report.failures),
            'total_deleted': report.total_deleted,
            'duration_seconds': duration,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

        if report.failures:
            logger.warning('Test resources cleanup finished with failures', extra=log_data)
        else:
            logger.info('Test resources cleanup completed', extra=log_data)

def log_cleanup_run(func):
    """Decorator timing a cleanup run and logging its report"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        report = func(*args, **kwargs)
        if report.deleted or report.failures:
            StructuredLogger.log_cleanup(report, time.monotonic() - start_time)
        return report

    return wrapper
