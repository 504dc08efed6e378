import logging
import os
import sys
import traceback
from datetime import datetime
from typing import Optional


class LoggerConfig:
    """Centralized logging configuration for the IntelliForm service"""

    _configured = False

    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s() - %(message)s"

    @classmethod
    def setup(cls, log_level: str = "INFO", log_dir: str = "logs", log_to_file: bool = True) -> logging.Logger:
        """Setup application-wide logging configuration

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory to store log files
            log_to_file: Also write the daily app/error log files

        Returns:
            Configured root logger
        """
        if cls._configured:
            return logging.getLogger()

        formatter = logging.Formatter(cls.LOG_FORMAT)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # Remove existing handlers to avoid duplication
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if log_to_file:
            if not os.path.exists(log_dir):
                os.makedirs(log_dir)

            day = datetime.now().strftime('%Y%m%d')
            file_handler = logging.FileHandler(os.path.join(log_dir, f"intelliform_{day}.log"), encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            error_handler = logging.FileHandler(os.path.join(log_dir, f"error_{day}.log"), encoding='utf-8')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            root_logger.addHandler(error_handler)

        # httpx logs every LLM request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)

        cls._configured = True
        return root_logger

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        return logging.getLogger(name)

    @staticmethod
    def log_exception(logger: logging.Logger, message: str = "Exception occurred",
                      exc_info: Optional[Exception] = None):
        """Log an exception with full traceback

        Args:
            logger: Logger instance to use
            message: Custom message to include
            exc_info: Exception instance (if None, current exception is used)
        """
        logger.error("=" * 60)
        logger.error(f"🚨 {message}")
        if exc_info:
            logger.error(f"Exception type: {type(exc_info).__name__}")
            logger.error(f"Exception message: {str(exc_info)}")
        logger.error("Full traceback:")
        logger.error(traceback.format_exc())
        logger.error("=" * 60)

    @staticmethod
    def log_database_operation(logger: logging.Logger, operation: str, table: str,
                               record_id: str = None, success: bool = True,
                               error: str = None):
        """Log database operations

        Args:
            logger: Logger instance
            operation: Type of operation (CREATE, READ, UPDATE, DELETE)
            table: Table name
            record_id: Record identifier
            success: Whether operation was successful
            error: Error message if operation failed
        """
        id_str = f" (ID: {record_id})" if record_id else ""
        if success:
            logger.info(f"💾 DB {operation} successful: {table}{id_str}")
        else:
            logger.error(f"💾 DB {operation} failed: {table}{id_str} - {error}")

    @staticmethod
    def log_ai_call(logger: logging.Logger, capability: str, attempt: int,
                    elapsed: float = None, success: bool = True, error: str = None):
        """Log one round trip to the AI capability"""
        timing = f" ({elapsed:.3f}s)" if elapsed is not None else ""
        if success:
            logger.info(f"🤖 AI {capability} attempt {attempt} succeeded{timing}")
        else:
            logger.warning(f"🤖 AI {capability} attempt {attempt} failed{timing}: {error}")

    @staticmethod
    def log_business_logic(logger: logging.Logger, operation: str, details: str = None):
        detail_str = f" - {details}" if details else ""
        logger.info(f"🔄 Business Logic: {operation}{detail_str}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with automatic configuration"""
    if not LoggerConfig._configured:
        LoggerConfig.setup(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_to_file=os.getenv("LOG_TO_FILE", "true").lower() == "true"
        )
    return LoggerConfig.get_logger(name)
