"""
Venue Aggregator - Logger Configuration
Centralized logging with loguru
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from venue_aggregator.config import Settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(settings: Settings, log_file: Optional[str] = None) -> None:
    """
    Configure loguru sinks for the aggregator.
    
    Args:
        settings: Application settings
        log_file: Override for settings.LOG_FILE; empty disables file logging
    """
    logger.remove()
    
    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    )
    
    path = log_file if log_file is not None else settings.LOG_FILE
    if path:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        
        logger.add(
            log_path,
            rotation="10 MB",
            retention="30 days",
            compression="gz",
            format=FILE_FORMAT,
            level="DEBUG",
        )
        
        # Errors only
        logger.add(
            log_path.with_name("error.log"),
            rotation="10 MB",
            retention="30 days",
            compression="gz",
            format=FILE_FORMAT,
            level="ERROR",
        )


__all__ = ["logger", "configure_logging"]
