"""
Logging configuration

Console output always; daily files under log_dir unless log_to_file is off
(tests and one-off CLI runs).
"""
from loguru import logger
import sys
from agency_reports.config import get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logger(settings=None):
    """Configure the lifecycle engine's loguru sinks"""
    settings = settings or get_settings()
    logger.remove()

    logger.add(sys.stdout, colorize=True, format=CONSOLE_FORMAT, level=settings.log_level)

    if not settings.log_to_file:
        return logger

    # Job history: cache refreshes, gap fills, archives, retention
    logger.add(
        f"{settings.log_dir}/agency_reports_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO"
    )

    # Upstream and persistence failures, kept longer for audits
    logger.add(
        f"{settings.log_dir}/errors_{{time:YYYY-MM-DD}}.log",
        rotation="00:00",
        retention="90 days",
        level="ERROR"
    )

    return logger


log = setup_logger()
