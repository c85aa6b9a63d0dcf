# backend/callflow/utils/logger.py
import os
import sys

from loguru import logger

logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
)

# LOG_DIR="" disables the file sink (tests, containers logging to stdout only)
_log_dir = os.getenv("LOG_DIR", "logs")
if _log_dir:
    logger.add(
        os.path.join(_log_dir, "callflow_{time}.log"),
        rotation="500 MB",
        retention="10 days",
        level="DEBUG",
    )
