import logging
from pathlib import Path

from ragchat.config import settings


def build_logger(name: str, file_name: str = "log.txt") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    if logger.handlers:
        return logger
    log_path = Path(settings.log_dir) / file_name
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(handler)
    return logger


STORE_LOGGER = build_logger("ragchat.store")
UPLOAD_LOGGER = build_logger("ragchat.upload")
VERIFY_LOGGER = build_logger("ragchat.verify")
QUERY_LOGGER = build_logger("ragchat.query")
API_LOGGER = build_logger("ragchat.api")
