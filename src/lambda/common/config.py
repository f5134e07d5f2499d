"""Environment settings shared by the club API modules."""
import logging
import os

TABLE_NAME = os.environ.get("TABLE_NAME", "")
AWS_REGION = os.environ.get("AWS_REGION", os.environ.get("AWS_DEFAULT_REGION", "us-east-1"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

CAPABILITY_CACHE_TTL_SECONDS = int(os.environ.get("CAPABILITY_CACHE_TTL_SECONDS", "300"))
CLUB_LIST_DEFAULT_LIMIT = int(os.environ.get("CLUB_LIST_DEFAULT_LIMIT", "20"))
CLUB_LIST_MAX_LIMIT = int(os.environ.get("CLUB_LIST_MAX_LIMIT", "100"))
PROFILE_LOOKUP_WORKERS = int(os.environ.get("PROFILE_LOOKUP_WORKERS", "10"))


def get_logger(name):
    """Module logger at the configured level."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    return logger
