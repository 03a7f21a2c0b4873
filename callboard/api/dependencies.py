from functools import lru_cache
from typing import Optional
import logging
from callboard.config.storage_config import validate_gcs_config
from callboard.core.database import Database
from callboard.core.storage import CloudStorage

logger = logging.getLogger(__name__)


@lru_cache()
def get_db() -> Database:
    return Database()


@lru_cache()
def get_storage() -> Optional[CloudStorage]:
    """Recording storage, or None when GCS is not configured"""
    try:
        validate_gcs_config()
    except ValueError as e:
        logger.warning(f"Recording uploads disabled: {str(e)}")
        return None
    return CloudStorage()
