"""Redis caching utilities"""

import hashlib
from typing import Optional
import redis

from config.settings import settings
from core.logging import logger, log_structured


# Global Redis client
redis_client: Optional[redis.Redis] = None


def init_redis() -> bool:
    """
    Initialize Redis connection

    Returns:
        bool: True if successful, False otherwise
    """
    global redis_client

    if not settings.REDIS_URL:
        logger.warning("⚠️ REDIS_URL is not set - using in-process session storage and no analysis cache")
        return False

    try:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        redis_client.ping()
        logger.info("✅ Redis connection established")
        return True

    except Exception as e:
        logger.error(f"❌ Redis connection failed: {str(e)}")
        redis_client = None
        return False


def calculate_image_hash(image_data: bytes) -> str:
    """
    Calculate SHA256 hash of image data (used as caching key)

    Args:
        image_data: Image binary data

    Returns:
        SHA256 hash string
    """
    return hashlib.sha256(image_data).hexdigest()


def _cache_key(image_hash: str, budget: Optional[int]) -> str:
    return f"analysis:{image_hash}:{budget if budget is not None else 'default'}"


def get_cached_response(image_hash: str, budget: Optional[int] = None) -> Optional[str]:
    """
    Retrieve a cached raw model response from Redis

    The raw text is cached rather than the normalized bundle so that
    normalization (and its product filtering) always runs with current rules.

    Args:
        image_hash: SHA256 hash of the image
        budget: Budget the response was generated for

    Returns:
        Cached raw response text or None if not found
    """
    if not redis_client:
        return None

    try:
        cached = redis_client.get(_cache_key(image_hash, budget))
        if cached:
            log_structured("cache_hit", {"image_hash": image_hash[:16], "budget": budget})
            if isinstance(cached, bytes):
                cached = cached.decode("utf-8")
            return cached
        return None

    except Exception as e:
        logger.error(f"Redis lookup failed: {str(e)}")
        return None


def save_response_to_cache(image_hash: str, raw_response: str, budget: Optional[int] = None) -> bool:
    """
    Save a raw model response to Redis

    Args:
        image_hash: SHA256 hash of the image
        raw_response: Raw text returned by the model
        budget: Budget the response was generated for

    Returns:
        bool: True if successful, False otherwise
    """
    if not redis_client:
        return False

    try:
        redis_client.setex(
            _cache_key(image_hash, budget),
            settings.CACHE_TTL,
            raw_response
        )
        return True

    except Exception as e:
        logger.error(f"Redis save failed: {str(e)}")
        return False
