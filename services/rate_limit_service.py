import os
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone
import redis.asyncio as redis
from redis.exceptions import RedisError
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

class RateLimitService:
    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client

        # Rate limiting configuration from environment
        self.rate_limits = {
            'form_submission': {
                'requests': int(os.getenv("FORM_SUBMISSION_LIMIT", "5")),
                'window': int(os.getenv("FORM_SUBMISSION_WINDOW", "60"))  # seconds
            },
            'export': {
                'requests': int(os.getenv("EXPORT_LIMIT", "30")),
                'window': int(os.getenv("EXPORT_WINDOW", "3600"))  # 1 hour
            }
        }

    async def is_rate_limited(
        self,
        key: str,
        limit_type: str,
        identifier: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Check and count a request against a fixed window

        Args:
            key: Rate limiting key (e.g., IP address)
            limit_type: Type of rate limit to check
            identifier: Optional additional identifier, such as a form id

        Returns:
            Dict with 'allowed' plus limit, remaining and retry details
        """
        if not self.redis_client:
            # Without Redis every request is allowed
            return {'allowed': True, 'limit': None, 'remaining': None, 'error': None}

        if limit_type not in self.rate_limits:
            logger.warning(f"Unknown rate limit type: {limit_type}")
            return {'allowed': True, 'error': f"Unknown rate limit type: {limit_type}"}

        config = self.rate_limits[limit_type]
        rate_key = f"rate_limit:{limit_type}:{key}"
        if identifier:
            rate_key += f":{identifier}"

        try:
            current_count = await self.redis_client.get(rate_key)
            current_count = int(current_count) if current_count else 0

            if current_count >= config['requests']:
                ttl = await self.redis_client.ttl(rate_key)
                logger.warning(
                    f"Rate limit exceeded for {limit_type}: {key} "
                    f"({current_count}/{config['requests']})"
                )
                return {
                    'allowed': False,
                    'limit': config['requests'],
                    'window': config['window'],
                    'remaining': 0,
                    'retry_after': ttl,
                    'error': f"Rate limit exceeded: {config['requests']} requests per {config['window']} seconds"
                }

            pipe = self.redis_client.pipeline()
            pipe.incr(rate_key)
            pipe.expire(rate_key, config['window'])
            await pipe.execute()

            return {
                'allowed': True,
                'limit': config['requests'],
                'window': config['window'],
                'remaining': max(0, config['requests'] - current_count - 1),
                'reset_time': datetime.now(timezone.utc) + timedelta(seconds=config['window']),
                'error': None
            }

        except RedisError as e:
            logger.error(f"Rate limiting error for {key}: {str(e)}")
            # Allow request if rate limiting fails
            return {'allowed': True, 'error': f"Rate limiting error: {str(e)}"}

# Global rate limit service instance; main attaches the Redis client on startup
rate_limit_service = RateLimitService()

# Per-IP request ceiling enforced by slowapi on the submission endpoint
SUBMISSION_RATE_LIMIT = os.getenv("SUBMISSION_RATE_LIMIT", "30/minute")

# Initialize limiter
limiter = Limiter(key_func=get_remote_address)
