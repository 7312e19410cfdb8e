from playstamp.utils.urls import validate_url, service_domain, URLValidationError
from playstamp.utils.rate_limiter import RateLimiter, RateLimitExceeded, TokenBucket
from playstamp.utils.logging import setup_logging

__all__ = ["validate_url", "service_domain", "URLValidationError", "RateLimiter", "RateLimitExceeded", "TokenBucket", "setup_logging"]
