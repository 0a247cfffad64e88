import hmac
import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Depends, Header, HTTPException, status

from judgesync.config import settings
from judgesync.utils.logger import logger, mask_secret


def _secrets_match(provided: Optional[str], expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_sync_api_key(x_api_key: Optional[str] = Header(None, alias="x-api-key")) -> str:
    """Operator auth: the x-api-key header must equal SYNC_API_KEY."""
    expected = settings.SYNC_API_KEY
    if not expected:
        logger.error("SYNC_API_KEY is not configured; rejecting admin sync request")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    if not _secrets_match(x_api_key, expected):
        logger.warning("Rejected admin sync request with api key %s", mask_secret(x_api_key))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return x_api_key


async def require_cron_secret(authorization: Optional[str] = Header(None)) -> str:
    """Scheduler auth: ``Authorization: Bearer <CRON_SECRET>``."""
    expected = settings.CRON_SECRET
    if not expected:
        logger.error("CRON_SECRET is not configured; rejecting cron request")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not _secrets_match(token, expected):
        logger.warning("Rejected cron request with bad or missing bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return token


class FixedWindowRateLimiter:
    """Counts hits per key in fixed windows; in-process only."""

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> Optional[float]:
        """Record one hit; returns seconds to wait when over the limit, else None."""
        if self.limit <= 0:
            return None
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.limit:
                return self.window_seconds - (now - started)
            self._windows[key] = (started, count + 1)
        return None

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


admin_rate_limiter = FixedWindowRateLimiter(settings.ADMIN_RATE_LIMIT_PER_MINUTE)


async def require_admin_caller(api_key: str = Depends(require_sync_api_key)) -> str:
    """Authenticated operator within the per-key request budget."""
    retry_after = admin_rate_limiter.hit(api_key)
    if retry_after is not None:
        logger.warning("Admin sync rate limit hit for key %s", mask_secret(api_key))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="rate_limited",
            headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
        )
    return api_key
