from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from fastapi import HTTPException, Request, status


@dataclass
class _Bucket:
  tokens: float
  updated_at: float


class RateLimiter:
  """
  Per-process token bucket limiter.

  Each key refills at ``rate`` tokens per second up to ``burst``. One instance
  is built with the app and kept on ``app.state``; multi-replica deployments
  need a shared store instead. A bucket left alone long enough to refill
  completely is indistinguishable from a new one, so such buckets are dropped.
  """

  def __init__(self, *, rate: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
    self.rate = float(rate)
    self.burst = int(burst)
    self._clock = clock
    self._lock = Lock()
    self._buckets: dict[str, _Bucket] = {}
    self._last_sweep = clock()

  def _refill_seconds(self) -> float:
    return self.burst / self.rate if self.rate > 0 else float("inf")

  def _sweep(self, now: float) -> None:
    idle = self._refill_seconds()
    if now - self._last_sweep < idle:
      return
    self._last_sweep = now
    for key in [k for k, b in self._buckets.items() if now - b.updated_at >= idle]:
      del self._buckets[key]

  def hit(self, key: str) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    """
    now = self._clock()
    with self._lock:
      self._sweep(now)
      b = self._buckets.get(key)
      if b is None:
        b = _Bucket(tokens=float(self.burst), updated_at=now)
        self._buckets[key] = b
      else:
        b.tokens = min(float(self.burst), b.tokens + (now - b.updated_at) * self.rate)
        b.updated_at = now
      if b.tokens >= 1.0:
        b.tokens -= 1.0
        return True, 0
      if self.rate <= 0:
        return False, 60
      return False, max(1, math.ceil((1.0 - b.tokens) / self.rate))

  def bucket_count(self) -> int:
    with self._lock:
      return len(self._buckets)

  def reset(self) -> None:
    with self._lock:
      self._buckets.clear()


def client_key(request: Request) -> str:
  return request.client.host if request.client else "unknown"


def too_many_requests(retry_after: int) -> HTTPException:
  return HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={"code": "rate_limited", "message": "Too many requests", "retry_after_seconds": retry_after},
    headers={"Retry-After": str(retry_after)},
  )


async def auth_rate_limit(request: Request) -> None:
  allowed, retry_after = request.app.state.auth_rate_limiter.hit(f"auth:{client_key(request)}")
  if not allowed:
    raise too_many_requests(retry_after)
