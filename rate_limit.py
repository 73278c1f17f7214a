"""
Per-actor rate limiting for money-moving endpoints.

Flask-Limiter (see extensions.py) throttles by client address for the
whole API. Payments additionally need a budget per authenticated user,
which is enforced here with the ``limits`` library that Flask-Limiter is
built on. The storage is pluggable: ``memory://`` for a single process,
``redis://...`` when instances must share the counters.
"""
import logging
import math
import time
from collections import namedtuple

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from errors import RateLimited

logger = logging.getLogger(__name__)

RateLimitResult = namedtuple('RateLimitResult', ['allowed', 'remaining', 'reset_at', 'retry_after'])


class ActorRateLimiter:
    """Fixed-window limiter keyed by actor id."""

    def __init__(self, limit=None, storage_uri='memory://', namespace='payments'):
        self.namespace = namespace
        self._item = None
        self._storage = None
        self._strategy = None
        if limit:
            self.configure(limit, storage_uri)

    def init_app(self, app, config_key='PAYMENT_RATE_LIMIT'):
        self.configure(app.config[config_key], app.config.get('RATELIMIT_STORAGE_URI', 'memory://'))
        app.extensions[f'{self.namespace}_rate_limiter'] = self

    def configure(self, limit, storage_uri='memory://'):
        self._item = parse(limit)
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        logger.info("Rate limiter '%s' configured: %s", self.namespace, limit)

    @property
    def limit(self):
        return self._item

    def hit(self, actor_id):
        """Consume one unit of the actor's budget and report the window state."""
        if self._strategy is None:
            raise RuntimeError('ActorRateLimiter used before configure()/init_app()')

        allowed = self._strategy.hit(self._item, self.namespace, actor_id)
        reset_at, remaining = self._strategy.get_window_stats(self._item, self.namespace, actor_id)
        retry_after = None
        if not allowed:
            retry_after = max(1, int(math.ceil(reset_at - time.time())))
        return RateLimitResult(allowed, max(0, remaining), reset_at, retry_after)

    def check(self, actor_id):
        result = self.hit(actor_id)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded for actor %s on %s (retry in %ss)",
                actor_id, self.namespace, result.retry_after,
            )
            raise RateLimited(retry_after=result.retry_after)
        return result

    def reset(self):
        if self._storage is not None:
            self._storage.reset()
