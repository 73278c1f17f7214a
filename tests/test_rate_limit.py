"""
Per-actor rate limiter tests
"""
import pytest

from errors import RateLimited
from rate_limit import ActorRateLimiter


@pytest.fixture
def limiter():
    return ActorRateLimiter('3 per minute', 'memory://', namespace='test')


class TestActorRateLimiter:
    """Test fixed-window limiting keyed by actor"""

    def test_allows_up_to_the_limit(self, limiter):
        results = [limiter.hit('user-a') for _ in range(3)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_blocks_after_the_limit(self, limiter):
        for _ in range(3):
            limiter.hit('user-a')
        result = limiter.hit('user-a')
        assert not result.allowed
        assert result.retry_after >= 1
        assert result.retry_after <= 60

    def test_actors_have_separate_budgets(self, limiter):
        for _ in range(3):
            limiter.hit('user-a')
        assert limiter.hit('user-b').allowed

    def test_check_raises_rate_limited(self, limiter):
        for _ in range(3):
            limiter.check('user-a')
        with pytest.raises(RateLimited) as exc:
            limiter.check('user-a')
        assert exc.value.retry_after >= 1
        assert exc.value.status_code == 429

    def test_reset_clears_windows(self, limiter):
        for _ in range(3):
            limiter.hit('user-a')
        limiter.reset()
        assert limiter.hit('user-a').allowed

    def test_unconfigured_limiter_refuses(self):
        with pytest.raises(RuntimeError):
            ActorRateLimiter().hit('user-a')

    def test_init_app_reads_config(self, app):
        limiter = ActorRateLimiter(namespace='payments')
        limiter.init_app(app)
        assert app.extensions['payments_rate_limiter'] is limiter
        assert limiter.limit.amount == 10
