import re

import pytest

from app.utils import order_numbers
from app.utils.rate_limit import InMemoryRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_rate_limiter_blocks_and_recovers():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    for _ in range(3):
        limiter.hit('1.2.3.4:a@b.com')
    blocked, retry_after = limiter.blocked('1.2.3.4:a@b.com', 3, 60)
    assert blocked is True
    assert retry_after == 60
    assert limiter.blocked('1.2.3.4:other@b.com', 3, 60) == (False, 0)

    clock.now += 61
    assert limiter.blocked('1.2.3.4:a@b.com', 3, 60) == (False, 0)


def test_rate_limiter_reset_clears_key():
    limiter = InMemoryRateLimiter(clock=FakeClock())
    limiter.hit('k')
    limiter.hit('k')
    assert limiter.blocked('k', 2, 60)[0] is True
    limiter.reset('k')
    assert limiter.blocked('k', 2, 60) == (False, 0)


def test_order_number_and_payment_id_formats():
    assert re.match(r'^ORDER-\d{8}-\d{4}$', order_numbers.make_order_number())
    assert re.match(r'^order_\d{13,}_\d{1,3}$', order_numbers.make_payment_id())


def test_generate_unique_redraws_taken_values():
    taken = {'a', 'b'}
    draws = iter(['a', 'b', 'c'])
    assert order_numbers.generate_unique(lambda: next(draws), taken.__contains__) == 'c'


def test_generate_unique_gives_up():
    with pytest.raises(RuntimeError):
        order_numbers.generate_unique(lambda: 'same', lambda value: True, max_attempts=3)
