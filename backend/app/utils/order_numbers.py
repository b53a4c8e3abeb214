"""Order-number and payment-id generation.

Both helpers draw a candidate and re-draw while `exists(candidate)` is
true. The unique constraints on `purchase.order_number` and `payment.id`
still decide races between concurrent requests.
"""

import random
import time
from typing import Callable

MAX_ATTEMPTS = 20


def _now_ms() -> int:
    return int(time.time() * 1000)


def make_order_number() -> str:
    """`ORDER-<last 8 digits of epoch ms>-<4 random digits>`."""
    return f"ORDER-{str(_now_ms())[-8:]}-{random.randint(0, 9999):04d}"


def make_payment_id() -> str:
    """`order_<epoch ms>_<0-999>`."""
    return f"order_{_now_ms()}_{random.randint(0, 999)}"


def generate_unique(make: Callable[[], str], exists: Callable[[str], bool], max_attempts: int = MAX_ATTEMPTS) -> str:
    for _ in range(max_attempts):
        candidate = make()
        if not exists(candidate):
            return candidate
    raise RuntimeError(f"could not generate a unique identifier after {max_attempts} attempts")


def generate_order_number(exists: Callable[[str], bool]) -> str:
    return generate_unique(make_order_number, exists)


def generate_payment_id(exists: Callable[[str], bool]) -> str:
    return generate_unique(make_payment_id, exists)
