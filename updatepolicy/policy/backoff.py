# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Backoff schedule for repeated payload failures.

After every full round of failed attempts across all mirror URLs the
policy asks the caller to count a payload failure, and computes how long to
hold off before the next attempt. The interval doubles with every failure
up to a ceiling, and a random jitter spreads devices that failed at the
same moment:

    interval = min(base * 2 ** (num_failures - 1), ceiling)
    expiry   = now + clamp(interval + uniform(-fuzz / 2, fuzz / 2), 0, ceiling)

With the default configuration (1 day base, 16 day ceiling, 12 hour fuzz)
the first failure backs off 18-30 hours and the fifth and later ones
15.75-16 days.

Both functions are pure: time and randomness are passed in.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import random

from updatepolicy.evaluation import EvaluationContext


def backoff_interval(
    num_failures: int, *, base: timedelta, ceiling: timedelta
) -> timedelta:
    """Return the un-jittered backoff interval for a failure count.

    Zero or negative failure counts mean no backoff.
    """
    if num_failures <= 0:
        return timedelta()
    # Stop doubling once past the ceiling to keep the exponent bounded.
    interval = base
    for _ in range(num_failures - 1):
        if interval >= ceiling:
            break
        interval *= 2
    return min(interval, ceiling)


def compute_backoff_expiry(
    num_failures: int,
    now: datetime,
    *,
    base: timedelta,
    ceiling: timedelta,
    fuzz: timedelta,
    rng: random.Random,
) -> datetime | None:
    """Return when backoff for num_failures expires.

    Args:
        num_failures: Failure count including the one being recorded.
        now: Time the failure is recorded.
        base: Interval after the first failure.
        ceiling: Maximum interval, jitter included.
        fuzz: Width of the jitter window.
        rng: Random source for the jitter.

    Returns:
        The expiry time, or None when no backoff applies.
    """
    interval = backoff_interval(num_failures, base=base, ceiling=ceiling)
    if not interval:
        return None
    half_fuzz = fuzz.total_seconds() / 2
    jitter = timedelta(seconds=rng.uniform(-half_fuzz, half_fuzz))
    total = min(max(interval + jitter, timedelta()), ceiling)
    return now + total


def is_backoff_in_effect(ec: EvaluationContext, backoff_expiry: datetime | None) -> bool:
    """Return whether backoff_expiry is still in the future.

    A pending expiry is recorded on ec as a deadline.
    """
    if backoff_expiry is None:
        return False
    return not ec.is_wallclock_time_greater_than(backoff_expiry)
