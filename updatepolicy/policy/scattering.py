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

"""Update scattering for fleet-wide rollout staggering.

Scattering holds a device back for a randomly drawn period after a payload
is first seen, and until it has seen the payload in a randomly drawn number
of consecutive update checks. Spreading both draws over the fleet avoids a
load spike on the update servers when a payload is published.

The draws are made once per payload and persisted by the caller. A
persisted value is reused as long as it still fits the current bounds, so
repeated evaluations of the same payload always compare against the same
deadline and threshold. Both conditions are monotonic (time and check
counts only grow), so once the gate passes it keeps passing.

Draws are uniform: the wait period in whole seconds from [1, max], the
check threshold from [max(min, 1), max]. Zero is reserved for "not drawn".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
import random

from updatepolicy.evaluation import EvaluationContext
from updatepolicy.policy.models import UpdateState


class ScatterOutcome(Enum):
    PASSED = "passed"
    WAITING_FOR_PERIOD = "waiting_for_period"
    WAITING_FOR_CHECKS = "waiting_for_checks"


@dataclass(frozen=True)
class ScatterDecision:
    """Result of evaluating the scattering gate.

    Attributes:
        outcome: Whether the gate passed, and if not what it waits for.
        wait_period: Wait period to persist.
        check_threshold: Check threshold to persist.
        changed: Whether either value differs from the input snapshot.
    """

    outcome: ScatterOutcome
    wait_period: timedelta
    check_threshold: int
    changed: bool


def _wait_period(
    state: UpdateState, wait_period_max: timedelta, rng: random.Random
) -> timedelta:
    if wait_period_max <= timedelta():
        return timedelta()
    current = state.scatter_wait_period
    if timedelta() < current <= wait_period_max:
        return current
    max_seconds = int(wait_period_max.total_seconds())
    if max_seconds < 1:
        return timedelta()
    return timedelta(seconds=rng.randint(1, max_seconds))


def _check_threshold(state: UpdateState, rng: random.Random) -> int:
    upper = state.scatter_check_threshold_max
    if upper <= 0:
        return 0
    lower = max(state.scatter_check_threshold_min, 1)
    current = state.scatter_check_threshold
    if lower <= current <= upper:
        return current
    return rng.randint(lower, upper)


def update_scattering(
    ec: EvaluationContext,
    state: UpdateState,
    *,
    wait_period_max: timedelta,
    rng: random.Random,
) -> ScatterDecision:
    """Evaluate the scattering gate for a payload.

    Args:
        ec: Evaluation context; a pending wait expiry is recorded on it.
        state: Snapshot of the current payload.
        wait_period_max: Effective upper bound for the wait period.
        rng: Random source used only when a value must be drawn.

    Returns:
        The gate outcome and the values to persist.
    """
    wait_period = _wait_period(state, wait_period_max, rng)
    check_threshold = _check_threshold(state, rng)
    changed = (
        wait_period != state.scatter_wait_period
        or check_threshold != state.scatter_check_threshold
    )

    if wait_period and not ec.is_wallclock_time_greater_than(
        state.first_seen + wait_period
    ):
        outcome = ScatterOutcome.WAITING_FOR_PERIOD
    elif state.num_checks < check_threshold:
        outcome = ScatterOutcome.WAITING_FOR_CHECKS
    else:
        outcome = ScatterOutcome.PASSED

    return ScatterDecision(
        outcome=outcome,
        wait_period=wait_period,
        check_threshold=check_threshold,
        changed=changed,
    )
