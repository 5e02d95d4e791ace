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

"""Per-evaluation snapshot of facts and time.

An EvaluationContext wraps a fact provider and a clock for the duration of
one policy evaluation. It guarantees that a decision sees a consistent view:

- Each fact is read from the provider at most once and then cached.
- The wallclock is read once; every comparison uses that instant.

It also records what the decision depended on, so a caller that received
ASK_AGAIN_LATER knows what to wait for:

- watched_facts: every fact the evaluation read (or tried to read).
- next_deadline: the earliest future wallclock time the evaluation compared
  against and found not yet reached.

Example:
    Evaluating a policy request and inspecting its dependencies:
        ```python
        ec = EvaluationContext(provider, clock=SystemClock())
        result = policy.update_can_start(ec, update_state)
        if result.is_deferred:
            print(ec.watched_facts, ec.next_deadline)
        ```
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from updatepolicy.exceptions import FactUnavailableError, PolicyError
from updatepolicy.facts import Clock, Fact, FactProvider, SystemClock

_REQUIRED = object()


class EvaluationContext:
    """Read-only fact snapshot for a single policy evaluation."""

    def __init__(self, facts: FactProvider, clock: Clock | None = None) -> None:
        self._facts = facts
        self._clock = clock or SystemClock()
        self._cache: dict[Fact, Any] = {}
        self._unavailable: dict[Fact, FactUnavailableError] = {}
        self._watched: set[Fact] = set()
        self._now: datetime | None = None
        self._deadline: datetime | None = None

    def get_value(
        self,
        fact: Fact,
        default: Any = _REQUIRED,
        *,
        expected: type | tuple[type, ...] | None = None,
    ) -> Any:
        """Return a fact's value, reading the provider only once per evaluation.

        Args:
            fact: The fact to read.
            default: Value to return if the fact is unavailable. When
                omitted, an unavailable fact raises.
            expected: Type(s) the provider's value must have. The default
                is not checked.

        Returns:
            The fact's value, or default.

        Raises:
            FactUnavailableError: If the fact is unavailable and no default
                was given.
            PolicyError: If the value is not of the expected type.
        """
        self._watched.add(fact)
        if fact not in self._cache and fact not in self._unavailable:
            try:
                self._cache[fact] = self._facts.get_fact(fact)
            except FactUnavailableError as err:
                self._unavailable[fact] = err
            except (LookupError, OSError, ValueError) as err:
                self._unavailable[fact] = FactUnavailableError(fact, str(err))

        if fact in self._cache:
            value = self._cache[fact]
            if expected is not None and not isinstance(value, expected):
                raise PolicyError(f"fact {fact} has unexpected value {value!r}")
            return value
        if default is _REQUIRED:
            raise self._unavailable[fact]
        return default

    def now(self) -> datetime:
        """Return the wallclock time, fixed for the whole evaluation.

        Raises:
            PolicyError: If the clock returns a naive datetime.
        """
        if self._now is None:
            now = self._clock.now()
            if now.utcoffset() is None:
                raise PolicyError(f"wallclock time {now} is not timezone-aware")
            self._now = now
        return self._now

    def is_wallclock_time_greater_than(self, when: datetime) -> bool:
        """Compare the evaluation's wallclock time against when.

        If when is still in the future it becomes a candidate deadline: the
        evaluation's outcome may change once it passes.
        """
        if when.utcoffset() is None:
            raise PolicyError(f"cannot compare against naive time {when}")
        if self.now() > when:
            return True
        if self._deadline is None or when < self._deadline:
            self._deadline = when
        return False

    @property
    def watched_facts(self) -> frozenset[Fact]:
        return frozenset(self._watched)

    @property
    def next_deadline(self) -> datetime | None:
        return self._deadline

    def reset_evaluation(self) -> None:
        """Drop cached facts, time and recorded dependencies."""
        self._cache.clear()
        self._unavailable.clear()
        self._watched.clear()
        self._now = None
        self._deadline = None
