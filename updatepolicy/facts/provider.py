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

"""Fact-provider, change-notification and clock interfaces.

The embedding application supplies facts and the means to wait for them to
change. This module defines those seams as Protocols (structural subtyping,
so implementations need not inherit from anything) and ships small
in-memory implementations used by tests and simple embedders.

Example:
    Publishing facts and waiting for a change:
        ```python
        from updatepolicy.facts import Fact, ConnectionType, StaticFactProvider

        provider = StaticFactProvider({Fact.IS_OFFICIAL_BUILD: True})
        token = provider.change_token()
        provider.set_fact(Fact.CONNECTION_TYPE, ConnectionType.WIFI)
        assert provider.wait_for_change([Fact.CONNECTION_TYPE], token, 0)
        ```
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
import threading
from typing import Any, Protocol

from updatepolicy.exceptions import FactUnavailableError
from updatepolicy.facts.variables import Fact


class FactProvider(Protocol):
    """Read-only source of facts."""

    def get_fact(self, fact: Fact) -> Any:
        """Return the current value of a fact.

        Raises:
            FactUnavailableError: If the fact has no value right now.
        """
        ...


class FactNotifier(Protocol):
    """Lets a caller block until a fact changes."""

    def change_token(self) -> int:
        """Return an opaque, monotonically increasing change marker."""
        ...

    def wait_for_change(
        self, facts: Iterable[Fact], since: int, timeout: float | None
    ) -> bool:
        """Block until one of facts changes after token since.

        Args:
            facts: Facts to watch.
            since: Token obtained from change_token() before the facts were
                last read.
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Returns:
            True if a watched fact changed, False on timeout.
        """
        ...


class Clock(Protocol):
    """Source of wallclock time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system wallclock (timezone-aware UTC)."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Manually driven clock for deterministic evaluation.

    Example:
        ```python
        clock = FixedClock(datetime(2024, 1, 1, tzinfo=UTC))
        clock.advance(timedelta(hours=1))
        ```
    """

    def __init__(self, when: datetime) -> None:
        self._now = when

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now


class StaticFactProvider:
    """In-memory, thread-safe fact provider and change notifier.

    Setting a fact to the value it already holds is not a change and does
    not wake waiters.
    """

    def __init__(self, facts: Mapping[Fact, Any] | None = None) -> None:
        self._values: dict[Fact, Any] = dict(facts or {})
        self._versions: dict[Fact, int] = {}
        self._token = 0
        self._cond = threading.Condition()

    def get_fact(self, fact: Fact) -> Any:
        with self._cond:
            if fact not in self._values:
                raise FactUnavailableError(fact)
            return self._values[fact]

    def set_fact(self, fact: Fact, value: Any) -> None:
        with self._cond:
            if fact in self._values and self._values[fact] == value:
                return
            self._values[fact] = value
            self._bump(fact)

    def clear_fact(self, fact: Fact) -> None:
        with self._cond:
            if fact not in self._values:
                return
            del self._values[fact]
            self._bump(fact)

    def change_token(self) -> int:
        with self._cond:
            return self._token

    def wait_for_change(
        self, facts: Iterable[Fact], since: int, timeout: float | None
    ) -> bool:
        watched = frozenset(facts)

        def changed() -> bool:
            return any(self._versions.get(f, 0) > since for f in watched)

        with self._cond:
            return self._cond.wait_for(changed, timeout)

    def _bump(self, fact: Fact) -> None:
        # Caller holds self._cond.
        self._token += 1
        self._versions[fact] = self._token
        self._cond.notify_all()
