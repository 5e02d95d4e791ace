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

"""Decision status and result types for updatepolicy.

Every decision operation returns an EvalResult instead of raising or
returning a bare value. The status discriminates between three outcomes:

- SUCCEEDED: value is populated and final for this evaluation.
- FAILED: value is undefined; error explains why. Callers must not persist
  anything from a failed evaluation.
- ASK_AGAIN_LATER: value is undefined and nothing needs persisting; the
  caller waits for a watched fact (or a deadline) to change and re-evaluates.

All result types are frozen to prevent accidental mutation.

Example:
    Acting on a result:
        ```python
        result = policy.update_download_allowed(ec)
        if result.status is EvalStatus.SUCCEEDED and result.value:
            start_transfer()
        elif result.status is EvalStatus.FAILED:
            print(f"Policy failed: {result.error}")
        ```
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class EvalStatus(Enum):
    """The three possible outcomes of a policy request."""

    FAILED = "failed"
    SUCCEEDED = "succeeded"
    ASK_AGAIN_LATER = "ask_again_later"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EvalResult(Generic[T]):
    """Outcome of one policy evaluation.

    Attributes:
        status: Which of the three outcomes occurred.
        value: The decision (only for SUCCEEDED).
        error: Human-readable reason (only for FAILED).
    """

    status: EvalStatus
    value: T | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, value: T) -> EvalResult[T]:
        return cls(EvalStatus.SUCCEEDED, value=value)

    @classmethod
    def failed(cls, error: str) -> EvalResult[T]:
        return cls(EvalStatus.FAILED, error=error)

    @classmethod
    def ask_again_later(cls) -> EvalResult[T]:
        return cls(EvalStatus.ASK_AGAIN_LATER)

    @property
    def is_succeeded(self) -> bool:
        return self.status is EvalStatus.SUCCEEDED

    @property
    def is_failed(self) -> bool:
        return self.status is EvalStatus.FAILED

    @property
    def is_deferred(self) -> bool:
        return self.status is EvalStatus.ASK_AGAIN_LATER
