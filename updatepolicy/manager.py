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

"""Update manager: evaluates policy requests and implements the retry contract.

The UpdateManager is the entry point for embedding applications. It owns
the configured policy, the fact provider and the clock, and offers two
ways to ask a question:

- policy_request(): evaluate once and return the EvalResult, whatever its
  status.
- wait_for_decision(): evaluate, and while the answer is ASK_AGAIN_LATER
  block until a fact the evaluation read has changed (or the wallclock
  deadline it waited on has passed), then evaluate again.

Design Principles:

- Evaluations are synchronous; the manager never runs two at once for the
  same call and never evaluates on facts it already saw unchanged: the
  change token is taken before the facts are read.
- A FAILED evaluation is logged and returned as is. Its output fields are
  undefined and must not be persisted; nothing substitutes a more
  permissive answer for it.
- Cancellation only abandons the wait; an evaluation in progress always
  completes.

Example:
    Blocking until the download decision is made:
        ```python
        from updatepolicy.facts import StaticFactProvider
        from updatepolicy.manager import UpdateManager
        from updatepolicy.policy import PolicyRequest

        manager = UpdateManager(StaticFactProvider({...}))
        result = manager.wait_for_decision(
            PolicyRequest.UPDATE_CAN_START, update_state, timeout=3600
        )
        ```
"""

from __future__ import annotations

import random
import threading
import time
from typing import Any

from updatepolicy.config import PolicyConfig
from updatepolicy.evaluation import EvaluationContext
from updatepolicy.facts import Clock, FactNotifier, FactProvider, SystemClock
from updatepolicy.logging import Logger, get_global_logger
from updatepolicy.policy import Policy, PolicyRequest, get_policy
from updatepolicy.policy.base import policy_request_name
from updatepolicy.policy.models import (
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
)
from updatepolicy.results import EvalResult

# Granularity at which a pending cancellation is noticed while waiting.
_CANCEL_POLL_SECONDS = 0.05
# Lower bound for deadline waits so an exactly-due deadline is not spun on.
_MIN_WAIT_SECONDS = 0.01


class UpdateManager:
    """Evaluates policy requests against live facts.

    Attributes:
        config: Configuration the policies were built with.
        policy: The configured policy.
        facts: Source of facts.
        notifier: Change notifier, or None if facts cannot be watched.
        clock: Wallclock source.
        logger: Destination for decision logging.
    """

    def __init__(
        self,
        facts: FactProvider,
        *,
        config: PolicyConfig | None = None,
        policy: Policy | None = None,
        notifier: FactNotifier | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            facts: Source of facts. If it also implements FactNotifier and
                notifier is not given, it is used as the notifier.
            config: Policy configuration (defaults if omitted).
            policy: Policy instance; built from config.policy if omitted.
            notifier: Change notifier for wait_for_decision().
            clock: Wallclock source (system clock if omitted).
            rng: Random source passed to policies built here.
            logger: Logger (global logger if omitted).

        Raises:
            ConfigError: If config.policy names an unregistered policy.
        """
        self.config = config or PolicyConfig()
        self.logger = logger or get_global_logger()
        self.policy = policy or get_policy(
            self.config.policy, config=self.config, rng=rng, logger=self.logger
        )
        self.facts = facts
        if notifier is None and hasattr(facts, "wait_for_change"):
            notifier = facts  # type: ignore[assignment]
        self.notifier = notifier
        self.clock = clock or SystemClock()

    # -------------------------------
    # Single evaluation
    # -------------------------------

    def policy_request(self, request: PolicyRequest, *args: Any) -> EvalResult[Any]:
        """Evaluate a policy request once.

        Args:
            request: Which decision to make.
            *args: Request-specific arguments (an UpdateState for
                UPDATE_CAN_START).

        Returns:
            The decision, possibly ASK_AGAIN_LATER.
        """
        ec = EvaluationContext(self.facts, self.clock)
        return self._evaluate(request, ec, *args)

    def update_check_allowed(self) -> EvalResult[UpdateCheckParams]:
        return self.policy_request(PolicyRequest.UPDATE_CHECK_ALLOWED)

    def update_can_start(
        self, update_state: UpdateState
    ) -> EvalResult[UpdateDownloadParams]:
        return self.policy_request(PolicyRequest.UPDATE_CAN_START, update_state)

    def update_download_allowed(self) -> EvalResult[bool]:
        return self.policy_request(PolicyRequest.UPDATE_DOWNLOAD_ALLOWED)

    def _evaluate(
        self, request: PolicyRequest, ec: EvaluationContext, *args: Any
    ) -> EvalResult[Any]:
        name = policy_request_name(self.policy, request)
        result = self.policy.evaluate(request, ec, *args)

        if result.is_failed:
            self.logger.verbose("POLICY", f"{name} failed: {result.error}")
        elif result.is_deferred:
            self.logger.debug("POLICY", f"{name} will be evaluated again later")
        else:
            self.logger.verbose("POLICY", f"{name} -> {result.value}")
        return result

    # -------------------------------
    # Retry loop
    # -------------------------------

    def wait_for_decision(
        self,
        request: PolicyRequest,
        *args: Any,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> EvalResult[Any]:
        """Evaluate a request until it yields something other than ASK_AGAIN_LATER.

        Args:
            request: Which decision to make.
            *args: Request-specific arguments.
            timeout: Give up after this many seconds and return the last
                ASK_AGAIN_LATER result. None waits indefinitely.
            cancel: Setting this event abandons the wait; the last
                ASK_AGAIN_LATER result is returned.

        Returns:
            The first SUCCEEDED or FAILED result, or the last
            ASK_AGAIN_LATER result on timeout or cancellation.
        """
        give_up_at = None if timeout is None else time.monotonic() + timeout

        while True:
            token = self.notifier.change_token() if self.notifier is not None else 0
            ec = EvaluationContext(self.facts, self.clock)
            result = self._evaluate(request, ec, *args)
            if not result.is_deferred:
                return result

            if cancel is not None and cancel.is_set():
                self.logger.debug("POLICY", "Wait cancelled")
                return result

            wait_seconds = self._seconds_until_deadline(ec)
            if give_up_at is not None:
                remaining = give_up_at - time.monotonic()
                if remaining <= 0:
                    self.logger.debug("POLICY", "Timed out waiting for a decision")
                    return result
                wait_seconds = (
                    remaining if wait_seconds is None else min(wait_seconds, remaining)
                )

            if wait_seconds is None and cancel is None and (
                self.notifier is None or not ec.watched_facts
            ):
                # Nothing could ever wake us up.
                self.logger.verbose(
                    "POLICY", "Deferred decision has nothing to wait on, giving up"
                )
                return result

            self._block(ec, token, wait_seconds, cancel)

    def _seconds_until_deadline(self, ec: EvaluationContext) -> float | None:
        if ec.next_deadline is None:
            return None
        seconds = (ec.next_deadline - self.clock.now()).total_seconds()
        return max(seconds, _MIN_WAIT_SECONDS)

    def _block(
        self,
        ec: EvaluationContext,
        token: int,
        seconds: float | None,
        cancel: threading.Event | None,
    ) -> None:
        """Wait for a watched fact change, the timeout, or cancellation."""
        end = None if seconds is None else time.monotonic() + seconds
        while True:
            if cancel is not None and cancel.is_set():
                return
            step = _CANCEL_POLL_SECONDS if cancel is not None else None
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    return
                step = left if step is None else min(step, left)

            if self.notifier is not None:
                if self.notifier.wait_for_change(ec.watched_facts, token, step):
                    return
            else:
                (cancel or threading.Event()).wait(step)
