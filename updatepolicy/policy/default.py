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

"""Permissive update policy.

DefaultPolicy answers every request without consulting any fact. It suits
devices outside fleet management (select it with `policy: default` in the
configuration): no scattering, no backoff and no network restrictions.
Persisted backoff, scatter and URL error values are carried through
untouched, so switching a device back to FleetPolicy resumes where it left
off.
"""

from __future__ import annotations

from updatepolicy.evaluation import EvaluationContext
from updatepolicy.exceptions import InvalidStateError
from updatepolicy.policy.base import Policy, register_policy
from updatepolicy.policy.models import (
    UpdateCannotStartReason,
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
    validate_update_state,
)
from updatepolicy.results import EvalResult


class DefaultPolicy(Policy):
    """Allows checks and downloads from the last used (or first) URL."""

    def _update_check_allowed(
        self, ec: EvaluationContext
    ) -> EvalResult[UpdateCheckParams]:
        return EvalResult.succeeded(UpdateCheckParams(updates_enabled=True))

    def _update_can_start(
        self, ec: EvaluationContext, update_state: UpdateState
    ) -> EvalResult[UpdateDownloadParams]:
        problems = validate_update_state(update_state)
        if problems:
            raise InvalidStateError(problems)

        has_urls = bool(update_state.download_urls)
        last_idx = update_state.last_download_url_idx
        return EvalResult.succeeded(
            UpdateDownloadParams(
                update_can_start=has_urls,
                cannot_start_reason=(
                    UpdateCannotStartReason.UNDEFINED
                    if has_urls
                    else UpdateCannotStartReason.NO_USABLE_SOURCE
                ),
                download_url_idx=max(last_idx, 0) if has_urls else -1,
                download_url_num_errors=(
                    update_state.last_download_url_num_errors if last_idx >= 0 else 0
                ),
                backoff_expiry=update_state.backoff_expiry,
                scatter_wait_period=update_state.scatter_wait_period,
                scatter_check_threshold=update_state.scatter_check_threshold,
            )
        )

    def _update_download_allowed(self, ec: EvaluationContext) -> EvalResult[bool]:
        return EvalResult.succeeded(True)


register_policy("default", DefaultPolicy)
