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

"""Fleet update policy.

FleetPolicy is the full decision policy for managed device fleets. It
answers the three policy requests:

- update_check_allowed: honours enrollment state, the device policy kill
  switch, version/channel pinning and the caller's interactive request.
- update_can_start: runs the scattering gate, the backoff gate and mirror
  URL selection, in that order. Interactive requests skip the first two.
- update_download_allowed: permits unmetered connections, and metered ones
  only when device policy allows cellular updates.

Decision flow of update_can_start:

1. Validate the snapshot; contradictions (including naive timestamps)
   yield FAILED, as do fact values of the wrong type.
2. Scattering (not interactive, enabled by server bounds / device policy):
   wait-period pending -> SCATTERING_IN_EFFECT if a value was drawn now,
   otherwise ASK_AGAIN_LATER; check count pending -> CHECK_NOT_DUE.
3. Backoff (not interactive, not disabled): expiry in the future ->
   BACKOFF_IN_EFFECT with the expiry unchanged.
4. URL selection: next usable mirror after the last one -> start; none
   but P2P allowed -> start with P2P only; otherwise NO_USABLE_SOURCE, ask
   the caller to count a failure and persist a fresh backoff expiry.

Every refusal carries the persisted URL index, URL error count, backoff
expiry and scatter values forward, so writing the result back never loses
state.
"""

from __future__ import annotations

from datetime import timedelta

from updatepolicy.evaluation import EvaluationContext
from updatepolicy.exceptions import InvalidStateError
from updatepolicy.facts import (
    ConnectionTethering,
    ConnectionType,
    Fact,
    UpdateRequestStatus,
)
from updatepolicy.policy.backoff import compute_backoff_expiry, is_backoff_in_effect
from updatepolicy.policy.base import Policy, register_policy
from updatepolicy.policy.download_urls import select_download_url
from updatepolicy.policy.models import (
    UpdateCannotStartReason,
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
    validate_update_state,
)
from updatepolicy.policy.scattering import ScatterOutcome, update_scattering
from updatepolicy.results import EvalResult

_UNMETERED = frozenset({ConnectionType.ETHERNET, ConnectionType.WIFI, ConnectionType.WIMAX})
_OPTIONAL_STR = (str, type(None))
_COLLECTIONS = (frozenset, set, tuple, list)


class FleetPolicy(Policy):
    """Scattering, backoff and mirror rotation for managed fleets."""

    # -------------------------------
    # UpdateCheckAllowed
    # -------------------------------

    def _update_check_allowed(
        self, ec: EvaluationContext
    ) -> EvalResult[UpdateCheckParams]:
        disabled = UpdateCheckParams(updates_enabled=False)

        if not ec.get_value(Fact.IS_OOBE_COMPLETE, True, expected=bool):
            self.logger.verbose("CHECK", "Enrollment not complete, updates disabled")
            return EvalResult.succeeded(disabled)

        target_version_prefix = ""
        target_channel = ""
        if ec.get_value(Fact.DEVICE_POLICY_LOADED, True, expected=bool):
            if ec.get_value(Fact.UPDATES_DISABLED, False, expected=bool):
                self.logger.verbose("CHECK", "Updates disabled by device policy")
                return EvalResult.succeeded(disabled)
            target_version_prefix = (
                ec.get_value(Fact.TARGET_VERSION_PREFIX, "", expected=_OPTIONAL_STR)
                or ""
            )
            if not ec.get_value(Fact.RELEASE_CHANNEL_DELEGATED, True, expected=bool):
                target_channel = (
                    ec.get_value(Fact.RELEASE_CHANNEL, "", expected=_OPTIONAL_STR)
                    or ""
                )

        request = ec.get_value(
            Fact.FORCED_UPDATE_REQUESTED,
            UpdateRequestStatus.NONE,
            expected=UpdateRequestStatus,
        )

        # Unofficial builds only check when asked to.
        is_official = ec.get_value(Fact.IS_OFFICIAL_BUILD, expected=bool)
        if not is_official and request is UpdateRequestStatus.NONE:
            self.logger.verbose("CHECK", "Unofficial build without a forced request")
            return EvalResult.succeeded(disabled)

        return EvalResult.succeeded(
            UpdateCheckParams(
                updates_enabled=True,
                target_version_prefix=target_version_prefix,
                target_channel=target_channel,
                is_interactive=request is UpdateRequestStatus.INTERACTIVE,
            )
        )

    # -------------------------------
    # UpdateCanStart
    # -------------------------------

    def _update_can_start(
        self, ec: EvaluationContext, update_state: UpdateState
    ) -> EvalResult[UpdateDownloadParams]:
        state = update_state
        problems = validate_update_state(state)
        if problems:
            raise InvalidStateError(problems)

        wait_period = state.scatter_wait_period
        check_threshold = state.scatter_check_threshold

        if not state.is_interactive:
            wait_period_max = self._scatter_wait_period_max(ec, state)
            if wait_period_max is not None:
                scatter = update_scattering(
                    ec, state, wait_period_max=wait_period_max, rng=self.rng
                )
                wait_period = scatter.wait_period
                check_threshold = scatter.check_threshold

                if scatter.outcome is ScatterOutcome.WAITING_FOR_PERIOD:
                    if not scatter.changed:
                        self.logger.debug(
                            "SCATTER",
                            f"Waiting until {state.first_seen + wait_period}",
                        )
                        return EvalResult.ask_again_later()
                    self.logger.verbose(
                        "SCATTER",
                        f"Drew wait period {wait_period}, threshold {check_threshold}",
                    )
                    return EvalResult.succeeded(
                        self._refusal(
                            state,
                            UpdateCannotStartReason.SCATTERING_IN_EFFECT,
                            wait_period=wait_period,
                            check_threshold=check_threshold,
                        )
                    )
                if scatter.outcome is ScatterOutcome.WAITING_FOR_CHECKS:
                    self.logger.verbose(
                        "SCATTER",
                        f"{state.num_checks} of {check_threshold} update checks seen",
                    )
                    return EvalResult.succeeded(
                        self._refusal(
                            state,
                            UpdateCannotStartReason.CHECK_NOT_DUE,
                            wait_period=wait_period,
                            check_threshold=check_threshold,
                        )
                    )

            if not state.is_backoff_disabled and is_backoff_in_effect(
                ec, state.backoff_expiry
            ):
                self.logger.verbose("BACKOFF", f"Backoff until {state.backoff_expiry}")
                return EvalResult.succeeded(
                    self._refusal(
                        state,
                        UpdateCannotStartReason.BACKOFF_IN_EFFECT,
                        wait_period=wait_period,
                        check_threshold=check_threshold,
                    )
                )

        return EvalResult.succeeded(
            self._choose_source(ec, state, wait_period, check_threshold)
        )

    def _choose_source(
        self,
        ec: EvaluationContext,
        state: UpdateState,
        wait_period: timedelta,
        check_threshold: int,
    ) -> UpdateDownloadParams:
        errors_max = state.download_errors_max
        if state.is_delta_payload and self.config.delta_errors_max is not None:
            errors_max = self.config.delta_errors_max

        url_idx, num_errors = select_download_url(
            state,
            errors_max=errors_max,
            http_allowed=self._http_allowed(ec),
            logger=self.logger,
        )
        p2p_allowed = self._p2p_allowed(ec)

        if url_idx >= 0 or p2p_allowed:
            if url_idx < 0:
                self.logger.verbose("URL", "No usable URL, downloading from peers")
            return UpdateDownloadParams(
                update_can_start=True,
                download_url_idx=url_idx,
                download_url_num_errors=num_errors,
                p2p_allowed=p2p_allowed,
                backoff_expiry=state.backoff_expiry,
                scatter_wait_period=wait_period,
                scatter_check_threshold=check_threshold,
            )

        backoff_expiry = None
        if not state.is_backoff_disabled:
            backoff_expiry = compute_backoff_expiry(
                state.num_failures + 1,
                ec.now(),
                base=self.config.backoff_base,
                ceiling=self.config.backoff_max,
                fuzz=self.config.backoff_fuzz,
                rng=self.rng,
            )
        self.logger.verbose(
            "URL",
            f"All {len(state.download_urls)} URL(s) exhausted, "
            f"failure #{state.num_failures + 1}, backoff until {backoff_expiry}",
        )
        return UpdateDownloadParams(
            update_can_start=False,
            cannot_start_reason=UpdateCannotStartReason.NO_USABLE_SOURCE,
            download_url_idx=-1,
            download_url_num_errors=0,
            do_increment_failures=True,
            backoff_expiry=backoff_expiry,
            scatter_wait_period=wait_period,
            scatter_check_threshold=check_threshold,
        )

    @staticmethod
    def _refusal(
        state: UpdateState,
        reason: UpdateCannotStartReason,
        *,
        wait_period: timedelta,
        check_threshold: int,
    ) -> UpdateDownloadParams:
        return UpdateDownloadParams(
            update_can_start=False,
            cannot_start_reason=reason,
            download_url_idx=state.last_download_url_idx,
            download_url_num_errors=state.last_download_url_num_errors,
            backoff_expiry=state.backoff_expiry,
            scatter_wait_period=wait_period,
            scatter_check_threshold=check_threshold,
        )

    def _scatter_wait_period_max(
        self, ec: EvaluationContext, state: UpdateState
    ) -> timedelta | None:
        """Return the effective wait bound, or None if scattering is off."""
        wait_period_max = state.scatter_wait_period_max
        scatter_factor = ec.get_value(
            Fact.SCATTER_FACTOR, None, expected=(timedelta, type(None))
        )
        if scatter_factor is not None:
            if scatter_factor <= timedelta():
                return None
            wait_period_max = min(wait_period_max, scatter_factor)
        if wait_period_max <= timedelta() and state.scatter_check_threshold_max <= 0:
            return None
        return wait_period_max

    def _http_allowed(self, ec: EvaluationContext) -> bool:
        if self.config.allow_http or not ec.get_value(
            Fact.IS_OFFICIAL_BUILD, True, expected=bool
        ):
            return True
        return ec.get_value(Fact.HTTP_DOWNLOADS_ENABLED, False, expected=bool)

    def _p2p_allowed(self, ec: EvaluationContext) -> bool:
        if not self.config.p2p_supported:
            return False
        return ec.get_value(
            Fact.P2P_ENABLED, self.config.p2p_enabled_by_default, expected=bool
        )

    # -------------------------------
    # UpdateDownloadAllowed
    # -------------------------------

    def _update_download_allowed(self, ec: EvaluationContext) -> EvalResult[bool]:
        conn_type = ec.get_value(Fact.CONNECTION_TYPE, expected=ConnectionType)

        tethering = ec.get_value(
            Fact.CONNECTION_TETHERING,
            ConnectionTethering.UNKNOWN,
            expected=ConnectionTethering,
        )

        if conn_type in _UNMETERED and tethering is not ConnectionTethering.CONFIRMED:
            return EvalResult.succeeded(True)

        if conn_type in _UNMETERED or conn_type is ConnectionType.CELLULAR:
            # Metered: only if device policy explicitly allows cellular.
            allowed_types = ec.get_value(
                Fact.ALLOWED_CONNECTION_TYPES, frozenset(), expected=_COLLECTIONS
            )
            allowed = ConnectionType.CELLULAR in allowed_types
            self.logger.verbose(
                "NETWORK",
                f"Metered connection ({conn_type.value}), "
                f"{'allowed' if allowed else 'refused'} by device policy",
            )
            return EvalResult.succeeded(allowed)

        self.logger.verbose("NETWORK", f"Updates over {conn_type.value} are refused")
        return EvalResult.succeeded(False)


register_policy("fleet", FleetPolicy)
