"""
Tests for updatepolicy.policy.fleet module.

Tests FleetPolicy decisions including:
- Update check gating (enrollment, device policy, pinning, forced checks)
- Download start gating (scattering, backoff, URL rotation, P2P fallback)
- Network gating (metered and tethered connections)
"""

from __future__ import annotations

from datetime import timedelta
import random

import pytest

from updatepolicy.config import PolicyConfig
from updatepolicy.evaluation import EvaluationContext
from updatepolicy.facts import (
    ConnectionTethering,
    ConnectionType,
    Fact,
    UpdateRequestStatus,
)
from updatepolicy.logging import SilentLogger
from updatepolicy.policy import (
    DownloadError,
    ErrorCode,
    FleetPolicy,
    UpdateCannotStartReason,
)
from updatepolicy.results import EvalStatus


def exhausted_errors(num_urls, when):
    return tuple(
        DownloadError(idx, ErrorCode.PAYLOAD_HASH_MISMATCH_ERROR, when)
        for idx in range(num_urls)
    )


@pytest.fixture
def evaluate(facts, clock):
    """Return a helper running update_can_start on a fresh evaluation context."""

    def _evaluate(policy, state):
        return policy.update_can_start(EvaluationContext(facts, clock), state)

    return _evaluate


class TestUpdateCheckAllowed:
    """Tests for FleetPolicy.update_check_allowed."""

    def test_enabled_by_default(self, policy, ec):
        """Test that an enrolled official build may check."""
        result = policy.update_check_allowed(ec)

        assert result.status is EvalStatus.SUCCEEDED
        assert result.value.updates_enabled is True
        assert result.value.is_interactive is False
        assert result.value.target_version_prefix == ""
        assert result.value.target_channel == ""

    def test_enrollment_incomplete(self, policy, facts, ec):
        """Test that checks are disabled before enrollment completes."""
        facts.set_fact(Fact.IS_OOBE_COMPLETE, False)

        result = policy.update_check_allowed(ec)

        assert result.is_succeeded
        assert result.value.updates_enabled is False

    def test_disabled_by_device_policy(self, policy, facts, ec):
        """Test that device policy can disable updates."""
        facts.set_fact(Fact.UPDATES_DISABLED, True)

        result = policy.update_check_allowed(ec)

        assert result.is_succeeded
        assert result.value.updates_enabled is False

    def test_disabled_never_fails(self, policy, facts, ec):
        """Test that disabling updates does not depend on the build type."""
        facts.set_fact(Fact.UPDATES_DISABLED, True)
        facts.clear_fact(Fact.IS_OFFICIAL_BUILD)

        result = policy.update_check_allowed(ec)

        assert result.is_succeeded
        assert result.value.updates_enabled is False

    def test_device_policy_not_loaded(self, policy, facts, ec):
        """Test that device policy settings are ignored until loaded."""
        facts.set_fact(Fact.DEVICE_POLICY_LOADED, False)
        facts.set_fact(Fact.UPDATES_DISABLED, True)
        facts.set_fact(Fact.TARGET_VERSION_PREFIX, "13.")

        result = policy.update_check_allowed(ec)

        assert result.value.updates_enabled is True
        assert result.value.target_version_prefix == ""

    def test_version_prefix(self, policy, facts, ec):
        """Test that a version pin is passed through."""
        facts.set_fact(Fact.TARGET_VERSION_PREFIX, "13.")

        result = policy.update_check_allowed(ec)

        assert result.value.target_version_prefix == "13."

    def test_channel_pinned_when_not_delegated(self, policy, facts, ec):
        """Test that the policy channel applies when not delegated to the user."""
        facts.set_fact(Fact.RELEASE_CHANNEL_DELEGATED, False)
        facts.set_fact(Fact.RELEASE_CHANNEL, "stable-channel")

        result = policy.update_check_allowed(ec)

        assert result.value.target_channel == "stable-channel"

    def test_channel_ignored_when_delegated(self, policy, facts, ec):
        """Test that a delegated channel is left to the user."""
        facts.set_fact(Fact.RELEASE_CHANNEL_DELEGATED, True)
        facts.set_fact(Fact.RELEASE_CHANNEL, "stable-channel")

        result = policy.update_check_allowed(ec)

        assert result.value.target_channel == ""

    def test_interactive_request(self, policy, facts, ec):
        """Test that a user-requested check is flagged interactive."""
        facts.set_fact(Fact.FORCED_UPDATE_REQUESTED, UpdateRequestStatus.INTERACTIVE)

        result = policy.update_check_allowed(ec)

        assert result.value.updates_enabled is True
        assert result.value.is_interactive is True

    def test_unofficial_build_without_request(self, policy, facts, ec):
        """Test that unofficial builds do not check on their own."""
        facts.set_fact(Fact.IS_OFFICIAL_BUILD, False)

        result = policy.update_check_allowed(ec)

        assert result.value.updates_enabled is False

    def test_unofficial_build_with_request(self, policy, facts, ec):
        """Test that unofficial builds check when asked to."""
        facts.set_fact(Fact.IS_OFFICIAL_BUILD, False)
        facts.set_fact(Fact.FORCED_UPDATE_REQUESTED, UpdateRequestStatus.PERIODIC)

        result = policy.update_check_allowed(ec)

        assert result.value.updates_enabled is True
        assert result.value.is_interactive is False

    def test_missing_build_type_fails(self, policy, facts, ec):
        """Test that an unknown build type yields FAILED."""
        facts.clear_fact(Fact.IS_OFFICIAL_BUILD)

        result = policy.update_check_allowed(ec)

        assert result.status is EvalStatus.FAILED
        assert "is_official_build" in result.error

    def test_non_boolean_setting_fails(self, policy, facts, ec):
        """Test that a malformed device policy value yields FAILED."""
        facts.set_fact(Fact.UPDATES_DISABLED, "false")

        result = policy.update_check_allowed(ec)

        assert result.status is EvalStatus.FAILED
        assert "updates_disabled has unexpected value" in result.error


class TestUpdateCanStartBasics:
    """Tests for the ungated download start path."""

    def test_starts_from_first_url(self, policy, ec, make_state):
        """Test that a fresh payload starts from URL 0."""
        result = policy.update_can_start(ec, make_state())

        assert result.status is EvalStatus.SUCCEEDED
        params = result.value
        assert params.update_can_start is True
        assert params.cannot_start_reason is UpdateCannotStartReason.UNDEFINED
        assert params.download_url_idx == 0
        assert params.download_url_num_errors == 0
        assert params.p2p_allowed is False
        assert params.do_increment_failures is False

    def test_invalid_state_fails(self, policy, ec, make_state):
        """Test that a contradictory snapshot yields FAILED."""
        result = policy.update_can_start(ec, make_state(last_download_url_idx=7))

        assert result.status is EvalStatus.FAILED
        assert "invalid update state" in result.error

    def test_persisting_results_does_not_oscillate(
        self, policy, evaluate, make_state, now
    ):
        """Test that feeding decisions back keeps starting, rotating mirrors."""
        state = make_state(
            download_errors=(DownloadError(0, ErrorCode.DOWNLOAD_TRANSFER_ERROR, now),)
        )
        chosen = []

        for _ in range(5):
            params = evaluate(policy, state).value
            assert params.update_can_start is True
            assert params.do_increment_failures is False
            chosen.append(params.download_url_idx)
            state = state.with_download_params(params, now)

        assert chosen == [0, 1, 2, 0, 1]


class TestBackoffGate:
    """Tests for backoff handling in update_can_start."""

    def test_backoff_in_effect(self, policy, ec, make_state, now):
        """Test that a future expiry refuses and is carried unchanged."""
        expiry = now + timedelta(days=1)
        state = make_state(
            num_failures=1,
            backoff_expiry=expiry,
            last_download_url_idx=1,
            last_download_url_num_errors=2,
        )

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is False
        assert params.cannot_start_reason is UpdateCannotStartReason.BACKOFF_IN_EFFECT
        assert params.backoff_expiry == expiry
        assert params.download_url_idx == 1
        assert params.download_url_num_errors == 2
        assert params.do_increment_failures is False
        assert ec.next_deadline == expiry

    def test_backoff_stable_across_evaluations(self, policy, evaluate, make_state, now):
        """Test that repeated evaluations during backoff keep the same expiry."""
        state = make_state(backoff_expiry=now + timedelta(hours=5))

        first = evaluate(policy, state).value
        second = evaluate(policy, state.with_download_params(first, now)).value

        assert first == second

    def test_backoff_elapsed(self, policy, ec, make_state, now):
        """Test that an elapsed expiry lets the download start."""
        expiry = now - timedelta(minutes=1)

        params = policy.update_can_start(ec, make_state(backoff_expiry=expiry)).value

        assert params.update_can_start is True
        assert params.backoff_expiry == expiry

    def test_backoff_disabled(self, policy, ec, make_state, now):
        """Test that server-disabled backoff is not enforced."""
        state = make_state(
            backoff_expiry=now + timedelta(days=1), is_backoff_disabled=True
        )

        assert policy.update_can_start(ec, state).value.update_can_start is True

    def test_interactive_bypasses_backoff(self, policy, ec, make_state, now):
        """Test that a user-initiated update ignores backoff."""
        state = make_state(backoff_expiry=now + timedelta(days=1), is_interactive=True)

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is True
        assert params.download_url_idx == 0


class TestScatteringGate:
    """Tests for scattering in update_can_start."""

    def test_fresh_draw_refuses_with_values(self, policy, ec, make_state, now):
        """Test that a new draw is returned for persisting."""
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))

        result = policy.update_can_start(ec, state)

        assert result.status is EvalStatus.SUCCEEDED
        params = result.value
        assert params.update_can_start is False
        assert params.cannot_start_reason is UpdateCannotStartReason.SCATTERING_IN_EFFECT
        assert timedelta(seconds=1) <= params.scatter_wait_period <= timedelta(days=1)
        assert ec.next_deadline == now + params.scatter_wait_period

    def test_persisted_draw_asks_again_later(self, policy, evaluate, make_state, now):
        """Test that an unchanged pending wait defers without new output."""
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))
        first = evaluate(policy, state).value

        result = evaluate(policy, state.with_download_params(first, now))

        assert result.status is EvalStatus.ASK_AGAIN_LATER
        assert result.value is None

    def test_draw_is_deterministic(self, config, make_state, facts, clock, now):
        """Test that the same seed and snapshot give the same draw."""
        state = make_state(
            first_seen=now,
            scatter_wait_period_max=timedelta(days=1),
            scatter_check_threshold_max=5,
        )

        draws = [
            FleetPolicy(config, rng=random.Random(99), logger=SilentLogger())
            .update_can_start(EvaluationContext(facts, clock), state)
            .value
            for _ in range(2)
        ]

        assert draws[0] == draws[1]

    def test_wait_elapsed_starts(self, policy, evaluate, make_state, clock, now):
        """Test that the download starts once the persisted wait has passed."""
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))
        first = evaluate(policy, state).value
        persisted = state.with_download_params(first, now)

        clock.advance(timedelta(days=1, seconds=1))
        params = evaluate(policy, persisted).value

        assert params.update_can_start is True
        assert params.scatter_wait_period == first.scatter_wait_period

    def test_check_not_due(self, policy, ec, make_state):
        """Test that too few update checks refuse with CHECK_NOT_DUE."""
        state = make_state(
            num_checks=2,
            scatter_check_threshold_min=5,
            scatter_check_threshold_max=5,
        )

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is False
        assert params.cannot_start_reason is UpdateCannotStartReason.CHECK_NOT_DUE
        assert params.scatter_check_threshold == 5

    def test_scatter_factor_zero_disables(self, policy, facts, ec, make_state, now):
        """Test that device policy can turn scattering off."""
        facts.set_fact(Fact.SCATTER_FACTOR, timedelta())
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))

        assert policy.update_can_start(ec, state).value.update_can_start is True

    def test_scatter_factor_caps_wait(self, policy, facts, ec, make_state, now):
        """Test that device policy lowers the wait period bound."""
        facts.set_fact(Fact.SCATTER_FACTOR, timedelta(minutes=10))
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))

        params = policy.update_can_start(ec, state).value

        assert params.scatter_wait_period <= timedelta(minutes=10)

    def test_scatter_factor_wrong_type_fails(self, policy, facts, ec, make_state, now):
        """Test that a scatter factor given as plain seconds yields FAILED."""
        facts.set_fact(Fact.SCATTER_FACTOR, 600)
        state = make_state(first_seen=now, scatter_wait_period_max=timedelta(days=1))

        result = policy.update_can_start(ec, state)

        assert result.status is EvalStatus.FAILED
        assert "scatter_factor has unexpected value 600" in result.error

    def test_naive_first_seen_fails(self, policy, ec, make_state, now):
        """Test that a first-seen time without a timezone yields FAILED."""
        state = make_state(
            first_seen=now.replace(tzinfo=None),
            scatter_wait_period_max=timedelta(days=1),
        )

        result = policy.update_can_start(ec, state)

        assert result.status is EvalStatus.FAILED
        assert "first_seen must be a timezone-aware datetime" in result.error

    def test_interactive_bypasses_scattering(self, policy, ec, make_state, now):
        """Test that a user-initiated update ignores scattering."""
        state = make_state(
            first_seen=now,
            scatter_wait_period=timedelta(hours=3),
            scatter_wait_period_max=timedelta(days=1),
            is_interactive=True,
        )

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is True
        assert params.scatter_wait_period == timedelta(hours=3)


class TestUrlSelection:
    """Tests for mirror selection and failure accounting."""

    def test_rotation_after_usable_last_url(self, policy, ec, make_state):
        """Test that selection moves past the last used URL even if usable."""
        params = policy.update_can_start(
            ec, make_state(last_download_url_idx=1)
        ).value

        assert params.update_can_start is True
        assert params.download_url_idx == 2
        assert params.download_url_num_errors == 0

    def test_rotation_to_next_url(self, policy, ec, make_state, now):
        """Test that an exhausted last URL rotates to the next one."""
        state = make_state(
            last_download_url_idx=1,
            download_errors=(
                DownloadError(1, ErrorCode.DOWNLOAD_METADATA_SIGNATURE_ERROR, now),
            ),
        )

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is True
        assert params.download_url_idx == 2
        assert params.download_url_num_errors == 0

    def test_exhaustion_counts_failure(self, policy, ec, make_state, now):
        """Test that exhausting every URL asks for a failure and backs off."""
        state = make_state(
            last_download_url_idx=2, download_errors=exhausted_errors(3, now)
        )

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is False
        assert params.cannot_start_reason is UpdateCannotStartReason.NO_USABLE_SOURCE
        assert params.do_increment_failures is True
        assert params.download_url_idx == -1
        assert now + timedelta(hours=18) <= params.backoff_expiry
        assert params.backoff_expiry <= now + timedelta(hours=30)

    def test_exhaustion_without_backoff(self, policy, ec, make_state, now):
        """Test that no expiry is produced when backoff is disabled."""
        state = make_state(
            is_backoff_disabled=True, download_errors=exhausted_errors(3, now)
        )

        params = policy.update_can_start(ec, state).value

        assert params.cannot_start_reason is UpdateCannotStartReason.NO_USABLE_SOURCE
        assert params.backoff_expiry is None

    def test_empty_url_list(self, policy, ec, make_state):
        """Test that a payload without URLs has no usable source."""
        params = policy.update_can_start(ec, make_state(download_urls=())).value

        assert params.cannot_start_reason is UpdateCannotStartReason.NO_USABLE_SOURCE

    def test_failure_round_trip(self, policy, evaluate, make_state, clock, now):
        """Test a full failure cycle: exhaust, back off, then start over."""
        state = make_state(download_errors=exhausted_errors(3, now))
        failed = evaluate(policy, state).value
        state = state.with_download_params(failed, now)

        assert state.num_failures == 1
        assert state.download_errors == ()

        backing_off = evaluate(policy, state).value
        assert backing_off.cannot_start_reason is UpdateCannotStartReason.BACKOFF_IN_EFFECT

        clock.set(failed.backoff_expiry + timedelta(seconds=1))
        restarted = evaluate(policy, state).value
        assert restarted.update_can_start is True
        assert restarted.download_url_idx == 0

    def test_delta_budget_from_config(self, make_state, ec, now):
        """Test that delta payloads use the configured error budget."""
        policy = FleetPolicy(
            PolicyConfig(delta_errors_max=1),
            rng=random.Random(1),
            logger=SilentLogger(),
        )
        state = make_state(
            is_delta_payload=True,
            download_errors=(DownloadError(0, ErrorCode.DOWNLOAD_TRANSFER_ERROR, now),),
        )

        assert policy.update_can_start(ec, state).value.download_url_idx == 1

    def test_delta_budget_ignored_for_full_payload(self, make_state, ec, now):
        """Test that full payloads keep the server budget."""
        policy = FleetPolicy(
            PolicyConfig(delta_errors_max=1),
            rng=random.Random(1),
            logger=SilentLogger(),
        )
        state = make_state(
            download_errors=(DownloadError(0, ErrorCode.DOWNLOAD_TRANSFER_ERROR, now),),
        )

        assert policy.update_can_start(ec, state).value.download_url_idx == 0


class TestHttpAndP2P:
    """Tests for HTTP permission and peer-assisted fallback."""

    HTTP_URLS = ("http://mirror0.example.com/payload.bin",)

    def test_http_refused_on_official_build(self, policy, ec, make_state):
        """Test that official builds refuse plain HTTP by default."""
        params = policy.update_can_start(
            ec, make_state(download_urls=self.HTTP_URLS)
        ).value

        assert params.cannot_start_reason is UpdateCannotStartReason.NO_USABLE_SOURCE

    def test_http_enabled_by_device_policy(self, policy, facts, ec, make_state):
        """Test that device policy can allow plain HTTP."""
        facts.set_fact(Fact.HTTP_DOWNLOADS_ENABLED, True)

        params = policy.update_can_start(
            ec, make_state(download_urls=self.HTTP_URLS)
        ).value

        assert params.download_url_idx == 0

    def test_http_allowed_on_unofficial_build(self, policy, facts, ec, make_state):
        """Test that unofficial builds may use plain HTTP."""
        facts.set_fact(Fact.IS_OFFICIAL_BUILD, False)

        params = policy.update_can_start(
            ec, make_state(download_urls=self.HTTP_URLS)
        ).value

        assert params.download_url_idx == 0

    def test_http_allowed_by_config(self, ec, make_state):
        """Test that configuration can allow plain HTTP."""
        policy = FleetPolicy(PolicyConfig(allow_http=True), logger=SilentLogger())

        params = policy.update_can_start(
            ec, make_state(download_urls=self.HTTP_URLS)
        ).value

        assert params.download_url_idx == 0

    def test_p2p_flag_reported(self, policy, facts, ec, make_state):
        """Test that P2P permission is reported alongside a URL."""
        facts.set_fact(Fact.P2P_ENABLED, True)

        params = policy.update_can_start(ec, make_state()).value

        assert params.download_url_idx == 0
        assert params.p2p_allowed is True

    def test_p2p_fallback(self, policy, facts, ec, make_state, now):
        """Test that exhausted URLs fall back to peers without a failure."""
        facts.set_fact(Fact.P2P_ENABLED, True)
        state = make_state(download_errors=exhausted_errors(3, now))

        params = policy.update_can_start(ec, state).value

        assert params.update_can_start is True
        assert params.download_url_idx == -1
        assert params.p2p_allowed is True
        assert params.do_increment_failures is False

    def test_p2p_unsupported(self, facts, ec, make_state):
        """Test that P2P stays off when the build does not support it."""
        facts.set_fact(Fact.P2P_ENABLED, True)
        policy = FleetPolicy(PolicyConfig(p2p_supported=False), logger=SilentLogger())

        assert policy.update_can_start(ec, make_state()).value.p2p_allowed is False

    def test_p2p_enabled_by_default(self, ec, make_state):
        """Test the configured default when device policy is silent."""
        policy = FleetPolicy(
            PolicyConfig(p2p_enabled_by_default=True), logger=SilentLogger()
        )

        assert policy.update_can_start(ec, make_state()).value.p2p_allowed is True


class TestUpdateDownloadAllowed:
    """Tests for FleetPolicy.update_download_allowed."""

    @pytest.mark.parametrize(
        "conn_type",
        [ConnectionType.ETHERNET, ConnectionType.WIFI, ConnectionType.WIMAX],
    )
    def test_unmetered_allowed(self, policy, facts, ec, conn_type):
        """Test that unmetered connections are allowed."""
        facts.set_fact(Fact.CONNECTION_TYPE, conn_type)

        result = policy.update_download_allowed(ec)

        assert result.status is EvalStatus.SUCCEEDED
        assert result.value is True

    def test_suspected_tethering_allowed(self, policy, facts, ec):
        """Test that only confirmed tethering counts as metered."""
        facts.set_fact(Fact.CONNECTION_TETHERING, ConnectionTethering.SUSPECTED)

        assert policy.update_download_allowed(ec).value is True

    def test_confirmed_tethering_refused(self, policy, facts, ec):
        """Test that a tethered WiFi connection is treated as metered."""
        facts.set_fact(Fact.CONNECTION_TETHERING, ConnectionTethering.CONFIRMED)

        assert policy.update_download_allowed(ec).value is False

    def test_cellular_refused(self, policy, facts, ec):
        """Test that cellular is refused unless policy allows it."""
        facts.set_fact(Fact.CONNECTION_TYPE, ConnectionType.CELLULAR)

        assert policy.update_download_allowed(ec).value is False

    def test_cellular_allowed_by_policy(self, policy, facts, ec):
        """Test that device policy can allow cellular updates."""
        facts.set_fact(Fact.CONNECTION_TYPE, ConnectionType.CELLULAR)
        facts.set_fact(
            Fact.ALLOWED_CONNECTION_TYPES,
            frozenset({ConnectionType.CELLULAR, ConnectionType.WIFI}),
        )

        assert policy.update_download_allowed(ec).value is True

    def test_tethered_allowed_by_policy(self, policy, facts, ec):
        """Test that tethered connections follow the cellular permission."""
        facts.set_fact(Fact.CONNECTION_TETHERING, ConnectionTethering.CONFIRMED)
        facts.set_fact(Fact.ALLOWED_CONNECTION_TYPES, frozenset({ConnectionType.CELLULAR}))

        assert policy.update_download_allowed(ec).value is True

    @pytest.mark.parametrize(
        "conn_type", [ConnectionType.BLUETOOTH, ConnectionType.UNKNOWN]
    )
    def test_other_connections_refused(self, policy, facts, ec, conn_type):
        """Test that Bluetooth and unknown connections are refused."""
        facts.set_fact(Fact.CONNECTION_TYPE, conn_type)

        assert policy.update_download_allowed(ec).value is False

    def test_missing_connection_type_fails(self, policy, facts, ec):
        """Test that an unknown connection yields FAILED."""
        facts.clear_fact(Fact.CONNECTION_TYPE)

        result = policy.update_download_allowed(ec)

        assert result.status is EvalStatus.FAILED
        assert "connection_type" in result.error

    def test_unexpected_connection_value_fails(self, policy, facts, ec):
        """Test that a malformed connection value yields FAILED."""
        facts.set_fact(Fact.CONNECTION_TYPE, "wifi")

        result = policy.update_download_allowed(ec)

        assert result.status is EvalStatus.FAILED
        assert "connection_type has unexpected value 'wifi'" in result.error
