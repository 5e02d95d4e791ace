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

"""Snapshot model for update policy decisions.

This module defines the immutable inputs and outputs of the policy
requests:

- UpdateCheckParams: outcome of update_check_allowed
- UpdateState: history of the current candidate payload, input to
  update_can_start
- UpdateDownloadParams: outcome of update_can_start; every field must be
  persisted by the caller and handed back in the next UpdateState
- DownloadError, ErrorCode: download failures recorded against mirror URLs

The caller owns persistence. UpdateState.with_download_params() folds one
cycle's decision into the next snapshot, and reset_for_new_payload()
produces the snapshot for a materially different payload.

Example:
    Driving two consecutive cycles:
        ```python
        state = UpdateState(first_seen=now, download_urls=("https://a/p",),
                            download_errors_max=3)
        result = policy.update_can_start(ec, state)
        if result.is_succeeded:
            state = state.with_download_params(result.value, now)
        ```
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum


class ErrorCode(Enum):
    """Error codes reported against a download attempt."""

    SUCCESS = "success"
    ERROR = "error"
    DOWNLOAD_TRANSFER_ERROR = "download_transfer_error"
    DOWNLOAD_WRITE_ERROR = "download_write_error"
    DOWNLOAD_STATE_INITIALIZATION_ERROR = "download_state_initialization_error"
    OMAHA_ERROR_IN_HTTP_RESPONSE = "omaha_error_in_http_response"
    PAYLOAD_HASH_MISMATCH_ERROR = "payload_hash_mismatch_error"
    PAYLOAD_SIZE_MISMATCH_ERROR = "payload_size_mismatch_error"
    PAYLOAD_MISMATCHED_TYPE = "payload_mismatched_type"
    DOWNLOAD_PAYLOAD_VERIFICATION_ERROR = "download_payload_verification_error"
    DOWNLOAD_PAYLOAD_PUBKEY_VERIFICATION_ERROR = (
        "download_payload_pubkey_verification_error"
    )
    SIGNED_DELTA_PAYLOAD_EXPECTED_ERROR = "signed_delta_payload_expected_error"
    DOWNLOAD_INVALID_METADATA_MAGIC_STRING = "download_invalid_metadata_magic_string"
    DOWNLOAD_SIGNATURE_MISSING_IN_MANIFEST = "download_signature_missing_in_manifest"
    DOWNLOAD_MANIFEST_PARSE_ERROR = "download_manifest_parse_error"
    DOWNLOAD_METADATA_SIGNATURE_ERROR = "download_metadata_signature_error"
    DOWNLOAD_METADATA_SIGNATURE_MISMATCH = "download_metadata_signature_mismatch"
    DOWNLOAD_OPERATION_HASH_MISMATCH = "download_operation_hash_mismatch"
    DOWNLOAD_OPERATION_EXECUTION_ERROR = "download_operation_execution_error"
    UNSUPPORTED_MAJOR_PAYLOAD_VERSION = "unsupported_major_payload_version"
    UNSUPPORTED_MINOR_PAYLOAD_VERSION = "unsupported_minor_payload_version"
    OMAHA_REQUEST_ERROR = "omaha_request_error"
    OMAHA_RESPONSE_HANDLER_ERROR = "omaha_response_handler_error"
    FILESYSTEM_COPIER_ERROR = "filesystem_copier_error"
    POSTINSTALL_RUNNER_ERROR = "postinstall_runner_error"
    INSTALL_DEVICE_OPEN_ERROR = "install_device_open_error"
    KERNEL_DEVICE_OPEN_ERROR = "kernel_device_open_error"
    USER_CANCELED = "user_canceled"


class ErrorImpact(Enum):
    """How a download error affects the URL it was reported against."""

    # The URL (or something between us and it) is bad: move on at once.
    URL_FATAL = "url_fatal"
    # Transient transfer trouble: charge one error to the URL.
    TRANSIENT = "transient"
    # Not about the URL at all.
    IGNORED = "ignored"


_URL_FATAL_ERRORS = frozenset(
    {
        ErrorCode.PAYLOAD_HASH_MISMATCH_ERROR,
        ErrorCode.PAYLOAD_SIZE_MISMATCH_ERROR,
        ErrorCode.PAYLOAD_MISMATCHED_TYPE,
        ErrorCode.DOWNLOAD_PAYLOAD_VERIFICATION_ERROR,
        ErrorCode.DOWNLOAD_PAYLOAD_PUBKEY_VERIFICATION_ERROR,
        ErrorCode.SIGNED_DELTA_PAYLOAD_EXPECTED_ERROR,
        ErrorCode.DOWNLOAD_INVALID_METADATA_MAGIC_STRING,
        ErrorCode.DOWNLOAD_SIGNATURE_MISSING_IN_MANIFEST,
        ErrorCode.DOWNLOAD_MANIFEST_PARSE_ERROR,
        ErrorCode.DOWNLOAD_METADATA_SIGNATURE_ERROR,
        ErrorCode.DOWNLOAD_METADATA_SIGNATURE_MISMATCH,
        ErrorCode.DOWNLOAD_OPERATION_HASH_MISMATCH,
        ErrorCode.DOWNLOAD_OPERATION_EXECUTION_ERROR,
        ErrorCode.UNSUPPORTED_MAJOR_PAYLOAD_VERSION,
        ErrorCode.UNSUPPORTED_MINOR_PAYLOAD_VERSION,
    }
)

_TRANSIENT_ERRORS = frozenset(
    {
        ErrorCode.ERROR,
        ErrorCode.DOWNLOAD_TRANSFER_ERROR,
        ErrorCode.DOWNLOAD_WRITE_ERROR,
        ErrorCode.DOWNLOAD_STATE_INITIALIZATION_ERROR,
        ErrorCode.OMAHA_ERROR_IN_HTTP_RESPONSE,
    }
)


def classify_error(code: ErrorCode) -> ErrorImpact:
    """Return how an error code is charged against its URL."""
    if code in _URL_FATAL_ERRORS:
        return ErrorImpact.URL_FATAL
    if code in _TRANSIENT_ERRORS:
        return ErrorImpact.TRANSIENT
    return ErrorImpact.IGNORED


@dataclass(frozen=True)
class DownloadError:
    """One failed download attempt.

    Attributes:
        url_idx: Index into UpdateState.download_urls that was attempted.
        error_code: What went wrong.
        timestamp: Wallclock time of the failure.
    """

    url_idx: int
    error_code: ErrorCode
    timestamp: datetime


@dataclass(frozen=True)
class UpdateCheckParams:
    """Outcome of update_check_allowed.

    Attributes:
        updates_enabled: Whether update checks are permitted at all.
        target_version_prefix: Version pin imposed by policy, or "".
        target_channel: Channel imposed by policy, or "".
        is_interactive: Whether the check was requested by a user.
    """

    updates_enabled: bool = True
    target_version_prefix: str = ""
    target_channel: str = ""
    is_interactive: bool = False


@dataclass(frozen=True)
class UpdateState:
    """History of the current candidate payload since it was first seen.

    Attributes:
        first_seen: When the payload was first (consecutively) offered.
        is_interactive: Value returned by the preceding update_check_allowed.
        is_delta_payload: Whether the payload is a delta.
        num_checks: Consecutive update checks that returned this payload.
        num_failures: Payload failures counted by the policy so far.
        failures_last_updated: When num_failures was last incremented.
        download_urls: Mirror URLs offered for the payload.
        download_errors_max: Error budget per URL.
        last_download_url_idx: URL chosen by the previous decision; -1 if
            the payload was never attempted.
        last_download_url_num_errors: Errors charged to that URL by the
            previous decision; 0 if never attempted.
        download_errors: Failed attempts for this payload, oldest first.
        backoff_expiry: Persisted backoff expiry, or None for no backoff.
        is_backoff_disabled: Whether the server disabled backoff.
        scatter_wait_period: Persisted scatter wait; zero if not drawn.
        scatter_check_threshold: Persisted check threshold; zero if not drawn.
        scatter_wait_period_max: Largest wait the server allows.
        scatter_check_threshold_min: Smallest check threshold to draw.
        scatter_check_threshold_max: Largest check threshold to draw.
    """

    first_seen: datetime
    is_interactive: bool = False
    is_delta_payload: bool = False
    num_checks: int = 0
    num_failures: int = 0
    failures_last_updated: datetime | None = None
    download_urls: tuple[str, ...] = ()
    download_errors_max: int = 0
    last_download_url_idx: int = -1
    last_download_url_num_errors: int = 0
    download_errors: tuple[DownloadError, ...] = ()
    backoff_expiry: datetime | None = None
    is_backoff_disabled: bool = False
    scatter_wait_period: timedelta = field(default_factory=timedelta)
    scatter_check_threshold: int = 0
    scatter_wait_period_max: timedelta = field(default_factory=timedelta)
    scatter_check_threshold_min: int = 0
    scatter_check_threshold_max: int = 0

    def __post_init__(self) -> None:
        # Accept lists from callers but store immutable tuples.
        object.__setattr__(self, "download_urls", tuple(self.download_urls))
        object.__setattr__(self, "download_errors", tuple(self.download_errors))

    def reset_for_new_payload(
        self,
        first_seen: datetime,
        download_urls: tuple[str, ...] | list[str],
        **server_params: object,
    ) -> UpdateState:
        """Return the snapshot for a materially different payload.

        Failure history, URL bookkeeping, check count, backoff and the
        scatter draw are all cleared. Server-advertised parameters such as
        download_errors_max or the scatter bounds may be replaced through
        keyword arguments.
        """
        return replace(
            self,
            first_seen=first_seen,
            download_urls=tuple(download_urls),
            num_checks=0,
            num_failures=0,
            failures_last_updated=None,
            last_download_url_idx=-1,
            last_download_url_num_errors=0,
            download_errors=(),
            backoff_expiry=None,
            scatter_wait_period=timedelta(),
            scatter_check_threshold=0,
            **server_params,
        )

    def with_download_params(
        self, params: UpdateDownloadParams, now: datetime
    ) -> UpdateState:
        """Fold a successful update_can_start decision into the next snapshot.

        Args:
            params: The value of a SUCCEEDED update_can_start result.
            now: When the caller persists the decision.

        Returns:
            The snapshot to hand to the next update_can_start call.
        """
        next_state = replace(
            self,
            last_download_url_idx=params.download_url_idx,
            last_download_url_num_errors=params.download_url_num_errors,
            backoff_expiry=params.backoff_expiry,
            scatter_wait_period=params.scatter_wait_period,
            scatter_check_threshold=params.scatter_check_threshold,
        )
        if params.do_increment_failures:
            next_state = replace(
                next_state,
                num_failures=self.num_failures + 1,
                failures_last_updated=now,
                download_errors=(),
            )
        return next_state


def _is_aware(value: object) -> bool:
    return isinstance(value, datetime) and value.utcoffset() is not None


def validate_update_state(state: UpdateState) -> list[str]:
    """List contradictions in an update state snapshot.

    Returns:
        Human-readable problems; empty if the snapshot is consistent.
    """
    errors: list[str] = []
    num_urls = len(state.download_urls)

    for name in (
        "num_checks",
        "num_failures",
        "download_errors_max",
        "last_download_url_num_errors",
        "scatter_check_threshold",
        "scatter_check_threshold_min",
        "scatter_check_threshold_max",
    ):
        if getattr(state, name) < 0:
            errors.append(f"{name} must not be negative")

    if not -1 <= state.last_download_url_idx < num_urls:
        errors.append(
            f"last_download_url_idx {state.last_download_url_idx} is out of "
            f"range for {num_urls} URL(s)"
        )

    for name in ("first_seen", "failures_last_updated", "backoff_expiry"):
        value = getattr(state, name)
        if value is not None and not _is_aware(value):
            errors.append(f"{name} must be a timezone-aware datetime")

    if state.scatter_wait_period < timedelta():
        errors.append("scatter_wait_period must not be negative")
    if state.scatter_wait_period_max < timedelta():
        errors.append("scatter_wait_period_max must not be negative")
    if state.scatter_check_threshold_min > state.scatter_check_threshold_max:
        errors.append(
            "scatter_check_threshold_min exceeds scatter_check_threshold_max"
        )

    for err in state.download_errors:
        if not 0 <= err.url_idx < num_urls:
            errors.append(
                f"download error references URL index {err.url_idx}, "
                f"but only {num_urls} URL(s) are known"
            )
        if not _is_aware(err.timestamp):
            errors.append(
                f"download error for URL index {err.url_idx} has a naive timestamp"
            )

    return errors


class UpdateCannotStartReason(Enum):
    """Why update_can_start refused to start a download."""

    UNDEFINED = "undefined"
    CHECK_NOT_DUE = "check_not_due"
    SCATTERING_IN_EFFECT = "scattering_in_effect"
    BACKOFF_IN_EFFECT = "backoff_in_effect"
    NO_USABLE_SOURCE = "no_usable_source"


@dataclass(frozen=True)
class UpdateDownloadParams:
    """Outcome of update_can_start.

    Every field is persisted verbatim by the caller and fed back through
    UpdateState on the next call.

    Attributes:
        update_can_start: Whether the download may proceed.
        cannot_start_reason: Why not, when update_can_start is False.
        download_url_idx: Mirror URL to use, or -1 if none (P2P may still
            be available).
        download_url_num_errors: Errors charged to that URL so far.
        p2p_allowed: Whether peer-assisted transfer may be used.
        do_increment_failures: Whether the caller must count a payload
            failure.
        backoff_expiry: Backoff expiry to persist, or None.
        scatter_wait_period: Scatter wait period to persist.
        scatter_check_threshold: Scatter check threshold to persist.
    """

    update_can_start: bool
    cannot_start_reason: UpdateCannotStartReason = UpdateCannotStartReason.UNDEFINED
    download_url_idx: int = -1
    download_url_num_errors: int = 0
    p2p_allowed: bool = False
    do_increment_failures: bool = False
    backoff_expiry: datetime | None = None
    scatter_wait_period: timedelta = field(default_factory=timedelta)
    scatter_check_threshold: int = 0
