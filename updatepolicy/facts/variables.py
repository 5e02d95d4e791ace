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

"""Named facts consumed by update policies.

A fact is a read-only, point-in-time value supplied by the embedding
application: build properties, enrollment state, device policy settings and
the current network connection. Policies never mutate facts; they read them
through an EvaluationContext, which snapshots each value once per
evaluation.

Device-policy facts are optional. A policy that finds one unavailable
treats the setting as unset. Facts marked required below turn a decision
into FAILED when missing.

Facts:

| Fact | Value type | Required by |
|---|---|---|
| IS_OFFICIAL_BUILD | bool | update_check_allowed |
| IS_OOBE_COMPLETE | bool | - |
| DEVICE_POLICY_LOADED | bool | - |
| UPDATES_DISABLED | bool | - |
| TARGET_VERSION_PREFIX | str | - |
| RELEASE_CHANNEL | str | - |
| RELEASE_CHANNEL_DELEGATED | bool | - |
| FORCED_UPDATE_REQUESTED | UpdateRequestStatus | - |
| SCATTER_FACTOR | timedelta | - |
| P2P_ENABLED | bool | - |
| HTTP_DOWNLOADS_ENABLED | bool | - |
| ALLOWED_CONNECTION_TYPES | frozenset[ConnectionType] | - |
| CONNECTION_TYPE | ConnectionType | update_download_allowed |
| CONNECTION_TETHERING | ConnectionTethering | - |
"""

from __future__ import annotations

from enum import Enum


class Fact(Enum):
    """Identifiers of the facts a policy may read."""

    IS_OFFICIAL_BUILD = "is_official_build"
    IS_OOBE_COMPLETE = "is_oobe_complete"
    DEVICE_POLICY_LOADED = "device_policy_loaded"
    UPDATES_DISABLED = "updates_disabled"
    TARGET_VERSION_PREFIX = "target_version_prefix"
    RELEASE_CHANNEL = "release_channel"
    RELEASE_CHANNEL_DELEGATED = "release_channel_delegated"
    FORCED_UPDATE_REQUESTED = "forced_update_requested"
    SCATTER_FACTOR = "scatter_factor"
    P2P_ENABLED = "p2p_enabled"
    HTTP_DOWNLOADS_ENABLED = "http_downloads_enabled"
    ALLOWED_CONNECTION_TYPES = "allowed_connection_types"
    CONNECTION_TYPE = "connection_type"
    CONNECTION_TETHERING = "connection_tethering"

    def __str__(self) -> str:
        return self.value


class ConnectionType(Enum):
    """Class of the current network connection."""

    ETHERNET = "ethernet"
    WIFI = "wifi"
    WIMAX = "wimax"
    BLUETOOTH = "bluetooth"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"


class ConnectionTethering(Enum):
    """Whether the current connection is tethered through a metered device."""

    NOT_DETECTED = "not_detected"
    SUSPECTED = "suspected"
    CONFIRMED = "confirmed"
    UNKNOWN = "unknown"


class UpdateRequestStatus(Enum):
    """Update request signaled by the caller outside the periodic schedule."""

    NONE = "none"
    INTERACTIVE = "interactive"
    PERIODIC = "periodic"
