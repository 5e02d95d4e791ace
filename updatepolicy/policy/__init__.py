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

"""Update policies for updatepolicy.

This package provides the policy interface and its implementations. A
policy answers three requests about the current update:

- update_check_allowed: may the device poll the update server?
- update_can_start: may a payload download start, and from which source?
- update_download_allowed: may the current network carry update traffic?

Available Policies:
    fleet : FleetPolicy
        Scattering, backoff and mirror rotation for managed fleets.
    default : DefaultPolicy
        Permissive policy for unmanaged devices.

Policies self-register on import and are looked up by the configuration's
"policy" key.

Example:
    from updatepolicy.config import load_policy_config
    from updatepolicy.policy import get_policy

    config = load_policy_config()
    policy = get_policy(config.policy, config=config)
"""

# Import policy modules to trigger self-registration
from . import (
    default,  # noqa: F401
    fleet,  # noqa: F401
)
from .base import (
    POLICY_REQUEST_LABELS,
    Policy,
    PolicyRequest,
    get_policy,
    policy_request_name,
    register_policy,
)
from .default import DefaultPolicy
from .fleet import FleetPolicy
from .models import (
    DownloadError,
    ErrorCode,
    ErrorImpact,
    UpdateCannotStartReason,
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
    classify_error,
    validate_update_state,
)

__all__ = [
    "POLICY_REQUEST_LABELS",
    "DefaultPolicy",
    "DownloadError",
    "ErrorCode",
    "ErrorImpact",
    "FleetPolicy",
    "Policy",
    "PolicyRequest",
    "UpdateCannotStartReason",
    "UpdateCheckParams",
    "UpdateDownloadParams",
    "UpdateState",
    "classify_error",
    "get_policy",
    "policy_request_name",
    "register_policy",
    "validate_update_state",
]
