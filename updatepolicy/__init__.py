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

"""updatepolicy - decision core for fleet software updates

A Python library that decides, for a client-side update orchestrator,
whether to check for updates, whether a payload download may begin and
from which source, and whether the current network permits downloading.

updatepolicy provides:

- Rollout scattering with stable, persisted random draws
- Exponential backoff with jitter after repeated payload failures
- Mirror URL rotation with per-URL error budgets
- Peer-assisted (P2P) fallback when mirrors are exhausted
- Metered-network gating driven by device policy
- A tri-state result contract (succeeded / failed / ask again later)
- YAML-based policy configuration

Quick Start:

    from updatepolicy import UpdateManager, UpdateState
    from updatepolicy.facts import StaticFactProvider

    manager = UpdateManager(StaticFactProvider({...}))
    result = manager.update_can_start(UpdateState(first_seen=now, ...))

For more details, see the individual module docstrings.
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "Decision core for fleet software-update orchestration"

# Re-export commonly used names for convenience
from updatepolicy.config import PolicyConfig, load_policy_config
from updatepolicy.evaluation import EvaluationContext
from updatepolicy.exceptions import (
    ConfigError,
    FactUnavailableError,
    InvalidStateError,
    PolicyError,
    UpdatePolicyError,
)
from updatepolicy.manager import UpdateManager
from updatepolicy.policy import (
    DefaultPolicy,
    DownloadError,
    ErrorCode,
    FleetPolicy,
    Policy,
    PolicyRequest,
    UpdateCannotStartReason,
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
    get_policy,
)
from updatepolicy.results import EvalResult, EvalStatus

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "ConfigError",
    "DefaultPolicy",
    "DownloadError",
    "ErrorCode",
    "EvalResult",
    "EvalStatus",
    "EvaluationContext",
    "FactUnavailableError",
    "FleetPolicy",
    "InvalidStateError",
    "Policy",
    "PolicyConfig",
    "PolicyError",
    "PolicyRequest",
    "UpdateCannotStartReason",
    "UpdateCheckParams",
    "UpdateDownloadParams",
    "UpdateManager",
    "UpdatePolicyError",
    "UpdateState",
    "get_policy",
    "load_policy_config",
]
