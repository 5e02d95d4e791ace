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

"""Configuration loading for updatepolicy.

Public API:

- load_policy_config: Load defaults + YAML file + overrides
- config_from_dict: Validate an already-merged mapping
- PolicyConfig: The validated, frozen configuration
- DEFAULT_CONFIG: Built-in defaults

Example:
    from updatepolicy.config import load_policy_config

    config = load_policy_config()
    print(config.policy)  # "fleet"
"""

from .loader import DEFAULT_CONFIG, PolicyConfig, config_from_dict, load_policy_config

__all__ = ["DEFAULT_CONFIG", "PolicyConfig", "config_from_dict", "load_policy_config"]
