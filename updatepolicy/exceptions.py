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

"""Exception hierarchy for updatepolicy.

This module defines a custom exception hierarchy that allows library users
to distinguish between different types of errors. All exceptions inherit from
UpdatePolicyError, allowing users to catch all updatepolicy errors with a
single except clause if needed.

Decision operations never raise these to their callers. PolicyError and its
subclasses are converted to a FAILED evaluation result at the policy
boundary; ConfigError propagates from configuration loading and policy
construction.

Example:
    Catching configuration errors:
        ```python
        from updatepolicy.config import load_policy_config
        from updatepolicy.exceptions import ConfigError

        try:
            config = load_policy_config(Path("policy.yaml"))
        except ConfigError as e:
            print(f"Configuration error: {e}")
        ```
"""

from __future__ import annotations

__all__ = [
    "UpdatePolicyError",
    "ConfigError",
    "PolicyError",
    "FactUnavailableError",
    "InvalidStateError",
]


class UpdatePolicyError(Exception):
    """Base exception for all updatepolicy errors.

    All updatepolicy-specific exceptions inherit from this class, allowing
    users to catch all of them with a single except clause if needed.
    """

    pass


class ConfigError(UpdatePolicyError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parsing (syntax errors, invalid structure)
    - Unknown or mistyped configuration keys
    - Unknown policy names in the registry
    """

    pass


class PolicyError(UpdatePolicyError):
    """Raised when a policy evaluation cannot reach a decision.

    Policies catch this (and its subclasses) and report a FAILED result
    carrying the message, so it never escapes a decision operation.
    """

    pass


class FactUnavailableError(PolicyError):
    """Raised when a fact required by a decision cannot be obtained.

    Example:
        Reading a fact that was never published:
            ```python
            provider = StaticFactProvider()
            provider.get_fact(Fact.CONNECTION_TYPE)  # raises
            ```
    """

    def __init__(self, fact: object, reason: str | None = None) -> None:
        self.fact = fact
        message = f"fact {fact} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidStateError(PolicyError):
    """Raised when an UpdateState snapshot is contradictory.

    Attributes:
        errors: Individual problems found in the snapshot.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("invalid update state: " + "; ".join(self.errors))
