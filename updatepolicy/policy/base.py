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

"""Policy interface, request names and policy registry.

This module defines the foundational components of the policy system:

- PolicyRequest: enumeration of the decision operations
- POLICY_REQUEST_LABELS: static table from request to its logging label
- Policy: abstract base class every implementation derives from
- Policy registry: register_policy() and get_policy()

Every decision operation is synchronous and side-effect free: it reads
facts through an EvaluationContext and returns an EvalResult. Policy
implementations may raise PolicyError (or a subclass) from anywhere in
their decision code; Policy.evaluate() converts it to a FAILED result, so
callers never see an exception.

Request labels are looked up from an explicit table. Adding a member to
PolicyRequest without adding its label and handler fails at import time.

Example:
    Implementing and registering a custom policy:
        ```python
        from updatepolicy.policy.base import Policy, register_policy

        class LabPolicy(Policy):
            def _update_check_allowed(self, ec):
                ...

            def _update_can_start(self, ec, update_state):
                ...

            def _update_download_allowed(self, ec):
                ...

        register_policy("lab", LabPolicy)
        ```
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
import random
from typing import Any

from updatepolicy.config import PolicyConfig
from updatepolicy.evaluation import EvaluationContext
from updatepolicy.exceptions import ConfigError, PolicyError
from updatepolicy.logging import Logger, get_global_logger
from updatepolicy.policy.models import (
    UpdateCheckParams,
    UpdateDownloadParams,
    UpdateState,
)
from updatepolicy.results import EvalResult

# -------------------------------
# Request names
# -------------------------------


class PolicyRequest(Enum):
    """The decision operations a policy answers."""

    UPDATE_CHECK_ALLOWED = "update_check_allowed"
    UPDATE_CAN_START = "update_can_start"
    UPDATE_DOWNLOAD_ALLOWED = "update_download_allowed"


POLICY_REQUEST_LABELS: dict[PolicyRequest, str] = {
    PolicyRequest.UPDATE_CHECK_ALLOWED: "UpdateCheckAllowed",
    PolicyRequest.UPDATE_CAN_START: "UpdateCanStart",
    PolicyRequest.UPDATE_DOWNLOAD_ALLOWED: "UpdateDownloadAllowed",
}

_REQUEST_HANDLERS: dict[PolicyRequest, str] = {
    PolicyRequest.UPDATE_CHECK_ALLOWED: "_update_check_allowed",
    PolicyRequest.UPDATE_CAN_START: "_update_can_start",
    PolicyRequest.UPDATE_DOWNLOAD_ALLOWED: "_update_download_allowed",
}


def _check_request_tables() -> None:
    for table_name, table in (
        ("POLICY_REQUEST_LABELS", POLICY_REQUEST_LABELS),
        ("_REQUEST_HANDLERS", _REQUEST_HANDLERS),
    ):
        missing = [request.name for request in PolicyRequest if request not in table]
        if missing:
            raise RuntimeError(
                f"{table_name} has no entry for: {', '.join(missing)}"
            )


_check_request_tables()


def policy_request_name(policy: Policy, request: PolicyRequest) -> str:
    """Return the label of a request made to a policy, for logging.

    Args:
        policy: The policy being asked.
        request: The request being made.

    Returns:
        A label of the form "<PolicyName>::<RequestLabel>".

    Raises:
        PolicyError: If request has no label.
    """
    try:
        label = POLICY_REQUEST_LABELS[request]
    except KeyError as err:
        raise PolicyError(f"No label for policy request {request!r}") from err
    return f"{policy.policy_name}::{label}"


# -------------------------------
# Policy base class
# -------------------------------


class Policy(ABC):
    """Base class for update policies.

    Subclasses implement the three underscore-prefixed decision hooks; the
    public methods dispatch through evaluate(), which maps PolicyError to a
    FAILED result.

    Attributes:
        config: Validated policy configuration.
        rng: Random source for scatter draws and backoff jitter.
        logger: Destination for decision diagnostics.
    """

    def __init__(
        self,
        config: PolicyConfig | None = None,
        *,
        rng: random.Random | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or PolicyConfig()
        self.rng = rng or random.Random()
        self.logger = logger or get_global_logger()

    @property
    def policy_name(self) -> str:
        return type(self).__name__

    def evaluate(
        self, request: PolicyRequest, ec: EvaluationContext, *args: Any
    ) -> EvalResult[Any]:
        """Run one decision operation.

        Args:
            request: Which decision to make.
            ec: Fact snapshot for this evaluation.
            *args: Request-specific arguments (an UpdateState for
                UPDATE_CAN_START).

        Returns:
            The decision. Never raises for PolicyError conditions.
        """
        handler = getattr(self, _REQUEST_HANDLERS[request])
        try:
            return handler(ec, *args)
        except PolicyError as err:
            return EvalResult.failed(str(err))

    def update_check_allowed(
        self, ec: EvaluationContext
    ) -> EvalResult[UpdateCheckParams]:
        """Decide whether an update check may be made."""
        return self.evaluate(PolicyRequest.UPDATE_CHECK_ALLOWED, ec)

    def update_can_start(
        self, ec: EvaluationContext, update_state: UpdateState
    ) -> EvalResult[UpdateDownloadParams]:
        """Decide whether (and from where) a payload download may start.

        Returns SUCCEEDED when the update can start or when it must be
        refused with values that need persisting, and ASK_AGAIN_LATER when
        it must wait but nothing needs persisting.
        """
        return self.evaluate(PolicyRequest.UPDATE_CAN_START, ec, update_state)

    def update_download_allowed(self, ec: EvaluationContext) -> EvalResult[bool]:
        """Decide whether the current connection may carry update traffic."""
        return self.evaluate(PolicyRequest.UPDATE_DOWNLOAD_ALLOWED, ec)

    @abstractmethod
    def _update_check_allowed(
        self, ec: EvaluationContext
    ) -> EvalResult[UpdateCheckParams]: ...

    @abstractmethod
    def _update_can_start(
        self, ec: EvaluationContext, update_state: UpdateState
    ) -> EvalResult[UpdateDownloadParams]: ...

    @abstractmethod
    def _update_download_allowed(self, ec: EvaluationContext) -> EvalResult[bool]: ...


# -------------------------------
# Policy Registry
# -------------------------------

_POLICY_REGISTRY: dict[str, type[Policy]] = {}


def register_policy(name: str, policy_class: type[Policy]) -> None:
    """Register a policy implementation by name in the global registry.

    Registering the same name twice overwrites the previous registration
    (allows substitution in tests).

    Args:
        name: Policy name as used in the configuration "policy" key.
        policy_class: The Policy subclass to register.
    """
    _POLICY_REGISTRY[name] = policy_class


def get_policy(
    name: str,
    *,
    config: PolicyConfig | None = None,
    rng: random.Random | None = None,
    logger: Logger | None = None,
) -> Policy:
    """Instantiate a registered policy by name.

    Args:
        name: Registered policy name (e.g., "fleet"). Case-sensitive.
        config: Configuration handed to the policy.
        rng: Random source handed to the policy.
        logger: Logger handed to the policy.

    Returns:
        A new policy instance.

    Raises:
        ConfigError: If the name is not registered. The message lists the
            available policies.
    """
    if name not in _POLICY_REGISTRY:
        available = ", ".join(sorted(_POLICY_REGISTRY))
        raise ConfigError(
            f"Unknown update policy: {name!r}. Available: {available or '(none)'}"
        )
    return _POLICY_REGISTRY[name](config, rng=rng, logger=logger)
