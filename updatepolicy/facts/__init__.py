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

"""Facts consumed by update policies.

This package defines the named facts a policy may read and the interfaces
through which the embedding application supplies them.

Public API:

- Fact, ConnectionType, ConnectionTethering, UpdateRequestStatus: enums
- FactProvider, FactNotifier, Clock: protocols
- StaticFactProvider, SystemClock, FixedClock: in-memory implementations
"""

from .provider import (
    Clock,
    FactNotifier,
    FactProvider,
    FixedClock,
    StaticFactProvider,
    SystemClock,
)
from .variables import ConnectionTethering, ConnectionType, Fact, UpdateRequestStatus

__all__ = [
    "Clock",
    "ConnectionTethering",
    "ConnectionType",
    "Fact",
    "FactNotifier",
    "FactProvider",
    "FixedClock",
    "StaticFactProvider",
    "SystemClock",
    "UpdateRequestStatus",
]
