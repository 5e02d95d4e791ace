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

"""Logging for policy decisions.

Every line is ``[PREFIX] message``. Verbose output covers decision
outcomes, URL advancement and failures; debug adds deferred evaluations
and scatter and URL details. Policies and the update manager take a
logger argument and fall back to the process-wide one, which is silent
until set_global_logger() is called.
"""

from __future__ import annotations

from typing import Protocol


class Logger(Protocol):
    """Anything with verbose() and debug() taking a prefix and a message."""

    def verbose(self, prefix: str, message: str) -> None: ...

    def debug(self, prefix: str, message: str) -> None: ...


class DefaultLogger:
    """Prints to stdout. Debug implies verbose."""

    def __init__(self, verbose: bool = False, debug: bool = False) -> None:
        self._verbose = verbose or debug
        self._debug = debug

    def verbose(self, prefix: str, message: str) -> None:
        if self._verbose:
            print(f"[{prefix}] {message}")

    def debug(self, prefix: str, message: str) -> None:
        if self._debug:
            print(f"[{prefix}] {message}")


class SilentLogger:
    """Logger that suppresses all output."""

    def verbose(self, prefix: str, message: str) -> None:
        pass

    def debug(self, prefix: str, message: str) -> None:
        pass


_global_logger: Logger = SilentLogger()


def get_logger(verbose: bool = False, debug: bool = False) -> Logger:
    return DefaultLogger(verbose=verbose, debug=debug)


def get_global_logger() -> Logger:
    return _global_logger


def set_global_logger(logger: Logger) -> None:
    """Replace the logger used by policies and managers built without one."""
    global _global_logger
    _global_logger = logger
