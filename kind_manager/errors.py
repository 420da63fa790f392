# /*
# Copyright 2026 The Grove Authors.
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
# */

"""Exception types and reconciliation outcomes."""

from __future__ import annotations

from enum import Enum


class KindManagerError(RuntimeError):
    """Base class for fatal errors; the CLI maps these to exit code 1."""


class ConfigurationError(KindManagerError):
    """Invalid input detected before any mutation was attempted."""


class PreconditionError(KindManagerError):
    """Current state forbids the requested action without operator intervention."""


class ReadinessTimeoutError(KindManagerError):
    """A resource did not reach its desired state within the polling budget."""


class CommandFailedError(KindManagerError):
    """An external tool exited non-zero during a mutating call."""


class Outcome(str, Enum):
    """What a reconciliation step did to reach the desired state."""

    NOOP = "noop"
    CREATED = "created"
    STARTED = "started"
    REMOVED = "removed"
    WARNED = "warned"
    FAILED = "failed"
