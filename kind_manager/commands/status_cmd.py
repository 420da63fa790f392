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

"""Status subcommand."""

from __future__ import annotations

from kind_manager.commands import options
from kind_manager.orchestrator import display_status
from kind_manager.runtime import RuntimeBackend


def status(
    name: str | None = options.NAME,
    docker_cmd: RuntimeBackend | None = options.DOCKER_CMD,
    registry_name: str | None = options.REGISTRY_NAME,
    registry_port: int | None = options.REGISTRY_PORT,
    debug: bool = options.DEBUG,
) -> None:
    """Show the state of the cluster, registry, load balancer, and network."""
    cfg = options.resolve_config(
        name=name,
        docker_cmd=docker_cmd,
        registry_name=registry_name,
        registry_port=registry_port,
        debug=debug,
    )
    display_status(cfg)
