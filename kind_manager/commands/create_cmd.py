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

"""Create subcommand."""

from __future__ import annotations

from kind_manager.commands import options
from kind_manager.config import IpFamily
from kind_manager.orchestrator import run_create
from kind_manager.runtime import RuntimeBackend


def create(
    name: str | None = options.NAME,
    control_planes: int | None = options.CONTROL_PLANES,
    workers: int | None = options.WORKERS,
    image: str | None = options.IMAGE,
    ip_family: IpFamily | None = options.IP_FAMILY,
    docker_cmd: RuntimeBackend | None = options.DOCKER_CMD,
    registry_name: str | None = options.REGISTRY_NAME,
    registry_port: int | None = options.REGISTRY_PORT,
    no_registry: bool = options.NO_REGISTRY,
    no_cloud_provider: bool = options.NO_CLOUD_PROVIDER,
    no_node_labels: bool = options.NO_NODE_LABELS,
    no_admin_binding: bool = options.NO_ADMIN_BINDING,
    force: bool = options.FORCE,
    configure_insecure: bool = options.CONFIGURE_INSECURE,
    debug: bool = options.DEBUG,
) -> None:
    """Create the cluster, network, registry, and load balancer (default command).

    Every step is idempotent: existing resources are detected and reused.
    """
    cfg = options.resolve_config(
        name=name,
        control_planes=control_planes,
        workers=workers,
        image=image,
        ip_family=ip_family,
        docker_cmd=docker_cmd,
        registry_name=registry_name,
        registry_port=registry_port,
        no_registry=no_registry,
        no_cloud_provider=no_cloud_provider,
        no_node_labels=no_node_labels,
        no_admin_binding=no_admin_binding,
        force=force,
        configure_insecure=configure_insecure,
        debug=debug,
    )
    run_create(cfg)
