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

"""Command-line options shared by the subcommands, and their mapping onto KindConfig."""

from __future__ import annotations

import logging

import typer

from kind_manager.config import KindConfig, load_config

NAME = typer.Option(None, "--name", "-n", help="Cluster name (overrides KIND_CLUSTER_NAME)")
CONTROL_PLANES = typer.Option(None, "--control-planes", help="Control-plane nodes (overrides CONTROL_NODES)")
WORKERS = typer.Option(None, "--workers", "-w", help="Worker nodes (overrides WORKER_NODES)")
IMAGE = typer.Option(
    None, "--image", help="Node image, or the 'latest'/'oldest' preset (overrides KIND_NODE_IMAGE)")
IP_FAMILY = typer.Option(None, "--ip-family", help="ipv4, ipv6, or dual (overrides IP_FAMILY)")
DOCKER_CMD = typer.Option(None, "--docker-cmd", help="docker or podman (overrides DOCKER_CMD)")
REGISTRY_NAME = typer.Option(None, "--registry-name", help="Registry container name (overrides REGISTRY_NAME)")
REGISTRY_PORT = typer.Option(None, "--registry-port", help="Registry host port (overrides REGISTRY_PORT)")
NO_REGISTRY = typer.Option(False, "--no-registry", help="Do not manage the local registry")
NO_CLOUD_PROVIDER = typer.Option(False, "--no-cloud-provider", help="Do not manage cloud-provider-kind")
NO_NODE_LABELS = typer.Option(False, "--no-node-labels", help="Skip node labelling")
NO_ADMIN_BINDING = typer.Option(False, "--no-admin-binding", help="Skip the cluster-admin binding")
FORCE = typer.Option(False, "--force", "-f", help="Recreate a cluster that exists but is not ready")
CONFIGURE_INSECURE = typer.Option(
    False, "--configure-insecure", help="Trust the registry in the runtime daemon configuration")
DEBUG = typer.Option(False, "--debug", help="Enable debug logging")

# Negative flags switch a feature off; positive flags switch it on. Unset flags defer to env.
_DISABLE_FLAGS = {
    "no_registry": "enable_registry",
    "no_cloud_provider": "enable_cloud_provider",
    "no_node_labels": "enable_node_labels",
    "no_admin_binding": "enable_admin_binding",
}
_ENABLE_FLAGS = {
    "force": "force_recreate",
    "configure_insecure": "configure_insecure_registry",
    "debug": "debug",
}
_RENAMED = {
    "name": "kind_cluster_name",
    "control_planes": "control_nodes",
    "workers": "worker_nodes",
    "image": "kind_node_image",
}


def resolve_config(**cli_values) -> KindConfig:
    """Translate CLI values into KindConfig overrides and build the config.

    Args:
        **cli_values: Option values keyed by parameter name; None or False
            means the option was not given.

    Returns:
        The resolved configuration (CLI > environment > defaults).
    """
    overrides: dict = {}
    for key, value in cli_values.items():
        if key in _DISABLE_FLAGS:
            if value:
                overrides[_DISABLE_FLAGS[key]] = False
        elif key in _ENABLE_FLAGS:
            if value:
                overrides[_ENABLE_FLAGS[key]] = True
        elif value is not None:
            overrides[_RENAMED.get(key, key)] = value
    cfg = load_config(**overrides)
    configure_logging(cfg.debug)
    return cfg


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
