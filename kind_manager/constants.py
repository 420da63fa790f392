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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load pinned tool versions and images from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- kind --
KIND_API_VERSION = "kind.x-k8s.io/v1alpha4"
KIND_CONTEXT_PREFIX = "kind-"
NODE_IMAGE_PRESETS: dict[str, str] = dep_value("node_images", default={})

# -- Registry --
REGISTRY_CONTAINER_PORT = 5000
REGISTRY_RESTART_POLICY = "always"
CONTAINERD_CERTS_DIR = "/etc/containerd/certs.d"
CONTAINERD_HOSTS_FILE = "hosts.toml"
NODE_HOSTS_FILE = "/etc/hosts"
HOST_HOSTS_FILE = Path("/etc/hosts")

# -- Load-balancer sidecar --
SIDECAR_CONTAINER_NAME = "cloud-provider-kind"
SIDECAR_IMAGE = dep_value("cloud_provider_kind", "image")
SIDECAR_SOCKET_TARGET = "/var/run/docker.sock"
DOCKER_SOCKET_PATH = "/var/run/docker.sock"
PODMAN_ROOTFUL_SOCKET_PATH = "/run/podman/podman.sock"
PODMAN_ROOTLESS_SOCKET_TEMPLATE = "/run/user/{uid}/podman/podman.sock"

# -- Runtime daemon trust files --
DOCKER_DAEMON_CONFIG = Path("/etc/docker/daemon.json")
PODMAN_REGISTRIES_CONFIG = Path("/etc/containers/registries.conf")

# -- Kubernetes --
ADMIN_BINDING_NAME = "add-on-cluster-admin"
ADMIN_BINDING_ROLE = "cluster-admin"
ADMIN_BINDING_SERVICE_ACCOUNT = "kube-system:default"
DEFAULT_NODE_LABEL = "rack-key=zone"

# -- Host tuning --
INOTIFY_MAX_USER_WATCHES = 655360
INOTIFY_MAX_USER_INSTANCES = 1280
INOTIFY_SYSCTL_CONF = Path("/etc/sysctl.d/99-kind-inotify.conf")
IPTABLES_MODULES = ("ip_tables", "ip6_tables")
IPV6_HOST_PREFIX_LEN = 64
INSTALL_DIR = Path("/usr/local/bin")

# -- Polling --
CLUSTER_READY_TIMEOUT_SECONDS = 300
CLUSTER_READY_POLL_INTERVAL_SECONDS = 5
REGISTRY_READY_TIMEOUT_SECONDS = 60
REGISTRY_READY_POLL_INTERVAL_SECONDS = 2
REGISTRY_HEALTH_REQUEST_TIMEOUT_SECONDS = 2
KUBECTL_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 120

# -- Defaults --
DEFAULT_KIND_VERSION = dep_value("kind", "version", default="v0.29.0")
DEFAULT_CLOUD_PROVIDER_VERSION = dep_value("cloud_provider_kind", "version", default="v0.6.0")
DEFAULT_NODE_IMAGE = "latest"
DEFAULT_CLUSTER_NAME = "kind-cluster"
DEFAULT_CONTROL_NODES = 1
DEFAULT_WORKER_NODES = 3
DEFAULT_REGISTRY_NAME = "kind-registry"
DEFAULT_REGISTRY_PORT = 5001
DEFAULT_REGISTRY_IMAGE = dep_value("registry", "image", default="registry:2")
DEFAULT_NETWORK_NAME = "kind"
DEFAULT_IPV6_ULA_PREFIX = "fd01:2345:6789"
DEFAULT_IPV6_REGISTRY_DNS = "myregistry.local"
