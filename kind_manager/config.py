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

"""Configuration classes, resource descriptors, and config display."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from kind_manager import console
from kind_manager.address import ula_address
from kind_manager.constants import (
    DEFAULT_CLOUD_PROVIDER_VERSION,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_CONTROL_NODES,
    DEFAULT_IPV6_REGISTRY_DNS,
    DEFAULT_IPV6_ULA_PREFIX,
    DEFAULT_KIND_VERSION,
    DEFAULT_NETWORK_NAME,
    DEFAULT_NODE_IMAGE,
    DEFAULT_REGISTRY_IMAGE,
    DEFAULT_REGISTRY_NAME,
    DEFAULT_REGISTRY_PORT,
    DEFAULT_WORKER_NODES,
    KIND_CONTEXT_PREFIX,
    NODE_IMAGE_PRESETS,
    SIDECAR_CONTAINER_NAME,
)
from kind_manager.errors import ConfigurationError
from kind_manager.runtime import RuntimeBackend


class IpFamily(str, Enum):
    """Cluster pod/service address family."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"
    DUAL = "dual"

    @property
    def wants_ipv6(self) -> bool:
        return self is not IpFamily.IPV4


def resolve_node_image(image: str) -> str:
    """Expand the ``latest``/``oldest`` presets into pinned node image references."""
    return NODE_IMAGE_PRESETS.get(image, image)


# ============================================================================
# Configuration classes
# ============================================================================

class KindConfig(BaseSettings):
    """Environment configuration, auto-loaded from environment variables.

    Field names match the environment variable names case-insensitively
    (``kind_cluster_name`` reads ``KIND_CLUSTER_NAME``). Keyword arguments
    passed to the constructor take precedence over the environment, which
    takes precedence over the defaults. Instances are immutable.

    Attributes:
        kind_version: kind release installed by ``install-deps``.
        kind_cloud_provider_version: cloud-provider-kind image tag.
        kind_node_image: Node image reference, or the ``latest``/``oldest`` preset.
        kind_cluster_name: Name of the kind cluster.
        control_nodes: Number of control-plane nodes.
        worker_nodes: Number of worker nodes.
        ip_family: Cluster IP family.
        docker_cmd: Container runtime backend.
        registry_name: Local registry container name.
        registry_port: Host port the registry is published on.
        registry_image: Registry container image.
        enable_registry: Whether to run the local registry.
        network_name: Container network shared by nodes, registry, and sidecar.
        ipv6_ula_prefix: ULA prefix used for the IPv6 registry address.
        ipv6_registry_dns: Hostname nodes use to reach the IPv6 registry.
        enable_cloud_provider: Whether to run cloud-provider-kind.
        enable_node_labels: Whether to label nodes after creation.
        enable_admin_binding: Whether to create the admin ClusterRoleBinding.
        force_recreate: Whether to delete a cluster that exists but is not ready.
        configure_insecure_registry: Whether to add the registry to the runtime trust file.
        debug: Whether to log debug output.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", frozen=True)

    kind_version: str = Field(default=DEFAULT_KIND_VERSION, pattern=r"^v\d+\.\d+\.\d+$")
    kind_cloud_provider_version: str = DEFAULT_CLOUD_PROVIDER_VERSION
    kind_node_image: str = DEFAULT_NODE_IMAGE
    kind_cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME, min_length=1)
    control_nodes: int = Field(default=DEFAULT_CONTROL_NODES, ge=1)
    worker_nodes: int = Field(default=DEFAULT_WORKER_NODES, ge=0)
    ip_family: IpFamily = IpFamily.IPV4
    docker_cmd: RuntimeBackend = RuntimeBackend.DOCKER
    registry_name: str = Field(default=DEFAULT_REGISTRY_NAME, min_length=1)
    registry_port: int = Field(default=DEFAULT_REGISTRY_PORT, ge=1, le=65535)
    registry_image: str = DEFAULT_REGISTRY_IMAGE
    enable_registry: bool = True
    network_name: str = Field(default=DEFAULT_NETWORK_NAME, min_length=1)
    ipv6_ula_prefix: str = DEFAULT_IPV6_ULA_PREFIX
    ipv6_registry_dns: str = DEFAULT_IPV6_REGISTRY_DNS
    enable_cloud_provider: bool = True
    enable_node_labels: bool = True
    enable_admin_binding: bool = True
    force_recreate: bool = False
    configure_insecure_registry: bool = False
    debug: bool = False

    @field_validator("kind_node_image")
    @classmethod
    def _expand_image_preset(cls, value: str) -> str:
        return resolve_node_image(value)

    @property
    def kube_context(self) -> str:
        return f"{KIND_CONTEXT_PREFIX}{self.kind_cluster_name}"

    @property
    def ipv6_registry_address(self) -> str:
        return ula_address(self.ipv6_ula_prefix)

    def cluster_spec(self) -> ClusterSpec:
        return ClusterSpec(
            name=self.kind_cluster_name,
            node_image=self.kind_node_image,
            control_planes=self.control_nodes,
            workers=self.worker_nodes,
            ip_family=self.ip_family,
            force_recreate=self.force_recreate,
        )

    def registry_descriptor(self, host_bind_ip: str | None = None) -> RegistryDescriptor:
        return RegistryDescriptor(
            name=self.registry_name,
            port=self.registry_port,
            image=self.registry_image,
            network=self.network_name,
            host_bind_ip=host_bind_ip,
        )

    def network_descriptor(self) -> NetworkDescriptor:
        return NetworkDescriptor(name=self.network_name, ipv6_enabled=self.ip_family.wants_ipv6)

    def sidecar_descriptor(self) -> SidecarDescriptor:
        return SidecarDescriptor(network=self.network_name, version=self.kind_cloud_provider_version)


def load_config(**overrides: Any) -> KindConfig:
    """Build the run configuration from CLI overrides, env vars, and defaults.

    Resolution priority: CLI arguments > environment variables > defaults.
    ``None`` overrides mean "not given on the command line" and are dropped.

    Args:
        **overrides: KindConfig field values supplied on the command line.

    Returns:
        The validated, immutable configuration.
    """
    return KindConfig(**{key: value for key, value in overrides.items() if value is not None})


# ============================================================================
# Resource descriptors
# ============================================================================

@dataclass(frozen=True)
class NetworkDescriptor:
    """Container network shared by the cluster, registry, and sidecar.

    Attributes:
        name: Network name, unique per runtime.
        ipv6_enabled: Whether the network should carry IPv6.
    """

    name: str
    ipv6_enabled: bool = False


@dataclass(frozen=True)
class ClusterSpec:
    """Desired shape of the kind cluster.

    Attributes:
        name: Cluster name.
        node_image: Fully resolved node image reference.
        control_planes: Number of control-plane nodes, at least 1.
        workers: Number of worker nodes, at least 0.
        ip_family: Cluster IP family.
        force_recreate: Whether an existing unready cluster may be deleted.
    """

    name: str
    node_image: str
    control_planes: int = DEFAULT_CONTROL_NODES
    workers: int = DEFAULT_WORKER_NODES
    ip_family: IpFamily = IpFamily.IPV4
    force_recreate: bool = False

    def __post_init__(self) -> None:
        if self.control_planes < 1:
            raise ConfigurationError(
                f"Cluster '{self.name}' needs at least one control-plane node, got {self.control_planes}"
            )
        if self.workers < 0:
            raise ConfigurationError(f"Cluster '{self.name}' worker count cannot be negative")


@dataclass(frozen=True)
class RegistryDescriptor:
    """Local image registry container.

    Attributes:
        name: Container name.
        port: Host port published for host-to-registry traffic.
        image: Registry image.
        network: Network the container attaches to.
        host_bind_ip: Host address to bind the published port to, or None for all.
    """

    name: str
    port: int
    image: str
    network: str
    host_bind_ip: str | None = None


@dataclass(frozen=True)
class SidecarDescriptor:
    """cloud-provider-kind controller container.

    Attributes:
        network: Network the container attaches to.
        version: cloud-provider-kind image tag.
        container_name: Fixed container name.
    """

    network: str
    version: str
    container_name: str = field(default=SIDECAR_CONTAINER_NAME)


# ============================================================================
# Display
# ============================================================================

def display_config(cfg: KindConfig) -> None:
    """Print the configuration relevant to ``create``.

    Args:
        cfg: Resolved run configuration.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print(f"  cluster_name      : {cfg.kind_cluster_name}")
    console.print(f"  control_planes    : {cfg.control_nodes}")
    console.print(f"  worker_nodes      : {cfg.worker_nodes}")
    console.print(f"  node_image        : {cfg.kind_node_image}")
    console.print(f"  ip_family         : {cfg.ip_family.value}")
    console.print(f"  container_runtime : {cfg.docker_cmd.value}")
    console.print(f"  network           : {cfg.network_name}")
    registry = f"{cfg.registry_name}:{cfg.registry_port}" if cfg.enable_registry else "disabled"
    console.print(f"  registry          : {registry}")
    console.print(f"  cloud_provider    : {'enabled' if cfg.enable_cloud_provider else 'disabled'}")
