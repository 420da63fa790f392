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

"""kind cluster lifecycle, config generation, readiness, and post-create setup."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import sh
import yaml
from rich.panel import Panel
from tenacity import RetryError

from kind_manager import console, logger
from kind_manager.config import ClusterSpec, IpFamily
from kind_manager.constants import (
    ADMIN_BINDING_NAME,
    ADMIN_BINDING_ROLE,
    ADMIN_BINDING_SERVICE_ACCOUNT,
    CLUSTER_READY_POLL_INTERVAL_SECONDS,
    CLUSTER_READY_TIMEOUT_SECONDS,
    CONTAINERD_CERTS_DIR,
    DEFAULT_NODE_LABEL,
    KIND_API_VERSION,
    KIND_CONTEXT_PREFIX,
)
from kind_manager.errors import (
    CommandFailedError,
    ConfigurationError,
    Outcome,
    PreconditionError,
    ReadinessTimeoutError,
)
from kind_manager.runtime import RuntimeBackend
from kind_manager.utils import RetryPolicy, command_error_text, run_kubectl, transient_file

DEFAULT_CLUSTER_POLICY = RetryPolicy.from_timeout(
    CLUSTER_READY_TIMEOUT_SECONDS, CLUSTER_READY_POLL_INTERVAL_SECONDS
)


class ClusterStatus(str, Enum):
    ABSENT = "absent"
    NOT_READY = "not_ready"
    READY = "ready"


@dataclass(frozen=True)
class ClusterState:
    """Observed cluster state, computed fresh on every query.

    Attributes:
        exists: Whether ``kind get clusters`` lists the cluster.
        ready: Whether at least one node exists and every node is Ready.
        node_names: Node container names in ``kind get nodes`` order.
    """

    exists: bool
    ready: bool
    node_names: tuple[str, ...] = field(default_factory=tuple)

    @property
    def status(self) -> ClusterStatus:
        if not self.exists:
            return ClusterStatus.ABSENT
        return ClusterStatus.READY if self.ready else ClusterStatus.NOT_READY


# ============================================================================
# External tools
# ============================================================================

class KindCli:
    """``kind`` invocations bound to one runtime backend and network.

    Args:
        backend: Runtime kind should create node containers with.
        network: Network the node containers join.
        command: Callable invoking ``kind``; defaults to ``sh.Command("kind")``.
    """

    def __init__(
        self,
        backend: RuntimeBackend,
        network: str,
        command: Callable[..., Any] | None = None,
    ) -> None:
        self._command = command
        self._env = {
            **os.environ,
            "KIND_EXPERIMENTAL_PROVIDER": backend.value,
            "KIND_EXPERIMENTAL_DOCKER_NETWORK": network,
        }

    @property
    def command(self) -> Callable[..., Any]:
        if self._command is None:
            self._command = sh.Command("kind")
        return self._command

    def _call(self, *args: str) -> str:
        return str(self.command(*args, _env=self._env))

    def clusters(self) -> list[str]:
        try:
            output = self._call("get", "clusters")
        except sh.ErrorReturnCode as err:
            logger.debug("kind get clusters failed: %s", command_error_text(err))
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def nodes(self, name: str) -> list[str]:
        try:
            output = self._call("get", "nodes", "--name", name)
        except sh.ErrorReturnCode as err:
            logger.debug("kind get nodes failed: %s", command_error_text(err))
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def create(self, name: str, image: str, config_path: Path) -> None:
        try:
            self._call("create", "cluster", "--name", name, "--image", image, "--config", str(config_path))
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(f"Failed to create cluster '{name}': {command_error_text(err)}") from err

    def delete(self, name: str) -> None:
        try:
            self._call("delete", "cluster", "--name", name)
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(f"Failed to delete cluster '{name}': {command_error_text(err)}") from err

    def version(self) -> str:
        try:
            return self._call("version").strip()
        except sh.ErrorReturnCode:
            return ""


class Kubectl:
    """kubectl bound to one context, so the user's current context is never switched."""

    def __init__(
        self,
        context: str,
        runner: Callable[[list[str]], tuple[bool, str, str]] = run_kubectl,
    ) -> None:
        self.context = context
        self._runner = runner

    @classmethod
    def for_cluster(cls, name: str, **kwargs: Any) -> Kubectl:
        return cls(f"{KIND_CONTEXT_PREFIX}{name}", **kwargs)

    def run(self, *args: str) -> tuple[bool, str, str]:
        return self._runner(["--context", self.context, *args])

    def mutate(self, description: str, *args: str) -> str:
        ok, stdout, stderr = self.run(*args)
        if not ok:
            raise CommandFailedError(f"Failed to {description}: {stderr.strip() or 'kubectl exited non-zero'}")
        return stdout

    def nodes(self) -> list[dict]:
        """Return node objects from ``get nodes -o json``; [] if the API is unreachable."""
        ok, stdout, stderr = self.run("get", "nodes", "-o", "json")
        if not ok:
            logger.debug("kubectl get nodes failed: %s", stderr.strip())
            return []
        try:
            return json.loads(stdout).get("items", [])
        except (ValueError, AttributeError):
            return []

    def has(self, kind: str, name: str) -> bool:
        return self.run("get", kind, name)[0]


def node_is_ready(node: dict) -> bool:
    conditions = node.get("status", {}).get("conditions", [])
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


def nodes_ready(nodes: list[dict]) -> bool:
    """Return True if there is at least one node and every node is Ready."""
    return bool(nodes) and all(node_is_ready(node) for node in nodes)


# ============================================================================
# Config generation
# ============================================================================

class _KindConfigDumper(yaml.SafeDumper):
    """Dumper that writes multi-line strings as literal blocks and never emits anchors."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


def _str_representer(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_KindConfigDumper.add_representer(str, _str_representer)


def containerd_patch(ip_family: IpFamily, registry_name: str, registry_port: int) -> str:
    """Return the containerd registry patch for the cluster's IP family.

    IPv6 clusters get an inline mirror for ``name:port``. Other families
    point containerd at the certs.d directory filled in per node later.
    """
    if ip_family is IpFamily.IPV6:
        host = f"{registry_name}:{registry_port}"
        return (
            f'[plugins."io.containerd.grpc.v1.cri".registry.mirrors."{host}"]\n'
            f'  endpoint = ["http://{host}"]'
        )
    return (
        '[plugins."io.containerd.grpc.v1.cri".registry]\n'
        f'  config_path = "{CONTAINERD_CERTS_DIR}"'
    )


def generate_config(
    control_planes: int,
    workers: int,
    ip_family: IpFamily | str,
    registry_name: str | None = None,
    registry_port: int | None = None,
) -> str:
    """Render the kind ``Cluster`` document.

    Args:
        control_planes: Number of control-plane nodes, at least 1.
        workers: Number of worker nodes.
        ip_family: Cluster IP family, emitted verbatim.
        registry_name: Registry to wire into containerd, or None for no patch.
        registry_port: Registry port used in the IPv6 mirror key.

    Returns:
        YAML text with control-plane nodes listed before workers.

    Raises:
        ConfigurationError: If the node counts are invalid.
    """
    if control_planes < 1:
        raise ConfigurationError(f"control_planes must be at least 1, got {control_planes}")
    if workers < 0:
        raise ConfigurationError(f"workers cannot be negative, got {workers}")
    ip_family = IpFamily(ip_family)

    document: dict[str, Any] = {"kind": "Cluster", "apiVersion": KIND_API_VERSION}
    if registry_name:
        document["containerdConfigPatches"] = [containerd_patch(ip_family, registry_name, registry_port)]
    document["nodes"] = (
        [{"role": "control-plane"} for _ in range(control_planes)]
        + [{"role": "worker"} for _ in range(workers)]
    )
    document["networking"] = {"ipFamily": ip_family.value}
    return yaml.dump(document, Dumper=_KindConfigDumper, sort_keys=False, default_flow_style=False)


# ============================================================================
# Lifecycle
# ============================================================================

def cluster_state(kind: KindCli, kubectl: Kubectl, name: str) -> ClusterState:
    """Observe the cluster; existence is an exact name match on ``kind get clusters``."""
    if name not in kind.clusters():
        return ClusterState(exists=False, ready=False)
    return ClusterState(
        exists=True,
        ready=nodes_ready(kubectl.nodes()),
        node_names=tuple(kind.nodes(name)),
    )


def wait_for_cluster(
    kind: KindCli,
    kubectl: Kubectl,
    name: str,
    policy: RetryPolicy = DEFAULT_CLUSTER_POLICY,
) -> None:
    """Poll until every node of the cluster is Ready.

    Raises:
        ReadinessTimeoutError: If the cluster never became ready.
    """
    try:
        with console.status(f"Waiting for cluster '{name}' nodes to be ready..."):
            policy.wait_until(lambda: cluster_state(kind, kubectl, name).ready)
    except RetryError as err:
        raise ReadinessTimeoutError(
            f"Cluster '{name}' did not become ready; inspect it with 'kubectl --context "
            f"{kubectl.context} get nodes'"
        ) from err


def delete_cluster(kind: KindCli, name: str) -> Outcome:
    """Delete the cluster if it exists.

    Raises:
        CommandFailedError: If ``kind delete cluster`` fails.
    """
    if name not in kind.clusters():
        console.print(f"[yellow]\u2139\ufe0f  Cluster '{name}' does not exist[/yellow]")
        return Outcome.NOOP
    console.print(f"[yellow]\u2139\ufe0f  Deleting cluster '{name}'...[/yellow]")
    kind.delete(name)
    console.print(f"[green]\u2705 Cluster '{name}' deleted[/green]")
    return Outcome.REMOVED


def ensure_cluster(
    kind: KindCli,
    kubectl: Kubectl,
    spec: ClusterSpec,
    registry_name: str | None = None,
    registry_port: int | None = None,
    policy: RetryPolicy = DEFAULT_CLUSTER_POLICY,
) -> Outcome:
    """Make sure a ready cluster matching ``spec`` exists.

    A ready cluster is left alone. An unready one is deleted only when
    ``spec.force_recreate`` is set.

    Args:
        kind: kind CLI bound to the backend and network.
        kubectl: kubectl bound to the cluster context.
        spec: Desired cluster.
        registry_name: Registry to wire into containerd, or None.
        registry_port: Registry host port.
        policy: Readiness polling schedule.

    Returns:
        ``Outcome.NOOP`` for a ready cluster, ``Outcome.CREATED`` otherwise.

    Raises:
        PreconditionError: If the cluster exists, is not ready, and force is off.
        CommandFailedError: If kind fails.
        ReadinessTimeoutError: If the new cluster never becomes ready.
    """
    state = cluster_state(kind, kubectl, spec.name)
    if state.status is ClusterStatus.READY:
        console.print(f"[green]\u2705 Cluster '{spec.name}' already exists and is ready[/green]")
        return Outcome.NOOP
    if state.status is ClusterStatus.NOT_READY:
        console.print(f"[yellow]\u26a0\ufe0f  Cluster '{spec.name}' exists but is not ready[/yellow]")
        if not spec.force_recreate:
            raise PreconditionError(
                f"Cluster '{spec.name}' exists but is not ready. Use --force to recreate it"
            )
        console.print("[yellow]\u2139\ufe0f  Force recreate enabled, deleting existing cluster[/yellow]")
        delete_cluster(kind, spec.name)

    console.print(Panel.fit(f"Creating kind cluster '{spec.name}'", style="bold blue"))
    console.print(f"  node_image     : {spec.node_image}")
    console.print(f"  control_planes : {spec.control_planes}")
    console.print(f"  workers        : {spec.workers}")
    console.print(f"  ip_family      : {spec.ip_family.value}")

    config = generate_config(spec.control_planes, spec.workers, spec.ip_family, registry_name, registry_port)
    logger.debug("Generated cluster config:\n%s", config)
    with transient_file(config, prefix="kind-config-", suffix=".yaml") as config_path:
        kind.create(spec.name, spec.node_image, config_path)

    wait_for_cluster(kind, kubectl, spec.name, policy)
    console.print(f"[green]\u2705 Cluster '{spec.name}' created successfully[/green]")
    return Outcome.CREATED


# ============================================================================
# Post-create setup
# ============================================================================

def create_admin_binding(kubectl: Kubectl) -> Outcome:
    """Bind ``cluster-admin`` to the kube-system default service account once."""
    if kubectl.has("clusterrolebinding", ADMIN_BINDING_NAME):
        console.print(f"[green]\u2705 ClusterRoleBinding '{ADMIN_BINDING_NAME}' already exists[/green]")
        return Outcome.NOOP
    kubectl.mutate(
        f"create clusterrolebinding '{ADMIN_BINDING_NAME}'",
        "create", "clusterrolebinding", ADMIN_BINDING_NAME,
        f"--clusterrole={ADMIN_BINDING_ROLE}",
        f"--serviceaccount={ADMIN_BINDING_SERVICE_ACCOUNT}",
    )
    console.print(f"[green]\u2705 ClusterRoleBinding '{ADMIN_BINDING_NAME}' created[/green]")
    return Outcome.CREATED


def label_nodes(kubectl: Kubectl, label: str = DEFAULT_NODE_LABEL) -> Outcome:
    """Add ``label`` to every node that does not already carry its key.

    Raises:
        CommandFailedError: If labelling a node fails.
    """
    key = label.split("=", 1)[0]
    console.print(Panel.fit(f"Labelling nodes with {label}", style="bold blue"))
    nodes = kubectl.nodes()
    if not nodes:
        console.print("[yellow]\u26a0\ufe0f  No nodes returned by the API server; skipping node labels[/yellow]")
        return Outcome.WARNED
    labelled = 0
    for node in nodes:
        metadata = node.get("metadata", {})
        name = metadata.get("name", "")
        if key in metadata.get("labels", {}):
            continue
        kubectl.mutate(f"label node '{name}'", "label", "node", name, label)
        console.print(f"[green]  \u2713 {name}[/green]")
        labelled += 1
    if not labelled:
        console.print("[green]\u2705 All nodes already labelled[/green]")
        return Outcome.NOOP
    console.print(f"[green]\u2705 Labelled {labelled} nodes[/green]")
    return Outcome.CREATED
