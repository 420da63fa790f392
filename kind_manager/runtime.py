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

"""Container runtime backends, their capability table, and the runtime probe.

Every query re-inspects the runtime; nothing is cached between calls. Queries
never raise for a failed inspect, while the mutating pass-throughs raise
``CommandFailedError`` and leave idempotency checks to the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import sh

from kind_manager import logger
from kind_manager.constants import (
    DOCKER_DAEMON_CONFIG,
    DOCKER_SOCKET_PATH,
    PODMAN_REGISTRIES_CONFIG,
    PODMAN_ROOTFUL_SOCKET_PATH,
    PODMAN_ROOTLESS_SOCKET_TEMPLATE,
)
from kind_manager.errors import CommandFailedError
from kind_manager.utils import command_error_text


class RuntimeBackend(str, Enum):
    """Supported container runtime dialects."""

    DOCKER = "docker"
    PODMAN = "podman"


class ResourceKind(str, Enum):
    """Runtime object kinds that can be probed for existence."""

    CONTAINER = "container"
    NETWORK = "network"


# ============================================================================
# Capability table
# ============================================================================

def _docker_socket_path(os_name: str, uid: int, is_socket: Callable[[str], bool]) -> str:
    return DOCKER_SOCKET_PATH


def _podman_socket_path(os_name: str, uid: int, is_socket: Callable[[str], bool]) -> str:
    """Pick the Podman API socket to bind-mount into a sidecar container.

    On macOS the podman machine VM exposes the rootful path. On Linux the
    rootful socket wins when present, then the per-user rootless socket.
    """
    if os_name == "macos":
        return PODMAN_ROOTFUL_SOCKET_PATH
    if is_socket(PODMAN_ROOTFUL_SOCKET_PATH):
        return PODMAN_ROOTFUL_SOCKET_PATH
    rootless = PODMAN_ROOTLESS_SOCKET_TEMPLATE.format(uid=uid)
    if is_socket(rootless):
        return rootless
    return PODMAN_ROOTFUL_SOCKET_PATH


@dataclass(frozen=True)
class BackendCapabilities:
    """Per-backend command dialect, resolved once per run.

    Attributes:
        binary: CLI executable name.
        ipv6_network_flag: Flag passed to ``network create`` for IPv6.
        ipv6_network_warning: Warning printed before creating an IPv6 network, or None.
        network_ipv6_template: Go template reporting a network's IPv6 flag.
        sidecar_flags: Extra ``run`` flags the load-balancer sidecar needs.
        socket_resolver: Callable returning the API socket path to bind-mount.
        trust_file: Daemon configuration file holding insecure registries.
        service: systemd unit restarted after the trust file changes.
    """

    binary: str
    ipv6_network_flag: str
    ipv6_network_warning: str | None
    network_ipv6_template: str
    sidecar_flags: tuple[str, ...]
    socket_resolver: Callable[[str, int, Callable[[str], bool]], str]
    trust_file: Path
    service: str


CAPABILITIES: dict[RuntimeBackend, BackendCapabilities] = {
    RuntimeBackend.DOCKER: BackendCapabilities(
        binary="docker",
        ipv6_network_flag="--ipv6",
        ipv6_network_warning=None,
        network_ipv6_template="{{.EnableIPv6}}",
        sidecar_flags=(),
        socket_resolver=_docker_socket_path,
        trust_file=DOCKER_DAEMON_CONFIG,
        service="docker",
    ),
    RuntimeBackend.PODMAN: BackendCapabilities(
        binary="podman",
        ipv6_network_flag="--ipv6",
        ipv6_network_warning="IPv6 networks with Podman may have limited support",
        network_ipv6_template="{{.IPv6Enabled}}",
        sidecar_flags=("--privileged", "--user", "root"),
        socket_resolver=_podman_socket_path,
        trust_file=PODMAN_REGISTRIES_CONFIG,
        service="podman",
    ),
}


def _is_socket(path: str) -> bool:
    return Path(path).is_socket()


def resolve_socket_path(
    backend: RuntimeBackend,
    os_name: str,
    uid: int,
    is_socket: Callable[[str], bool] = _is_socket,
) -> str:
    """Resolve the runtime API socket path for the given backend and host.

    Args:
        backend: Runtime dialect whose socket is wanted.
        os_name: Normalized host OS name (``linux``, ``macos``, ...).
        uid: Effective user id, used for rootless socket lookup.
        is_socket: Predicate telling whether a path is an existing socket.

    Returns:
        Absolute socket path on the host.
    """
    return CAPABILITIES[backend].socket_resolver(os_name, uid, is_socket)


# ============================================================================
# Runtime probe
# ============================================================================

class ContainerRuntime:
    """Thin wrapper over the runtime CLI for one backend.

    Args:
        backend: Runtime dialect to speak.
        command: Callable invoking the runtime CLI; defaults to ``sh.Command``
            for the backend binary, created on first use.
    """

    def __init__(self, backend: RuntimeBackend, command: Callable[..., Any] | None = None) -> None:
        self.backend = backend
        self.capabilities = CAPABILITIES[backend]
        self._command = command

    @property
    def command(self) -> Callable[..., Any]:
        if self._command is None:
            self._command = sh.Command(self.capabilities.binary)
        return self._command

    @property
    def binary(self) -> str:
        return self.capabilities.binary

    def _query(self, *args: str) -> str | None:
        try:
            return str(self.command(*args)).strip()
        except sh.ErrorReturnCode as err:
            logger.debug("%s %s failed: %s", self.binary, " ".join(args), command_error_text(err))
            return None

    def _mutate(self, description: str, *args: str, stdin: str | None = None) -> str:
        kwargs: dict[str, Any] = {} if stdin is None else {"_in": stdin}
        logger.debug("Running: %s %s", self.binary, " ".join(args))
        try:
            return str(self.command(*args, **kwargs)).strip()
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(
                f"Failed to {description} ({self.binary}): {command_error_text(err)}"
            ) from err

    # -- queries --

    def exists(self, kind: ResourceKind, name: str) -> bool:
        """Return True if a container or network with this name exists."""
        return self._query(kind.value, "inspect", name) is not None

    def is_running(self, name: str) -> bool:
        """Return True only for an existing, running container.

        An absent container and an inspect error both read as not running.
        """
        return self._query("container", "inspect", "-f", "{{.State.Running}}", name) == "true"

    def ip_address(self, container: str, network: str, ipv6: bool = False) -> str:
        """Return the container's address on one network, or "" when unattached."""
        field = "GlobalIPv6Address" if ipv6 else "IPAddress"
        template = f'{{{{with index .NetworkSettings.Networks "{network}"}}}}{{{{.{field}}}}}{{{{end}}}}'
        value = self._query("container", "inspect", "-f", template, container) or ""
        return "" if value == "<no value>" else value

    def network_ipv6_enabled(self, name: str) -> bool:
        template = self.capabilities.network_ipv6_template
        return self._query("network", "inspect", "-f", template, name) == "true"

    def container_image(self, name: str) -> str:
        return self._query("container", "inspect", "-f", "{{.Config.Image}}", name) or ""

    def version_string(self) -> str:
        return self._query("--version") or ""

    def daemon_reachable(self) -> bool:
        return self._query("info") is not None

    def is_podman(self) -> bool:
        """Return True for Podman, including Podman installed behind a ``docker`` alias."""
        if self.backend is RuntimeBackend.PODMAN:
            return True
        return "podman" in self.version_string().lower()

    def exec_succeeds(self, container: str, *cmd: str) -> bool:
        """Run a read-only check inside a container and report its exit status."""
        return self._query("exec", container, *cmd) is not None

    # -- pass-throughs --

    def run(self, name: str, image: str, *options: str) -> str:
        return self._mutate(f"run container '{name}'", "run", "-d", "--name", name, *options, image)

    def start(self, name: str) -> str:
        return self._mutate(f"start container '{name}'", "start", name)

    def stop(self, name: str) -> str:
        return self._mutate(f"stop container '{name}'", "stop", name)

    def rm(self, name: str) -> str:
        return self._mutate(f"remove container '{name}'", "rm", name)

    def network_create(self, name: str, ipv6: bool = False) -> str:
        flags = [self.capabilities.ipv6_network_flag] if ipv6 else []
        return self._mutate(f"create network '{name}'", "network", "create", *flags, name)

    def network_rm(self, name: str) -> str:
        return self._mutate(f"remove network '{name}'", "network", "rm", name)

    def exec(self, container: str, *cmd: str, stdin: str | None = None) -> str:
        interactive = ["-i"] if stdin is not None else []
        return self._mutate(
            f"run '{' '.join(cmd)}' in '{container}'",
            "exec", *interactive, container, *cmd,
            stdin=stdin,
        )
