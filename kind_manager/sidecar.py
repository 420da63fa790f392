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

"""cloud-provider-kind load-balancer sidecar container."""

from __future__ import annotations

import os
from collections.abc import Callable

from rich.panel import Panel

from kind_manager import console
from kind_manager.address import detect_os
from kind_manager.config import SidecarDescriptor
from kind_manager.constants import SIDECAR_IMAGE, SIDECAR_SOCKET_TARGET
from kind_manager.errors import Outcome
from kind_manager.runtime import CAPABILITIES, ContainerRuntime, ResourceKind, RuntimeBackend, resolve_socket_path


def sidecar_image(version: str) -> str:
    return f"{SIDECAR_IMAGE}:{version}"


def sidecar_run_options(
    runtime: ContainerRuntime,
    descriptor: SidecarDescriptor,
    socket_path: str | None = None,
    os_name: str | None = None,
    uid: int | None = None,
) -> list[str]:
    """Build the ``run`` options for a new sidecar container.

    Podman is detected from the configured backend or, behind a ``docker``
    alias, from the version string. It gets its own API socket and runs
    privileged as root.

    Args:
        runtime: Runtime probe for the active backend.
        descriptor: Sidecar to launch.
        socket_path: Socket override; resolved from the host when None.
        os_name: Host OS override for socket resolution.
        uid: User id override for rootless socket resolution.

    Returns:
        Options placed between ``--name`` and the image.
    """
    backend = RuntimeBackend.PODMAN if runtime.is_podman() else RuntimeBackend.DOCKER
    if socket_path is None:
        socket_path = resolve_socket_path(
            backend,
            os_name or detect_os(),
            os.getuid() if uid is None else uid,
        )
    return [
        "--network", descriptor.network,
        "-v", f"{socket_path}:{SIDECAR_SOCKET_TARGET}",
        *CAPABILITIES[backend].sidecar_flags,
    ]


def ensure_sidecar(
    runtime: ContainerRuntime,
    descriptor: SidecarDescriptor,
    options: Callable[[ContainerRuntime, SidecarDescriptor], list[str]] = sidecar_run_options,
) -> Outcome:
    """Run the sidecar, or start the existing container as it is.

    An existing container is never re-run, even if its version differs;
    remove it first to change versions.

    Raises:
        CommandFailedError: If ``run`` or ``start`` fails.
    """
    name = descriptor.container_name
    console.print(Panel.fit("Cloud provider (load balancer)", style="bold blue"))
    if runtime.is_running(name):
        console.print(f"[green]\u2705 {name} already running[/green]")
        return Outcome.NOOP
    if runtime.exists(ResourceKind.CONTAINER, name):
        console.print(f"[yellow]\u2139\ufe0f  Starting existing {name} container...[/yellow]")
        runtime.start(name)
        console.print(f"[green]\u2705 {name} started[/green]")
        return Outcome.STARTED

    image = sidecar_image(descriptor.version)
    console.print(f"[yellow]\u2139\ufe0f  Starting {image} on network '{descriptor.network}'...[/yellow]")
    runtime.run(name, image, *options(runtime, descriptor))
    console.print(f"[green]\u2705 {name} started[/green]")
    return Outcome.CREATED


def remove_sidecar(runtime: ContainerRuntime, name: str) -> Outcome:
    """Stop and remove the sidecar container if it exists.

    Raises:
        CommandFailedError: If ``stop`` or ``rm`` fails.
    """
    if not runtime.exists(ResourceKind.CONTAINER, name):
        console.print(f"[yellow]\u2139\ufe0f  {name} container does not exist[/yellow]")
        return Outcome.NOOP
    if runtime.is_running(name):
        runtime.stop(name)
    runtime.rm(name)
    console.print(f"[green]\u2705 {name} removed[/green]")
    return Outcome.REMOVED
