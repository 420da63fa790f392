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

"""kind and kubectl binary installation."""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
from pathlib import Path

import requests
import sh
from rich.panel import Panel

from kind_manager import console
from kind_manager.address import detect_arch, detect_os
from kind_manager.constants import DOWNLOAD_TIMEOUT_SECONDS, INSTALL_DIR, dep_value
from kind_manager.errors import CommandFailedError, ConfigurationError, Outcome
from kind_manager.utils import command_exists, privileged

KIND_RELEASE_URL = dep_value(
    "kind", "release_url",
    default="https://github.com/kubernetes-sigs/kind/releases/download/{version}/kind-{os}-{arch}",
)
KUBECTL_RELEASE_URL = dep_value(
    "kubectl", "release_url",
    default="https://dl.k8s.io/release/{version}/bin/{os}/{arch}/kubectl",
)
KUBECTL_STABLE_URL = dep_value("kubectl", "stable_url", default="https://dl.k8s.io/release/stable.txt")

_VERSION_RE = re.compile(r"v\d+\.\d+\.\d+")


def release_platform() -> tuple[str, str]:
    """Return the (os, arch) pair used in release asset names."""
    os_name = detect_os()
    if os_name not in ("linux", "macos"):
        raise ConfigurationError(f"Binary installation is not supported on {os_name}")
    return ("darwin" if os_name == "macos" else os_name), detect_arch()


def parse_version(output: str) -> str:
    match = _VERSION_RE.search(output)
    return match.group(0) if match else ""


def installed_kind_version() -> str:
    if not command_exists("kind"):
        return ""
    try:
        return parse_version(str(sh.kind("version")))
    except sh.ErrorReturnCode:
        return ""


def installed_kubectl_version() -> str:
    if not command_exists("kubectl"):
        return ""
    try:
        output = str(sh.kubectl("version", "--client", "-o", "json"))
        return json.loads(output).get("clientVersion", {}).get("gitVersion", "")
    except (sh.ErrorReturnCode, ValueError):
        return ""


def _download(url: str) -> Path:
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as err:
        raise CommandFailedError(f"Failed to download {url}: {err}") from err
    fd, name = tempfile.mkstemp(prefix="kind-manager-download-")
    with os.fdopen(fd, "wb") as f:
        f.write(response.content)
    path = Path(name)
    path.chmod(0o755)
    return path


def _install_binary(url: str, name: str, install_dir: Path = INSTALL_DIR) -> None:
    console.print(f"[yellow]\u2139\ufe0f  Downloading {name} from {url}[/yellow]")
    tmp_path = _download(url)
    target = install_dir / name
    try:
        if os.access(install_dir, os.W_OK):
            shutil.move(str(tmp_path), str(target))
        else:
            console.print(f"[yellow]\u2139\ufe0f  Installing to {install_dir} requires sudo[/yellow]")
            privileged("mv", str(tmp_path), str(target))
    except (OSError, sh.ErrorReturnCode) as err:
        raise CommandFailedError(f"Failed to install {name} to {install_dir}: {err}") from err
    finally:
        tmp_path.unlink(missing_ok=True)


def install_kind(version: str) -> Outcome:
    """Install the given kind release unless it is already installed.

    Raises:
        CommandFailedError: If the download or the move into place fails.
    """
    installed = installed_kind_version()
    if installed == version:
        console.print(f"[green]\u2705 kind {version} is already installed[/green]")
        return Outcome.NOOP
    if installed:
        console.print(f"[yellow]\u2139\ufe0f  kind {installed} found, upgrading to {version}[/yellow]")

    console.print(Panel.fit(f"Installing kind {version}", style="bold blue"))
    os_name, arch = release_platform()
    _install_binary(KIND_RELEASE_URL.format(version=version, os=os_name, arch=arch), "kind")
    console.print(f"[green]\u2705 kind {installed_kind_version() or version} installed[/green]")
    return Outcome.CREATED


def stable_kubectl_version() -> str:
    try:
        response = requests.get(KUBECTL_STABLE_URL, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as err:
        raise CommandFailedError(f"Failed to fetch the stable kubectl version: {err}") from err
    return response.text.strip()


def install_kubectl(version: str | None = None) -> Outcome:
    """Install kubectl, defaulting to the current stable release.

    Raises:
        CommandFailedError: If a download or the move into place fails.
    """
    if not version:
        console.print("[yellow]\u2139\ufe0f  Fetching latest stable kubectl version[/yellow]")
        version = stable_kubectl_version()

    installed = installed_kubectl_version()
    if installed == version:
        console.print(f"[green]\u2705 kubectl {version} is already installed[/green]")
        return Outcome.NOOP
    if installed:
        console.print(f"[yellow]\u2139\ufe0f  kubectl {installed} found, installing {version}[/yellow]")

    console.print(Panel.fit(f"Installing kubectl {version}", style="bold blue"))
    os_name, arch = release_platform()
    _install_binary(KUBECTL_RELEASE_URL.format(version=version, os=os_name, arch=arch), "kubectl")
    console.print(f"[green]\u2705 kubectl {installed_kubectl_version() or version} installed[/green]")
    return Outcome.CREATED
