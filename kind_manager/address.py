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

"""Host OS, architecture, and address detection."""

from __future__ import annotations

import ipaddress
import platform
from pathlib import Path

import sh

from kind_manager import logger
from kind_manager.utils import command_error_text, command_exists

LOOPBACK_IPV4 = "127.0.0.1"
DISABLE_IPV6_SYSCTL = Path("/proc/sys/net/ipv6/conf/all/disable_ipv6")


# ============================================================================
# OS / architecture
# ============================================================================

def detect_os(system: str | None = None) -> str:
    """Normalize ``platform.system()`` to linux, macos, windows, or unknown."""
    system = (system if system is not None else platform.system()).lower()
    if system == "linux":
        return "linux"
    if system == "darwin":
        return "macos"
    if system.startswith(("windows", "cygwin", "msys", "mingw")):
        return "windows"
    return "unknown"


def detect_arch(machine: str | None = None) -> str:
    """Normalize ``platform.machine()`` to the release-asset naming (amd64, arm64, arm)."""
    machine = (machine if machine is not None else platform.machine()).lower()
    if machine in ("x86_64", "amd64"):
        return "amd64"
    if machine in ("aarch64", "arm64"):
        return "arm64"
    if machine.startswith("arm"):
        return "arm"
    return machine


# ============================================================================
# Output parsing
# ============================================================================

def is_ipv6(address: str) -> bool:
    try:
        return ipaddress.ip_address(address.strip("[]")).version == 6
    except ValueError:
        return False


def _is_routable_ipv4(token: str) -> bool:
    try:
        addr = ipaddress.ip_address(token)
    except ValueError:
        return False
    return addr.version == 4 and not addr.is_loopback


def parse_hostname_addresses(output: str) -> str | None:
    """Pick the first non-loopback IPv4 address from ``hostname -I`` output."""
    for token in output.split():
        if _is_routable_ipv4(token):
            return token
    return None


def token_after(output: str, keyword: str) -> str | None:
    """Return the whitespace-separated token following ``keyword``, if any.

    Used for ``ip route get`` (``src``/``dev``) and macOS ``route get``
    (``interface:``) output.
    """
    tokens = output.split()
    for i, token in enumerate(tokens[:-1]):
        if token == keyword:
            return tokens[i + 1]
    return None


# ============================================================================
# Host queries
# ============================================================================

def _try(cmd: str, *args: str) -> str:
    if not command_exists(cmd):
        return ""
    try:
        return str(sh.Command(cmd)(*args))
    except sh.ErrorReturnCode as err:
        logger.debug("%s %s failed: %s", cmd, " ".join(args), command_error_text(err))
        return ""


def host_ipv4(os_name: str) -> str:
    """Return the host's routable IPv4 address, falling back to loopback.

    Args:
        os_name: Normalized OS name from :func:`detect_os`.

    Returns:
        A dotted-quad address; ``127.0.0.1`` when nothing better is found.
    """
    if os_name == "linux":
        address = parse_hostname_addresses(_try("hostname", "-I"))
        if address:
            return address
        address = token_after(_try("ip", "-4", "route", "get", "1"), "src")
        if address and _is_routable_ipv4(address):
            return address
    elif os_name == "macos":
        for interface in ("en0", "en1"):
            address = _try("ipconfig", "getifaddr", interface).strip()
            if _is_routable_ipv4(address):
                return address
    logger.debug("No routable IPv4 address found, using %s", LOOPBACK_IPV4)
    return LOOPBACK_IPV4


def primary_interface(os_name: str) -> str | None:
    """Return the interface carrying the default route, or None if unknown."""
    if os_name == "linux":
        return token_after(_try("ip", "route", "get", "1"), "dev")
    if os_name == "macos":
        return token_after(_try("route", "get", "default"), "interface:")
    return None


def ipv6_enabled(os_name: str, sysctl_path: Path = DISABLE_IPV6_SYSCTL) -> bool:
    """Return True if the host kernel has IPv6 enabled."""
    if os_name == "linux":
        try:
            return sysctl_path.read_text().strip() == "0"
        except OSError:
            return False
    return "inet6" in _try("ifconfig")


def ula_address(prefix: str) -> str:
    """Return the registry's host address inside a ULA prefix (``<prefix>::1``)."""
    return f"{prefix}::1"
