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

"""install-deps subcommand."""

from __future__ import annotations

import typer

from kind_manager.commands import options
from kind_manager.orchestrator import run_install_deps


def install_deps(
    kubectl_version: str | None = typer.Option(
        None, "--kubectl-version", help="kubectl release to install (default: latest stable)"),
    debug: bool = options.DEBUG,
) -> None:
    """Install kind and kubectl into /usr/local/bin."""
    cfg = options.resolve_config(debug=debug)
    run_install_deps(cfg.kind_version, kubectl_version)
