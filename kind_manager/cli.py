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

"""
cli.py - Idempotent local kind environment management.

Subcommands:
    create        Create the cluster, network, registry, and load balancer (default)
    delete        Delete everything create made
    status        Show the state of every managed resource
    install-deps  Install kind and kubectl
    help          Show this help

Environment Variables:
    Every option has an environment variable equivalent; CLI values win:
    - KIND_CLUSTER_NAME (default: kind-cluster)
    - CONTROL_NODES / WORKER_NODES (default: 1 / 3)
    - IP_FAMILY (default: ipv4)
    - DOCKER_CMD (default: docker)
    - REGISTRY_NAME / REGISTRY_PORT (default: kind-registry / 5001)
    - And more (see KindConfig for the full list)

Examples:
    # Default environment (no subcommand means create)
    kind-manager

    # Three control planes, no workers, dual stack
    kind-manager --control-planes 3 --workers 0 --ip-family dual

    # Podman, recreating a broken cluster
    kind-manager create --docker-cmd podman --force

    # Tear down
    kind-manager delete
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Sequence

import typer
from pydantic import ValidationError
from rich.markup import escape

from kind_manager import console
from kind_manager.commands import create_cmd, delete_cmd, install_cmd, status_cmd
from kind_manager.errors import KindManagerError

PROG_NAME = "kind-manager"
DEFAULT_COMMAND = "create"

app = typer.Typer(
    help="Idempotent local kind cluster, registry, and load balancer management.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

app.command("create")(create_cmd.create)
app.command("delete")(delete_cmd.delete)
app.command("status")(status_cmd.status)
app.command("install-deps")(install_cmd.install_deps)


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show this help."""
    typer.echo(ctx.parent.get_help() if ctx.parent else ctx.get_help())


def _with_default_command(args: Sequence[str]) -> list[str]:
    """Prepend ``create`` when no subcommand was given."""
    args = list(args)
    if not args or (args[0].startswith("-") and args[0] not in ("--help", "-h")):
        return [DEFAULT_COMMAND, *args]
    return args


def _handle_sigterm(signum: int, frame: object) -> None:
    raise SystemExit(128 + signum)


def main(argv: Sequence[str] | None = None) -> int:
    """Console-script entry point; returns the process exit code."""
    args = _with_default_command(sys.argv[1:] if argv is None else argv)
    signal.signal(signal.SIGTERM, _handle_sigterm)
    try:
        rv = app(args=args, prog_name=PROG_NAME, standalone_mode=False)
    except typer.Abort:
        console.print("[yellow]\u26a0\ufe0f  Interrupted[/yellow]")
        return 130
    except typer.TyperException as e:
        console.print(f"[red]\u274c {escape(e.format_message())}[/red]")
        return 1
    except (KindManagerError, ValidationError) as e:
        console.print(f"[red]\u274c {e}[/red]")
        return 1
    return rv if isinstance(rv, int) else 0


if __name__ == "__main__":
    sys.exit(main())
