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

"""In-memory stand-ins for the container runtime CLI, kind, and kubectl."""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
import sh

from kind_manager.cluster import KindCli, Kubectl
from kind_manager.orchestrator import Toolchain
from kind_manager.runtime import ContainerRuntime, RuntimeBackend
from kind_manager.utils import RetryPolicy

_NETWORK_FIELD_RE = re.compile(r'Networks "([^"]+)"\}\}\{\{\.(\w+)\}\}')


def _fail(args: tuple, message: str) -> sh.ErrorReturnCode:
    return sh.ErrorReturnCode_1(" ".join(str(a) for a in args), b"", message.encode())


class FakeRuntimeCli:
    """Simulates the subset of the docker/podman CLI the runtime probe uses.

    Every call is recorded in ``calls``; calls that change state are also
    recorded in ``mutations``.
    """

    def __init__(self, version: str = "Docker version 27.0.3, build 7d4bcd8"):
        self.version = version
        self.daemon_up = True
        self.containers: dict[str, dict] = {}
        self.networks: dict[str, bool] = {}
        self.calls: list[tuple] = []
        self.mutations: list[tuple] = []
        self.failing: set[str] = set()
        self._next_ip = 2

    # -- state helpers for tests --

    def add_container(self, name: str, *, running: bool = True, image: str = "registry:2",
                      network: str | None = "kind") -> dict:
        networks = {}
        if network:
            networks[network] = f"172.18.0.{self._next_ip}"
            self._next_ip += 1
        self.containers[name] = {
            "running": running,
            "image": image,
            "networks": networks,
            "files": {},
            "hosts": "127.0.0.1    localhost\n",
            "options": (),
        }
        return self.containers[name]

    def mutation_verbs(self) -> list[str]:
        return [" ".join(call[:2]) if call[0] in ("network", "exec") else call[0] for call in self.mutations]

    # -- dispatch --

    def __call__(self, *args, **kwargs):
        args = tuple(str(a) for a in args)
        self.calls.append(args)
        head = args[0]
        if head == "--version":
            return self.version + "\n"
        if head == "info":
            if not self.daemon_up:
                raise _fail(args, "Cannot connect to the Docker daemon")
            return "Server: ok\n"
        if head == "container" and args[1] == "inspect":
            return self._container_inspect(args)
        if head == "network":
            return self._network(args)
        if head == "exec":
            return self._exec(args, kwargs.get("_in"))
        if head in ("run", "start", "stop", "rm"):
            if head in self.failing:
                raise _fail(args, f"{head} failed")
            self.mutations.append(args)
            return getattr(self, f"_{head}")(args)
        raise _fail(args, f"unknown command {head}")

    def _container_inspect(self, args: tuple) -> str:
        name = args[-1]
        container = self.containers.get(name)
        if container is None:
            raise _fail(args, f"Error: No such container: {name}")
        if "-f" not in args:
            return json.dumps([{"Name": name}])
        template = args[args.index("-f") + 1]
        if template == "{{.State.Running}}":
            return "true\n" if container["running"] else "false\n"
        if template == "{{.Config.Image}}":
            return container["image"] + "\n"
        match = _NETWORK_FIELD_RE.search(template)
        if match:
            network, field = match.groups()
            if field == "IPAddress":
                return container["networks"].get(network, "") + "\n"
            return "\n"
        raise _fail(args, f"unsupported template {template}")

    def _network(self, args: tuple) -> str:
        verb = args[1]
        name = args[-1]
        if verb == "inspect":
            if name not in self.networks:
                raise _fail(args, f"Error: No such network: {name}")
            if "-f" in args:
                return "true\n" if self.networks[name] else "false\n"
            return json.dumps([{"Name": name}])
        if verb == "create":
            if "network create" in self.failing:
                raise _fail(args, "network create failed")
            self.mutations.append(args)
            self.networks[name] = "--ipv6" in args
            return name + "\n"
        if verb == "rm":
            if "network rm" in self.failing:
                raise _fail(args, f"Error response from daemon: network {name} has active endpoints")
            self.mutations.append(args)
            del self.networks[name]
            return name + "\n"
        raise _fail(args, f"unknown network verb {verb}")

    def _exec(self, args: tuple, stdin: str | None) -> str:
        rest = list(args[1:])
        if rest[0] == "-i":
            rest.pop(0)
        node, cmd = rest[0], rest[1:]
        container = self.containers.get(node)
        if container is None:
            raise _fail(args, f"Error: No such container: {node}")
        if cmd[:2] == ["test", "-f"]:
            if cmd[2] in container["files"]:
                return ""
            raise _fail(args, "")
        if cmd[:2] == ["grep", "-q"]:
            if cmd[2] in container["hosts"]:
                return ""
            raise _fail(args, "")
        self.mutations.append(args)
        if cmd[0] == "mkdir":
            return ""
        if cmd[:2] == ["cp", "/dev/stdin"]:
            container["files"][cmd[2]] = stdin
            return ""
        if cmd[:2] == ["tee", "-a"]:
            container["hosts"] += stdin
            return stdin
        raise _fail(args, f"unsupported exec {cmd}")

    def _run(self, args: tuple) -> str:
        name = args[args.index("--name") + 1]
        image = args[-1]
        options = args[args.index("--name") + 2:-1]
        network = options[options.index("--network") + 1] if "--network" in options else None
        container = self.add_container(name, image=image, network=network)
        container["options"] = options
        return "0123456789ab\n"

    def _start(self, args: tuple) -> str:
        self.containers[args[1]]["running"] = True
        return args[1] + "\n"

    def _stop(self, args: tuple) -> str:
        self.containers[args[1]]["running"] = False
        return args[1] + "\n"

    def _rm(self, args: tuple) -> str:
        del self.containers[args[1]]
        return args[1] + "\n"


def kind_node_names(cluster: str, control_planes: int, workers: int) -> list[str]:
    """Node container names the way kind assigns them."""
    def numbered(role: str, count: int) -> list[str]:
        return [f"{cluster}-{role}{'' if i == 0 else i + 1}" for i in range(count)]
    return numbered("control-plane", control_planes) + numbered("worker", workers)


class FakeKind:
    """Simulates ``kind`` against a FakeRuntimeCli so nodes become containers."""

    def __init__(self, runtime: FakeRuntimeCli):
        self.runtime = runtime
        self.clusters: dict[str, list[str]] = {}
        self.calls: list[tuple] = []
        self.configs: list[str] = []
        self.config_paths: list[Path] = []
        self.env: dict | None = None
        self.fail_create = False

    def add_cluster(self, name: str, control_planes: int = 1, workers: int = 0, network: str = "kind") -> list[str]:
        nodes = kind_node_names(name, control_planes, workers)
        self.clusters[name] = nodes
        for node in nodes:
            self.runtime.add_container(node, image="kindest/node", network=network)
        return nodes

    def __call__(self, *args, _env=None):
        args = tuple(str(a) for a in args)
        self.calls.append(args)
        self.env = _env
        if args[:2] == ("get", "clusters"):
            return "".join(f"{name}\n" for name in self.clusters)
        if args[:2] == ("get", "nodes"):
            return "".join(f"{node}\n" for node in self.clusters.get(args[-1], []))
        if args[:2] == ("create", "cluster"):
            if self.fail_create:
                raise _fail(args, "ERROR: failed to create cluster")
            name = args[args.index("--name") + 1]
            path = Path(args[args.index("--config") + 1])
            text = path.read_text()
            self.configs.append(text)
            self.config_paths.append(path)
            control_planes = text.count("role: control-plane")
            workers = text.count("role: worker")
            network = (_env or {}).get("KIND_EXPERIMENTAL_DOCKER_NETWORK", "kind")
            self.add_cluster(name, control_planes, workers, network)
            return ""
        if args[:2] == ("delete", "cluster"):
            name = args[args.index("--name") + 1]
            for node in self.clusters.pop(name, []):
                self.runtime.containers.pop(node, None)
            return ""
        if args[0] == "version":
            return "kind v0.29.0 go1.24.2 linux/amd64\n"
        raise _fail(args, f"unknown kind command {args}")


class FakeKubectl:
    """Simulates kubectl for clusters known to a FakeKind."""

    def __init__(self, kind: FakeKind):
        self.kind = kind
        self.ready = True
        self.bindings: set[str] = set()
        self.labels: dict[str, dict[str, str]] = {}
        self.calls: list[list[str]] = []
        self.mutations: list[list[str]] = []

    def _nodes(self, context: str) -> list[str]:
        return self.kind.clusters.get(context.removeprefix("kind-"), [])

    def __call__(self, args: list[str]) -> tuple[bool, str, str]:
        self.calls.append(list(args))
        assert args[0] == "--context"
        context, rest = args[1], args[2:]
        if rest == ["get", "nodes", "-o", "json"]:
            items = [
                {
                    "metadata": {"name": node, "labels": dict(self.labels.get(node, {}))},
                    "status": {"conditions": [{"type": "Ready", "status": "True" if self.ready else "False"}]},
                }
                for node in self._nodes(context)
            ]
            return True, json.dumps({"items": items}), ""
        if rest[:2] == ["get", "clusterrolebinding"]:
            if rest[2] in self.bindings:
                return True, rest[2], ""
            return False, "", f'Error from server (NotFound): clusterrolebindings "{rest[2]}" not found'
        if rest[:2] == ["create", "clusterrolebinding"]:
            self.mutations.append(rest)
            self.bindings.add(rest[2])
            return True, "created", ""
        if rest[:2] == ["label", "node"]:
            self.mutations.append(rest)
            key, value = rest[3].split("=", 1)
            self.labels.setdefault(rest[2], {})[key] = value
            return True, "labeled", ""
        if rest == ["cluster-info"]:
            return True, "Kubernetes control plane is running at https://127.0.0.1:6443\n", ""
        if rest == ["get", "nodes"]:
            return True, "\n".join(["NAME STATUS", *self._nodes(context)]), ""
        return False, "", f"unsupported kubectl call {rest}"


@pytest.fixture
def runtime_cli() -> FakeRuntimeCli:
    return FakeRuntimeCli()


@pytest.fixture
def runtime(runtime_cli: FakeRuntimeCli) -> ContainerRuntime:
    return ContainerRuntime(RuntimeBackend.DOCKER, command=runtime_cli)


@pytest.fixture
def fake_kind(runtime_cli: FakeRuntimeCli) -> FakeKind:
    return FakeKind(runtime_cli)


@pytest.fixture
def kind_cli(fake_kind: FakeKind) -> KindCli:
    return KindCli(RuntimeBackend.DOCKER, "kind", command=fake_kind)


@pytest.fixture
def fake_kubectl(fake_kind: FakeKind) -> FakeKubectl:
    return FakeKubectl(fake_kind)


@pytest.fixture
def kubectl(fake_kubectl: FakeKubectl) -> Kubectl:
    return Kubectl.for_cluster("kind-cluster", runner=fake_kubectl)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay=0)


@pytest.fixture
def tools(runtime, kind_cli, kubectl, fast_policy) -> Toolchain:
    return Toolchain(
        runtime=runtime,
        kind=kind_cli,
        kubectl=kubectl,
        registry_probe=lambda url: True,
        cluster_policy=fast_policy,
        registry_policy=fast_policy,
    )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of KindConfig."""
    for var in (
        "KIND_VERSION", "KIND_CLOUD_PROVIDER_VERSION", "KIND_NODE_IMAGE", "KIND_CLUSTER_NAME",
        "CONTROL_NODES", "WORKER_NODES", "IP_FAMILY", "DOCKER_CMD", "REGISTRY_NAME",
        "REGISTRY_PORT", "REGISTRY_IMAGE", "ENABLE_REGISTRY", "NETWORK_NAME", "IPV6_ULA_PREFIX",
        "IPV6_REGISTRY_DNS", "ENABLE_CLOUD_PROVIDER", "ENABLE_NODE_LABELS", "ENABLE_ADMIN_BINDING",
        "FORCE_RECREATE", "CONFIGURE_INSECURE_REGISTRY", "DEBUG",
    ):
        monkeypatch.delenv(var, raising=False)
