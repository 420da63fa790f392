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

import json
import tomllib

import pytest
import sh

from kind_manager import trust
from kind_manager.errors import CommandFailedError, Outcome
from kind_manager.runtime import RuntimeBackend
from kind_manager.trust import (
    configure_insecure_registry,
    merge_daemon_json,
    merge_registries_conf,
    trust_addresses,
)


def test_trust_addresses_for_ipv4_and_dual():
    addresses = trust_addresses(
        ipv6_only=False, host_ip="192.168.1.100", port=5001,
        ula_address="fd01:2345:6789::1", registry_dns="myregistry.local",
    )
    assert addresses == ["192.168.1.100:5001"]


def test_trust_addresses_for_ipv6():
    addresses = trust_addresses(
        ipv6_only=True, host_ip="192.168.1.100", port=5001,
        ula_address="fd01:2345:6789::1", registry_dns="myregistry.local",
    )
    assert addresses == ["[fd01:2345:6789::1]:5001", "myregistry.local:5001"]


# ============================================================================
# daemon.json
# ============================================================================

def test_daemon_json_from_empty_file():
    merged = json.loads(merge_daemon_json("", ["10.0.0.1:5001"]))
    assert merged == {"insecure-registries": ["10.0.0.1:5001"]}


def test_daemon_json_keeps_existing_settings():
    existing = json.dumps({"log-driver": "journald", "insecure-registries": ["other:5000"]})
    merged = json.loads(merge_daemon_json(existing, ["10.0.0.1:5001"]))
    assert merged["log-driver"] == "journald"
    assert merged["insecure-registries"] == ["other:5000", "10.0.0.1:5001"]


def test_daemon_json_adds_ipv6_settings_without_overriding():
    existing = json.dumps({"fixed-cidr-v6": "fd00::/80"})
    merged = json.loads(merge_daemon_json(existing, ["[fd01:2345:6789::1]:5001"], "fd01:2345:6789"))
    assert merged["fixed-cidr-v6"] == "fd00::/80"
    assert merged["ip6tables"] is True
    assert merged["experimental"] is True


@pytest.mark.parametrize("existing", ["{not json", "[1, 2]", '{"insecure-registries": "x"}'])
def test_daemon_json_refuses_unmergeable_content(existing):
    assert merge_daemon_json(existing, ["10.0.0.1:5001"]) is None


# ============================================================================
# registries.conf
# ============================================================================

def test_registries_conf_appends_tables():
    existing = 'unqualified-search-registries = ["docker.io"]'
    merged = merge_registries_conf(existing, ["10.0.0.1:5001"])
    parsed = tomllib.loads(merged)
    assert parsed["unqualified-search-registries"] == ["docker.io"]
    assert parsed["registry"] == [{"location": "10.0.0.1:5001", "insecure": True}]


def test_registries_conf_skips_known_locations():
    existing = '[[registry]]\nlocation = "10.0.0.1:5001"\ninsecure = true\n'
    assert merge_registries_conf(existing, ["10.0.0.1:5001"]) == existing


def test_registries_conf_refuses_v1_layout():
    assert merge_registries_conf('[registries.insecure]\nregistries = ["a"]\n', ["10.0.0.1:5001"]) is None


def test_registries_conf_refuses_invalid_toml():
    assert merge_registries_conf("[[registry", ["10.0.0.1:5001"]) is None


# ============================================================================
# configure_insecure_registry
# ============================================================================

@pytest.fixture
def no_restart(monkeypatch):
    calls = []
    monkeypatch.setattr(trust, "privileged", lambda *args, **kwargs: calls.append(args) or "")
    return calls


def test_writes_daemon_json_and_restarts(tmp_path, no_restart):
    path = tmp_path / "daemon.json"
    outcome = configure_insecure_registry(RuntimeBackend.DOCKER, ["10.0.0.1:5001"], path=path)
    assert outcome is Outcome.CREATED
    assert json.loads(path.read_text())["insecure-registries"] == ["10.0.0.1:5001"]
    assert no_restart == [("systemctl", "restart", "docker")]


def test_already_trusted_is_noop(tmp_path, no_restart):
    path = tmp_path / "daemon.json"
    path.write_text('{"insecure-registries": ["10.0.0.1:5001"]}')
    assert configure_insecure_registry(RuntimeBackend.DOCKER, ["10.0.0.1:5001"], path=path) is Outcome.NOOP
    assert no_restart == []


def test_unmergeable_file_is_left_untouched(tmp_path, no_restart, capsys):
    path = tmp_path / "daemon.json"
    path.write_text("{broken")
    assert configure_insecure_registry(RuntimeBackend.DOCKER, ["10.0.0.1:5001"], path=path) is Outcome.WARNED
    assert path.read_text() == "{broken"
    assert no_restart == []
    assert "manually" in capsys.readouterr().err


def test_writes_registries_conf_for_podman(tmp_path, no_restart):
    path = tmp_path / "registries.conf"
    outcome = configure_insecure_registry(
        RuntimeBackend.PODMAN, ["[fd01:2345:6789::1]:5001", "myregistry.local:5001"], path=path, restart=False,
    )
    assert outcome is Outcome.CREATED
    locations = [entry["location"] for entry in tomllib.loads(path.read_text())["registry"]]
    assert locations == ["[fd01:2345:6789::1]:5001", "myregistry.local:5001"]
    assert no_restart == []


def test_restart_failure_is_reported(tmp_path, monkeypatch):
    def failing_systemctl(*args, **kwargs):
        raise sh.ErrorReturnCode_1("systemctl", b"", b"Failed to restart docker.service: Access denied")

    monkeypatch.setattr(trust, "privileged", failing_systemctl)
    path = tmp_path / "daemon.json"
    with pytest.raises(CommandFailedError, match="Failed to restart docker: .*Access denied"):
        configure_insecure_registry(RuntimeBackend.DOCKER, ["10.0.0.1:5001"], path=path)
    assert json.loads(path.read_text())["insecure-registries"] == ["10.0.0.1:5001"]


def test_missing_config_directory_failure_is_reported(tmp_path, monkeypatch):
    def failing_mkdir(*args, **kwargs):
        raise sh.ErrorReturnCode_1("mkdir", b"", b"mkdir: Permission denied")

    monkeypatch.setattr(trust, "privileged", failing_mkdir)
    path = tmp_path / "containers" / "registries.conf"
    with pytest.raises(CommandFailedError, match="Failed to create"):
        configure_insecure_registry(RuntimeBackend.PODMAN, ["10.0.0.1:5001"], path=path, restart=False)
