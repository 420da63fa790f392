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

import stat
from types import SimpleNamespace

import pytest
import sh

from kind_manager import host, utils
from kind_manager.errors import CommandFailedError, Outcome
from kind_manager.host import (
    add_hosts_entry,
    adjust_inotify_limits,
    ipv6_assign_address,
    load_iptables_modules,
    setup_kube_directory,
)


@pytest.fixture
def privileged_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(host, "privileged", lambda *args, **kwargs: calls.append(args) or "")
    return calls


def fake_sh(monkeypatch, **commands):
    monkeypatch.setattr(host, "sh", SimpleNamespace(ErrorReturnCode=sh.ErrorReturnCode, **commands))


def test_setup_kube_directory(tmp_path):
    config = setup_kube_directory(tmp_path)
    assert config == tmp_path / ".kube" / "config"
    assert config.exists()
    assert stat.S_IMODE(config.parent.stat().st_mode) == 0o700
    assert stat.S_IMODE(config.stat().st_mode) == 0o600


def test_setup_kube_directory_keeps_existing_config(tmp_path):
    (tmp_path / ".kube").mkdir()
    (tmp_path / ".kube" / "config").write_text("apiVersion: v1\n")
    setup_kube_directory(tmp_path)
    assert (tmp_path / ".kube" / "config").read_text() == "apiVersion: v1\n"


def _proc(tmp_path, watches, instances):
    inotify = tmp_path / "proc" / "fs" / "inotify"
    inotify.mkdir(parents=True)
    (inotify / "max_user_watches").write_text(f"{watches}\n")
    (inotify / "max_user_instances").write_text(f"{instances}\n")
    return tmp_path / "proc"


def test_inotify_limits_already_sufficient(tmp_path, privileged_calls):
    proc = _proc(tmp_path, 655360, 1280)
    conf = tmp_path / "99-kind.conf"
    assert adjust_inotify_limits("linux", proc, conf) is Outcome.NOOP
    assert privileged_calls == []
    assert not conf.exists()


def test_inotify_limits_raised_and_persisted(tmp_path, privileged_calls):
    proc = _proc(tmp_path, 8192, 128)
    conf = tmp_path / "99-kind.conf"
    assert adjust_inotify_limits("linux", proc, conf) is Outcome.CREATED
    assert privileged_calls == [
        ("sysctl", "-w", "fs.inotify.max_user_watches=655360"),
        ("sysctl", "-w", "fs.inotify.max_user_instances=1280"),
    ]
    assert "fs.inotify.max_user_watches = 655360" in conf.read_text()


def test_inotify_skipped_off_linux(tmp_path, privileged_calls):
    assert adjust_inotify_limits("macos", tmp_path, tmp_path / "conf") is Outcome.NOOP
    assert privileged_calls == []


def test_iptables_modules_only_for_podman_on_linux(privileged_calls):
    assert load_iptables_modules(False, "linux") == []
    assert load_iptables_modules(True, "macos") == []
    assert privileged_calls == []


def test_iptables_loads_missing_modules(monkeypatch, privileged_calls):
    fake_sh(monkeypatch, lsmod=lambda: "Module Size Used by\nip_tables 32768 0\n")
    assert load_iptables_modules(True, "linux") == ["ip6_tables"]
    assert privileged_calls == [("modprobe", "ip6_tables")]


def test_iptables_failure_is_a_warning(monkeypatch, capsys):
    def failing_modprobe(*args, **kwargs):
        raise sh.ErrorReturnCode_1("modprobe", b"", b"FATAL: Module not found")

    fake_sh(monkeypatch, lsmod=lambda: "Module Size Used by\n")
    monkeypatch.setattr(host, "privileged", failing_modprobe)
    assert load_iptables_modules(True, "linux") == []
    assert "Failed to load ip_tables module" in capsys.readouterr().err


def test_ipv6_address_already_assigned(monkeypatch, privileged_calls):
    fake_sh(monkeypatch, ip=lambda *args: "inet6 fd01:2345:6789::1/64 scope global\n")
    assert ipv6_assign_address("fd01:2345:6789::1", "eth0") is Outcome.NOOP
    assert privileged_calls == []


def test_ipv6_address_added(monkeypatch, privileged_calls):
    fake_sh(monkeypatch, ip=lambda *args: "inet6 fe80::1/64 scope link\n")
    assert ipv6_assign_address("fd01:2345:6789::1", "eth0") is Outcome.CREATED
    assert privileged_calls == [("ip", "-6", "addr", "add", "fd01:2345:6789::1/64", "dev", "eth0")]


def test_ipv6_address_failure_raises(monkeypatch):
    def failing(*args, **kwargs):
        raise sh.ErrorReturnCode_2("ip", b"", b"RTNETLINK answers: Operation not permitted")

    fake_sh(monkeypatch, ip=lambda *args: "")
    monkeypatch.setattr(host, "privileged", failing)
    with pytest.raises(CommandFailedError, match="Operation not permitted"):
        ipv6_assign_address("fd01:2345:6789::1", "eth0")


def test_hosts_entry_added_once(tmp_path):
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost")
    assert add_hosts_entry("fd01:2345:6789::1", "myregistry.local", hosts) is Outcome.CREATED
    assert add_hosts_entry("fd01:2345:6789::1", "myregistry.local", hosts) is Outcome.NOOP
    assert hosts.read_text() == "127.0.0.1 localhost\nfd01:2345:6789::1    myregistry.local\n"


def test_ipv6_address_listing_failure_raises(monkeypatch, privileged_calls):
    def failing_show(*args):
        raise sh.ErrorReturnCode_1("ip", b"", b'Device "eth9" does not exist.')

    fake_sh(monkeypatch, ip=failing_show)
    with pytest.raises(CommandFailedError, match="eth9"):
        ipv6_assign_address("fd01:2345:6789::1", "eth9")
    assert privileged_calls == []


def test_hosts_entry_write_failure_names_the_file(monkeypatch, tmp_path):
    def failing_tee(*args, **kwargs):
        raise sh.ErrorReturnCode_1("tee", b"", b"tee: /etc/hosts: Permission denied")

    monkeypatch.setattr(utils, "privileged", failing_tee)
    hosts = tmp_path / "missing-dir" / "hosts"
    with pytest.raises(CommandFailedError, match="Failed to write .*hosts"):
        add_hosts_entry("fd01:2345:6789::1", "myregistry.local", hosts)
