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

import pytest
import sh
from tenacity import RetryError

from kind_manager import utils
from kind_manager.errors import CommandFailedError, ConfigurationError
from kind_manager.utils import (
    RetryPolicy,
    command_error_text,
    require_command,
    transient_file,
    write_file,
)


def test_retry_policy_stops_after_max_attempts():
    checks = []
    with pytest.raises(RetryError):
        RetryPolicy(max_attempts=4, delay=0).wait_until(lambda: checks.append(1) and False)
    assert len(checks) == 4


def test_retry_policy_returns_on_first_success():
    answers = iter([False, True, False])
    RetryPolicy(max_attempts=5, delay=0).wait_until(lambda: next(answers))
    assert next(answers) is False


def test_retry_policy_from_timeout():
    policy = RetryPolicy.from_timeout(300, 5)
    assert (policy.max_attempts, policy.delay) == (60, 5)
    assert RetryPolicy.from_timeout(1, 5).max_attempts == 1


@pytest.mark.parametrize(("attempts", "delay", "backoff"), [(0, 1, 1), (1, -1, 1), (1, 1, 0.5)])
def test_retry_policy_validation(attempts, delay, backoff):
    with pytest.raises(ConfigurationError):
        RetryPolicy(attempts, delay, backoff)


def test_require_command():
    require_command("sh")
    with pytest.raises(ConfigurationError, match="install-deps"):
        require_command("definitely-not-a-real-binary", "Run 'kind-manager install-deps' to install it.")


def test_command_error_text_prefers_last_stderr_line():
    err = sh.ErrorReturnCode_1("docker run", b"", b"pulling\nError: port is already allocated\n")
    assert command_error_text(err) == "Error: port is already allocated"
    assert command_error_text(sh.ErrorReturnCode_3("x", b"", b"")) == "exit code 3"


def test_transient_file_is_removed_on_error():
    with pytest.raises(RuntimeError):
        with transient_file("kind: Cluster\n", suffix=".yaml") as path:
            assert path.read_text() == "kind: Cluster\n"
            raise RuntimeError("boom")
    assert not path.exists()


def test_write_file_direct(tmp_path):
    target = tmp_path / "hosts"
    write_file(target, "a\n")
    write_file(target, "b\n", append=True)
    assert target.read_text() == "a\nb\n"


def test_write_file_tee_failure_raises(monkeypatch, tmp_path):
    def failing_tee(*args, **kwargs):
        raise sh.ErrorReturnCode_1("tee", b"", b"tee: No such file or directory")

    monkeypatch.setattr(utils, "privileged", failing_tee)
    with pytest.raises(CommandFailedError, match="No such file or directory"):
        write_file(tmp_path / "missing" / "conf", "x\n")
