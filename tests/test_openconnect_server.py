import subprocess
import sys
import textwrap
import threading
import time
from unittest.mock import Mock, patch

import pytest

from core.exceptions import InvalidStateError, ServiceError, ValidationError
from core.openconnect_server import OpenConnectServer, ServerState


class FakeProcess:
    """Stands in for the daemon child process."""

    def __init__(self, ignore_terminate=False):
        self.pid = 4242
        self.stdout = None
        self.stderr = None
        self.ignore_terminate = ignore_terminate
        self.killed = False
        self._exited = threading.Event()

    def terminate(self):
        if not self.ignore_terminate:
            self._exited.set()

    def kill(self):
        self.killed = True
        self._exited.set()

    def crash(self):
        self._exited.set()

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("ocserv", timeout)
        return 0


@pytest.fixture
def server():
    return OpenConnectServer(
        listen_ip="127.0.0.1",
        listen_port=4443,
        cert_file="/certs/server.crt",
        key_file="/certs/server.key",
        ca_file="/certs/ca.crt",
        stop_timeout=0.05,
    )


def _wait_for_state(server, state, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if server.state == state:
            return True
        time.sleep(0.01)
    return False


class TestLifecycle:
    def test_start_passes_routes_on_command_line(self, server):
        server.add_route("10.0.0.0/24")
        server.block_route("192.168.0.0/16")
        process = FakeProcess()

        with patch("core.openconnect_server.subprocess.Popen", return_value=process) as mock_popen:
            server.start()

        args = mock_popen.call_args[0][0]
        assert args == [
            "ocserv",
            "--listen=127.0.0.1",
            "--port=4443",
            "--certificate=/certs/server.crt",
            "--key=/certs/server.key",
            "--cafile=/certs/ca.crt",
            "--route=10.0.0.0/24",
            "--no-route=192.168.0.0/16",
        ]
        assert server.is_running()
        server.stop()

    def test_start_twice_is_rejected(self, server):
        with patch("core.openconnect_server.subprocess.Popen", return_value=FakeProcess()):
            server.start()
            with pytest.raises(InvalidStateError):
                server.start()
        server.stop()

    def test_spawn_failure_leaves_server_stopped(self, server):
        with patch("core.openconnect_server.subprocess.Popen", side_effect=FileNotFoundError("ocserv")):
            with pytest.raises(ServiceError):
                server.start()
        assert server.state == ServerState.STOPPED

    def test_stop_terminates_process(self, server):
        process = FakeProcess()
        with patch("core.openconnect_server.subprocess.Popen", return_value=process):
            server.start()

        server.stop()

        assert server.state == ServerState.STOPPED
        assert not process.killed

    def test_stop_kills_process_that_ignores_terminate(self, server):
        process = FakeProcess(ignore_terminate=True)
        with patch("core.openconnect_server.subprocess.Popen", return_value=process):
            server.start()

        server.stop()

        assert process.killed
        assert server.state == ServerState.STOPPED

    def test_stop_when_not_running_is_noop(self, server):
        server.stop()
        assert server.state == ServerState.STOPPED

    def test_unexpected_exit_marks_server_crashed(self, server):
        process = FakeProcess()
        with patch("core.openconnect_server.subprocess.Popen", return_value=process):
            server.start()

        process.crash()

        assert _wait_for_state(server, ServerState.CRASHED)

    def test_crashed_server_can_start_again(self, server):
        first = FakeProcess()
        with patch("core.openconnect_server.subprocess.Popen", return_value=first):
            server.start()
        first.crash()
        assert _wait_for_state(server, ServerState.CRASHED)

        with patch("core.openconnect_server.subprocess.Popen", return_value=FakeProcess()):
            server.start()
        assert server.is_running()
        server.stop()


class TestRouteLists:
    def test_add_route_is_idempotent(self, server):
        server.add_route("10.0.0.0/24")
        server.add_route("10.0.0.5/24")

        assert server.get_routes() == ["10.0.0.0/24"]

    def test_remove_absent_route_is_noop(self, server):
        server.add_route("10.0.0.0/24")
        server.remove_route("172.16.0.0/12")

        assert server.get_routes() == ["10.0.0.0/24"]

    def test_block_and_unblock(self, server):
        server.block_route("192.168.0.0/16")
        server.unblock_route("192.168.0.0/16")

        assert server.get_blocked_routes() == []

    def test_invalid_cidr_is_rejected(self, server):
        with pytest.raises(ValidationError):
            server.add_route("not-a-cidr")

    def test_asn_routes_expand_through_resolver(self):
        resolver = Mock(return_value=["1.1.1.0/24", "10.0.0.0/24"])
        server = OpenConnectServer(asn_resolver=resolver, stop_timeout=0.05)
        server.add_route("10.0.0.0/24")
        server.add_asn_route(13335)

        with patch("core.openconnect_server.subprocess.Popen", return_value=FakeProcess()) as mock_popen:
            server.start()
        server.stop()

        args = mock_popen.call_args[0][0]
        resolver.assert_called_once_with(13335)
        assert args.count("--route=10.0.0.0/24") == 1
        assert "--route=1.1.1.0/24" in args

    def test_asn_routes_without_resolver_are_not_expanded(self, server):
        server.add_asn_route("13335")

        with patch("core.openconnect_server.subprocess.Popen", return_value=FakeProcess()) as mock_popen:
            server.start()
        server.stop()

        assert server.get_asn_routes() == [13335]
        assert not any(arg.startswith("--route=") for arg in mock_popen.call_args[0][0])

    def test_resolver_runs_without_blocking_readers(self):
        reader_blocked = []

        def resolver(asn):
            reader = threading.Thread(target=server.get_routes, daemon=True)
            reader.start()
            reader.join(timeout=1)
            reader_blocked.append(reader.is_alive())
            return ["1.1.1.0/24"]

        server = OpenConnectServer(asn_resolver=resolver, stop_timeout=0.05)
        server.add_asn_route(13335)

        with patch("core.openconnect_server.subprocess.Popen", return_value=FakeProcess()):
            server.start()
        server.stop()

        assert reader_blocked == [False]


class TestIntrospection:
    def test_get_active_connections(self, server):
        result = Mock(stdout="id user\n1 alice\n2 bob\n")
        with patch("core.openconnect_server.subprocess.run", return_value=result) as mock_run:
            sessions = server.get_active_connections()

        assert sessions == ["1", "2"]
        assert mock_run.call_args[0][0] == ["occtl", "show", "users"]

    def test_get_user_traffic(self, server):
        result = Mock(stdout="RX: 1000\nTX: 2000\n")
        with patch("core.openconnect_server.subprocess.run", return_value=result) as mock_run:
            counters = server.get_user_traffic("alice")

        assert counters == (1000, 2000)
        assert mock_run.call_args[0][0] == ["occtl", "show", "user", "alice"]

    def test_disconnect_user(self, server):
        with patch("core.openconnect_server.subprocess.run", return_value=Mock(stdout="")) as mock_run:
            server.disconnect_user("alice")

        assert mock_run.call_args[0][0] == ["occtl", "disconnect", "user", "alice"]

    def test_occtl_failure_raises_service_error(self, server):
        error = subprocess.CalledProcessError(1, ["occtl"], stderr="cannot connect to ocserv")
        with patch("core.openconnect_server.subprocess.run", side_effect=error):
            with pytest.raises(ServiceError) as exc_info:
                server.get_active_connections()

        assert "cannot connect" in str(exc_info.value)

    def test_missing_occtl_binary_raises_service_error(self, server):
        with patch("core.openconnect_server.subprocess.run", side_effect=FileNotFoundError("occtl")):
            with pytest.raises(ServiceError):
                server.disconnect_user("alice")

    def test_undecodable_occtl_output_is_parsed_leniently(self, server):
        result = Mock(stdout="RX: ��\nTX: 2,000\n")
        with patch("core.openconnect_server.subprocess.run", return_value=result) as mock_run:
            counters = server.get_user_traffic("alice")

        assert counters == (0, 2000)
        assert mock_run.call_args[1]["errors"] == "replace"


def _write_script(path, body):
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return str(path)


@pytest.mark.skipif(sys.platform == "win32", reason="needs executable scripts")
class TestRealProcesses:
    def test_invalid_bytes_in_daemon_output_keep_it_running(self, tmp_path):
        binary = _write_script(tmp_path / "ocserv", """
            import sys
            import time
            sys.stdout.buffer.write(b"booting \\xff\\n")
            sys.stdout.buffer.flush()
            sys.stderr.buffer.write(b"warning \\xfe\\n")
            sys.stderr.buffer.flush()
            for _ in range(200):
                time.sleep(0.05)
                sys.stdout.buffer.write(b"still serving\\n")
                sys.stdout.buffer.flush()
        """)
        server = OpenConnectServer(binary=binary, stop_timeout=2)

        server.start()
        try:
            time.sleep(1)
            assert server.state == ServerState.RUNNING
        finally:
            server.stop()

        assert server.state == ServerState.STOPPED

    def test_invalid_bytes_in_occtl_output_do_not_raise(self, tmp_path):
        occtl = _write_script(tmp_path / "occtl", """
            import sys
            if sys.argv[-1] == "alice":
                sys.stdout.buffer.write(b"RX: \\xff\\xfe\\nTX: \\xff\\n")
            else:
                sys.stdout.buffer.write(b"RX: 1,000\\nTX: 2,000\\n")
        """)
        server = OpenConnectServer(occtl_binary=occtl)

        assert server.get_user_traffic("alice") == (0, 0)
        assert server.get_user_traffic("bob") == (1000, 2000)
