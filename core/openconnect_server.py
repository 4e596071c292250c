"""
Process control for the OpenConnect (ocserv) daemon.

The daemon is started as a child process with its routes passed on the
command line. Route changes are kept in memory and only reach the daemon
on the next start; live sessions are inspected through occtl.
"""

import subprocess
import threading
from enum import Enum
from typing import Callable, List, Optional

from core.exceptions import InvalidStateError, ServiceError
from core.introspection import parse_session_list, parse_traffic_fields
from core.logging_config import LoggerMixin
from core.network import normalize_cidr, validate_asn
from core.rwlock import ReadWriteLock
from core.types import TrafficCounters

class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"

class OpenConnectServer(LoggerMixin):
    SERVICE_NAME = "ocserv"
    INTROSPECTION_NAME = "occtl"

    def __init__(
        self,
        listen_ip: str = "0.0.0.0",
        listen_port: int = 443,
        cert_file: str = "",
        key_file: str = "",
        ca_file: str = "",
        binary: str = "ocserv",
        occtl_binary: str = "occtl",
        stop_timeout: float = 5.0,
        asn_resolver: Optional[Callable[[int], List[str]]] = None,
    ) -> None:
        self.listen_ip = listen_ip
        self.listen_port = listen_port
        self.cert_file = cert_file
        self.key_file = key_file
        self.ca_file = ca_file
        self.binary = binary
        self.occtl_binary = occtl_binary
        self.stop_timeout = stop_timeout
        # ASN routes are stored but not expanded unless a resolver is supplied.
        self.asn_resolver = asn_resolver

        self._lock = ReadWriteLock()
        self._state = ServerState.STOPPED
        self._process: Optional[subprocess.Popen] = None
        self._routes: List[str] = []
        self._blocked_routes: List[str] = []
        self._asn_routes: List[int] = []

    # Lifecycle --------------------------------------------------------

    @property
    def state(self) -> ServerState:
        with self._lock.read_locked():
            return self._state

    def is_running(self) -> bool:
        return self.state == ServerState.RUNNING

    def start(self) -> None:
        with self._lock.read_locked():
            if self._state not in (ServerState.STOPPED, ServerState.CRASHED):
                raise InvalidStateError("start", self._state.value)
            asn_routes = list(self._asn_routes)
        # Resolved outside the lock; readers never wait on the resolver.
        asn_networks = self._expand_asn_routes(asn_routes)

        with self._lock.write_locked():
            if self._state not in (ServerState.STOPPED, ServerState.CRASHED):
                raise InvalidStateError("start", self._state.value)
            self._state = ServerState.STARTING
            args = self._build_args(asn_networks)
            self.logger.info("Starting OpenConnect server", args=args)
            try:
                process = subprocess.Popen(
                    args,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    encoding="utf-8",
                    errors="replace",
                )
            except OSError as e:
                self._state = ServerState.STOPPED
                raise ServiceError(self.SERVICE_NAME, "start", str(e))
            self._process = process
            self._state = ServerState.RUNNING

        threading.Thread(
            target=self._pipe_reader, args=(process.stdout, False), daemon=True
        ).start()
        threading.Thread(
            target=self._pipe_reader, args=(process.stderr, True), daemon=True
        ).start()
        threading.Thread(target=self._watch_exit, args=(process,), daemon=True).start()
        self.logger.info("OpenConnect server started", pid=process.pid)

    def stop(self) -> None:
        with self._lock.write_locked():
            if self._state != ServerState.RUNNING or self._process is None:
                self.logger.debug("Stop requested but server is not running", state=self._state.value)
                return
            self._state = ServerState.STOPPING
            process = self._process
            try:
                process.terminate()
                try:
                    process.wait(timeout=self.stop_timeout)
                except subprocess.TimeoutExpired:
                    self.logger.warning("Server did not exit in time, killing", timeout=self.stop_timeout)
                    process.kill()
                    process.wait()
            except OSError as e:
                self.logger.error("Failed to signal server process", error=str(e))
            finally:
                self._process = None
                self._state = ServerState.STOPPED
        self.logger.info("OpenConnect server stopped")

    def _watch_exit(self, process: subprocess.Popen) -> None:
        returncode = process.wait()
        with self._lock.write_locked():
            if self._process is not process:
                # Exit followed a requested stop.
                return
            self._process = None
            self._state = ServerState.CRASHED
        self.logger.error("OpenConnect server exited unexpectedly", returncode=returncode)

    def _pipe_reader(self, stream, is_stderr: bool) -> None:
        if stream is None:
            return
        log = self.logger.error if is_stderr else self.logger.info
        try:
            for line in iter(stream.readline, ""):
                line = line.rstrip()
                if line:
                    log("ocserv output", line=line)
        except (OSError, ValueError) as e:
            self.logger.warning("Stopped reading ocserv output", error=str(e))
            return
        # Closed only at EOF while the daemon may still write.
        stream.close()

    def _build_args(self, asn_networks: Optional[List[str]] = None) -> List[str]:
        args = [
            self.binary,
            f"--listen={self.listen_ip}",
            f"--port={self.listen_port}",
            f"--certificate={self.cert_file}",
            f"--key={self.key_file}",
        ]
        if self.ca_file:
            args.append(f"--cafile={self.ca_file}")
        routes = list(self._routes)
        for network in asn_networks or []:
            if network not in routes:
                routes.append(network)
        for route in routes:
            args.append(f"--route={route}")
        for route in self._blocked_routes:
            args.append(f"--no-route={route}")
        return args

    def _expand_asn_routes(self, asn_routes: List[int]) -> List[str]:
        if not self.asn_resolver or not asn_routes:
            return []
        networks = []
        for asn in asn_routes:
            for cidr in self.asn_resolver(asn):
                network = normalize_cidr(cidr)
                if network not in networks:
                    networks.append(network)
        return networks

    # Route lists ------------------------------------------------------

    def add_route(self, cidr: str) -> None:
        self._add_entry(self._routes, normalize_cidr(cidr), "route")

    def remove_route(self, cidr: str) -> None:
        self._remove_entry(self._routes, normalize_cidr(cidr), "route")

    def block_route(self, cidr: str) -> None:
        self._add_entry(self._blocked_routes, normalize_cidr(cidr), "blocked route")

    def unblock_route(self, cidr: str) -> None:
        self._remove_entry(self._blocked_routes, normalize_cidr(cidr), "blocked route")

    def add_asn_route(self, asn) -> None:
        self._add_entry(self._asn_routes, validate_asn(asn), "ASN route")

    def remove_asn_route(self, asn) -> None:
        self._remove_entry(self._asn_routes, validate_asn(asn), "ASN route")

    def _add_entry(self, entries: list, value, kind: str) -> None:
        with self._lock.write_locked():
            if value in entries:
                return
            entries.append(value)
            running = self._state == ServerState.RUNNING
        self.logger.info(f"Added {kind}", value=value)
        if running:
            self.logger.info("Restart required to apply route changes", value=value)

    def _remove_entry(self, entries: list, value, kind: str) -> None:
        with self._lock.write_locked():
            if value not in entries:
                return
            entries.remove(value)
            running = self._state == ServerState.RUNNING
        self.logger.info(f"Removed {kind}", value=value)
        if running:
            self.logger.info("Restart required to apply route changes", value=value)

    def get_routes(self) -> List[str]:
        with self._lock.read_locked():
            return list(self._routes)

    def get_blocked_routes(self) -> List[str]:
        with self._lock.read_locked():
            return list(self._blocked_routes)

    def get_asn_routes(self) -> List[int]:
        with self._lock.read_locked():
            return list(self._asn_routes)

    # Introspection ----------------------------------------------------

    def get_active_connections(self) -> List[str]:
        with self._lock.read_locked():
            output = self._run_occtl(["show", "users"], "list sessions")
        return parse_session_list(output)

    def get_user_traffic(self, username: str) -> TrafficCounters:
        with self._lock.read_locked():
            output = self._run_occtl(["show", "user", username], "read session stats")
        return parse_traffic_fields(output)

    def disconnect_user(self, username: str) -> None:
        with self._lock.read_locked():
            self._run_occtl(["disconnect", "user", username], "disconnect user")
        self.logger.info("User session disconnected", username=username)

    def _run_occtl(self, args: List[str], operation: str) -> str:
        try:
            result = subprocess.run(
                [self.occtl_binary] + args,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=True,
            )
        except subprocess.CalledProcessError as e:
            reason = (e.stderr or "").strip() or f"exit status {e.returncode}"
            raise ServiceError(self.INTROSPECTION_NAME, operation, reason)
        except OSError as e:
            raise ServiceError(self.INTROSPECTION_NAME, operation, str(e))
        return result.stdout
