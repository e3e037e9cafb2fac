import re
import socket
import threading
from typing import Optional
import paramiko

from sshfs_connections.config import (
    CONNECT_TIMEOUT, KEEPALIVE_INTERVAL, BUFFER_SIZE, EXEC_TIMEOUT, HOME_PROBE_COMMAND,
    FileSystemConfig
)
from sshfs_connections.errors import TransportError
from sshfs_connections.utils import log_debug, log_error, log_info

HOME_PATTERN = re.compile(r"Home: (.*?)\r?\n?")


class SSHSession:
    """An established SSH session; every channel is opened on ``client``."""

    def __init__(self, name: str, client: paramiko.SSHClient):
        self.name = name
        self.client = client
        self.lock = threading.Lock()
        self.destroyed = False

    def _transport(self) -> paramiko.Transport:
        transport = self.client.get_transport()
        if not transport or not transport.is_active():
            raise TransportError(f"session '{self.name}' is not active")
        return transport

    def exec(self, command: str) -> paramiko.Channel:
        channel = self._transport().open_session()
        channel.settimeout(EXEC_TIMEOUT)
        channel.exec_command(command)
        return channel

    def shell(self) -> paramiko.Channel:
        return self.client.invoke_shell()

    def open_sftp(self) -> paramiko.SFTPClient:
        return self.client.open_sftp()

    def is_alive(self) -> bool:
        if self.destroyed:
            return False
        try:
            transport = self.client.get_transport()
            return bool(transport and transport.is_active())
        except Exception:
            return False

    def destroy(self) -> None:
        with self.lock:
            if self.destroyed:
                return
            self.destroyed = True
        try:
            self.client.close()
        except Exception as exc:
            log_error(f"error while closing session '{self.name}': {exc}")


class SSHTransport:
    def establish_session(self, actual_config: FileSystemConfig) -> Optional[SSHSession]:
        client = paramiko.SSHClient()
        if actual_config.verify_host_key:
            client.load_system_host_keys()
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": actual_config.host or actual_config.name,
            "port": actual_config.port,
            "username": actual_config.username,
            "timeout": CONNECT_TIMEOUT,
            "allow_agent": actual_config.agent,
            "look_for_keys": True,
        }
        if isinstance(actual_config.password, str) and actual_config.password:
            connect_kwargs["password"] = actual_config.password
        if actual_config.private_key_path:
            connect_kwargs["key_filename"] = actual_config.private_key_path
            if actual_config.passphrase:
                connect_kwargs["passphrase"] = actual_config.passphrase

        try:
            client.connect(**connect_kwargs)
        except (paramiko.SSHException, socket.error) as exc:
            client.close()
            raise TransportError(f"Could not create SSH session for '{actual_config.name}': {exc}") from exc

        transport = client.get_transport()
        if transport:
            transport.set_keepalive(KEEPALIVE_INTERVAL)
        log_info(f"connected to {connect_kwargs['hostname']}:{actual_config.port}", scope=actual_config.name)
        return SSHSession(actual_config.name, client)


def try_get_home(session) -> Optional[str]:
    channel = session.exec(HOME_PROBE_COMMAND)
    chunks = []
    try:
        while True:
            chunk = channel.recv(BUFFER_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
    except socket.timeout:
        log_error(f"no end of output from home directory lookup within {EXEC_TIMEOUT}s")
        return None
    finally:
        channel.close()

    home = b"".join(chunks).decode("utf-8", errors="replace")
    log_debug(f"home probe output: {home!r}")
    if not home:
        return None
    match = HOME_PATTERN.fullmatch(home)
    if not match:
        return None
    return match.group(1)
