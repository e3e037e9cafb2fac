"""Shared fakes and fixtures for the sshfs_connections tests.

Nothing here opens a real network connection: sessions, channels and the
presentation layer are in-memory stand-ins.
"""

import queue
import threading
from unittest.mock import MagicMock

import pytest

from sshfs_connections.config import FileSystemConfig, config
from sshfs_connections.presentation import FileStat, Presentation


class FakeExecChannel:
    """Exec channel returning canned output, then EOF."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.closed = False

    def recv(self, size):
        if not self.chunks:
            return b""
        return self.chunks.pop(0)

    def close(self):
        self.closed = True


class FakeShellChannel:
    """Interactive shell fed from a queue; ``None`` in the queue means EOF."""

    def __init__(self, tty_path=None):
        self.tty_path = tty_path
        self.incoming = queue.Queue()
        self.sent = []
        self.closed = False

    def push(self, text):
        self.incoming.put(text.encode("utf-8"))

    def push_bytes(self, data):
        self.incoming.put(data)

    def eof(self):
        self.incoming.put(None)

    def send(self, data):
        self.sent.append(data)
        if self.tty_path and "::sshfs:TTY:" in data:
            # What a real shell does: echo the typed line, then print the output
            self.push("$ echo ::sshfs:TTY:$(tty)\r\n")
            self.push(f"::sshfs:TTY:{self.tty_path}\r\n")
        return len(data)

    def recv(self, size):
        item = self.incoming.get(timeout=5)
        if item is None:
            self.incoming.put(None)
            return b""
        return item

    def close(self):
        self.closed = True
        self.eof()


class FakeSession:
    def __init__(self, home_output=b"Home: /home/bob\n", tty_path="/dev/pts/7"):
        self.home_output = home_output
        self.tty_path = tty_path
        self.commands = []
        self.shells = []
        self.sftp = MagicMock(name="sftp")
        self.destroyed = False

    def exec(self, command):
        self.commands.append(command)
        chunks = [self.home_output] if self.home_output else []
        return FakeExecChannel(chunks)

    def shell(self):
        channel = FakeShellChannel(self.tty_path)
        self.shells.append(channel)
        return channel

    def open_sftp(self):
        return self.sftp

    def destroy(self):
        self.destroyed = True
        for shell in self.shells:
            shell.close()


class FakeTransport:
    """Counts establish calls; ``gate`` lets a test hold establishment open."""

    def __init__(self, session_factory=FakeSession):
        self.session_factory = session_factory
        self.calls = []
        self.sessions = []
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()
        self.error = None

    def establish_session(self, actual_config):
        self.calls.append(actual_config)
        self.entered.set()
        assert self.gate.wait(5), "test never released the transport gate"
        if self.error:
            raise self.error
        session = self.session_factory()
        self.sessions.append(session)
        return session


class FakeConfigStore:
    def __init__(self, configs=None, cancel=False):
        self.configs = list(configs or [])
        self.cancel = cancel

    def load_configs(self):
        return list(self.configs)

    def calculate_actual_config(self, profile):
        if self.cancel:
            return None
        return FileSystemConfig.from_dict(profile.to_dict())


class FakePresentation(Presentation):
    def __init__(self, stats=None):
        self.stats = stats or {}
        self.opened = []
        self.folders = []
        self.errors = []

    def stat(self, uri):
        result = self.stats.get(uri)
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise FileNotFoundError(uri)
        return result

    def open_text_document(self, uri):
        self.opened.append(uri)

    def add_workspace_folder(self, uri):
        self.folders.append(uri)

    def show_error_message(self, text, *items):
        self.errors.append(text)


class FakeFileSystem:
    def __init__(self, closed=False, closing=False):
        self.closed = closed
        self.closing = closing


@pytest.fixture(autouse=True)
def isolated_runtime_config(tmp_path, monkeypatch):
    """Keep tests away from the user's flags, profiles and ~/.ssh/config."""
    monkeypatch.setattr(config, "FLAGS", [])
    monkeypatch.setattr(config, "CONFIG_PATH", str(tmp_path / "connections.json"))
    monkeypatch.setattr(config, "SSH_CONFIG_PATH", str(tmp_path / "ssh_config"))
    monkeypatch.setattr(config, "DEBUG", False)
    monkeypatch.setattr(config, "LOG_DIR", None)
    yield


@pytest.fixture
def presentation():
    return FakePresentation()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def profile():
    return FileSystemConfig(name="x", host="example.org", username="bob")


@pytest.fixture
def manager(transport, presentation, profile):
    from sshfs_connections.manager import ConnectionManager

    # Long interval: tests drive idle ticks by hand through check_idle()
    mgr = ConnectionManager(
        config_store=FakeConfigStore([profile]),
        transport=transport,
        presentation=presentation,
        idle_interval=3600,
    )
    yield mgr
    mgr.close_all()
