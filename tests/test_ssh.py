import socket
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from conftest import FakeExecChannel
from sshfs_connections.config import EXEC_TIMEOUT, FileSystemConfig
from sshfs_connections.errors import TransportError
from sshfs_connections.ssh import SSHSession, SSHTransport, try_get_home


def session_with_output(*chunks):
    session = MagicMock()
    channel = FakeExecChannel(chunks)
    session.exec.return_value = channel
    return session, channel


class TestTryGetHome:
    def test_plain_output(self):
        session, channel = session_with_output(b"Home: /home/bob\n")
        assert try_get_home(session) == "/home/bob"
        session.exec.assert_called_once_with("echo Home: ~")
        assert channel.closed

    def test_crlf_and_chunked_output(self):
        session, _ = session_with_output(b"Home: /ho", b"me/bob\r\n")
        assert try_get_home(session) == "/home/bob"

    def test_no_trailing_newline(self):
        session, _ = session_with_output(b"Home: /root")
        assert try_get_home(session) == "/root"

    def test_no_output(self):
        session, _ = session_with_output()
        assert try_get_home(session) is None

    def test_missing_prefix(self):
        session, _ = session_with_output(b"/home/bob\n")
        assert try_get_home(session) is None

    def test_extra_lines_do_not_match(self):
        session, _ = session_with_output(b"motd banner\nHome: /home/bob\n")
        assert try_get_home(session) is None

    def test_silent_channel_times_out(self):
        session, channel = session_with_output(b"Home: /home/bob\n")
        channel.recv = MagicMock(side_effect=[b"Home: /ho", socket.timeout("timed out")])
        assert try_get_home(session) is None
        assert channel.closed


class TestSSHTransport:
    @patch("sshfs_connections.ssh.paramiko.SSHClient")
    def test_connect_arguments(self, client_class):
        client = client_class.return_value
        actual = FileSystemConfig(
            name="x", host="example.org", port=2222, username="bob",
            password="secret", private_key_path="/keys/id", passphrase="pp",
        )
        session = SSHTransport().establish_session(actual)

        assert isinstance(session, SSHSession)
        kwargs = client.connect.call_args.kwargs
        assert kwargs["hostname"] == "example.org"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "bob"
        assert kwargs["password"] == "secret"
        assert kwargs["key_filename"] == "/keys/id"
        assert kwargs["passphrase"] == "pp"
        client.load_system_host_keys.assert_called_once()
        client.get_transport.return_value.set_keepalive.assert_called_once()

    @patch("sshfs_connections.ssh.paramiko.SSHClient")
    def test_prompt_marker_is_not_sent_as_password(self, client_class):
        actual = FileSystemConfig(name="x", username="bob", password=True, verify_host_key=False)
        SSHTransport().establish_session(actual)
        client = client_class.return_value
        assert "password" not in client.connect.call_args.kwargs
        client.set_missing_host_key_policy.assert_called_once()

    @pytest.mark.parametrize("error", [paramiko.AuthenticationException("denied"), socket.timeout("timed out")])
    @patch("sshfs_connections.ssh.paramiko.SSHClient")
    def test_failure_raises_transport_error(self, client_class, error):
        client = client_class.return_value
        client.connect.side_effect = error
        with pytest.raises(TransportError):
            SSHTransport().establish_session(FileSystemConfig(name="x", username="bob"))
        client.close.assert_called_once()


class TestSSHSession:
    def test_destroy_once(self):
        client = MagicMock()
        session = SSHSession("x", client)
        session.destroy()
        session.destroy()
        client.close.assert_called_once()
        assert not session.is_alive()

    def test_exec_opens_channel(self):
        client = MagicMock()
        session = SSHSession("x", client)
        channel = session.exec("echo hi")
        transport = client.get_transport.return_value
        transport.open_session.assert_called_once()
        channel.settimeout.assert_called_once_with(EXEC_TIMEOUT)
        channel.exec_command.assert_called_once_with("echo hi")

    def test_exec_on_dead_transport(self):
        client = MagicMock()
        client.get_transport.return_value.is_active.return_value = False
        with pytest.raises(TransportError):
            SSHSession("x", client).exec("echo hi")
