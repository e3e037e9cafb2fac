class SSHFSError(Exception):
    """Base exception for connection management."""


class ConfigurationError(SSHFSError):
    """No usable configuration for a connection name."""


class ConnectionCancelled(ConfigurationError):
    """Resolving the configuration was cancelled by the user."""


class TransportError(SSHFSError):
    """The SSH session could not be established."""


class HomeDirectoryError(SSHFSError):
    """The remote home directory could not be detected."""


class CommandChannelError(SSHFSError):
    """The command shell closed or failed before reporting its TTY."""


class PresentationError(SSHFSError):
    """Failure reported by the presentation layer (stat/open)."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
