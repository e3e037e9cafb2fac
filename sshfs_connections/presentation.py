import sys
import abc
import stat as stat_module
from dataclasses import dataclass
from typing import List
from urllib.parse import urlsplit

from sshfs_connections.errors import PresentationError
from sshfs_connections.utils import log_info


@dataclass
class FileStat:
    is_directory: bool
    size: int = 0


class Presentation(abc.ABC):
    """What the command channel needs from the user-facing side."""

    @abc.abstractmethod
    def stat(self, uri: str) -> FileStat:
        raise NotImplementedError

    @abc.abstractmethod
    def open_text_document(self, uri: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def add_workspace_folder(self, uri: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def show_error_message(self, text: str, *items: str) -> None:
        raise NotImplementedError


class ConsolePresentation(Presentation):
    """Stats over SFTP of the matching active connection and reports to the console."""

    def __init__(self, manager):
        self.manager = manager
        self.opened: List[str] = []
        self.workspace_folders: List[str] = []

    def stat(self, uri: str) -> FileStat:
        parts = urlsplit(uri)
        connection = self.manager.get_active_connection(parts.netloc)
        if connection is None:
            raise PresentationError("Unavailable", f"no active connection for '{parts.netloc}'")
        sftp = connection.session.open_sftp()
        try:
            attrs = sftp.stat(parts.path)
        except FileNotFoundError as exc:
            raise PresentationError("FileNotFound", str(exc)) from exc
        except PermissionError as exc:
            raise PresentationError("NoPermissions", str(exc)) from exc
        finally:
            sftp.close()
        return FileStat(is_directory=stat_module.S_ISDIR(attrs.st_mode or 0), size=attrs.st_size or 0)

    def open_text_document(self, uri: str) -> None:
        self.opened.append(uri)
        log_info(f"open document {uri}")

    def add_workspace_folder(self, uri: str) -> None:
        self.workspace_folders.append(uri)
        log_info(f"add workspace folder {uri}")

    def show_error_message(self, text: str, *items: str) -> None:
        print(text, file=sys.stderr, flush=True)
