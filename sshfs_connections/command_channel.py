import re
import codecs
import enum
import posixpath
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from sshfs_connections.config import (
    BUFFER_SIZE, TTY_PROBE_COMMAND, PROFILE_SCRIPT_PATH, PROFILE_SCRIPT_MODE,
    CMD_PATH_VARIABLE
)
from sshfs_connections.errors import CommandChannelError, PresentationError
from sshfs_connections.utils import log_debug, log_error, log_info

COMMAND_LINE = re.compile(r"(.*?)::sshfs:(\w+):(.*)$")
CODE_SEPARATOR = ":::"

PROFILE_SCRIPT = f"""
if type code > /dev/null 2> /dev/null; then
    return 0;
fi
code() {{
    if [ ! -n "${CMD_PATH_VARIABLE}" ]; then
        echo "Not running in a terminal spawned by SSH FS? Failed to sent!"
    elif [ -c "${CMD_PATH_VARIABLE}" ]; then
        echo "::sshfs:code:$(pwd):::$1" >> ${CMD_PATH_VARIABLE};
        echo "Command sent to SSH FS extension";
    else
        echo "Missing command shell pty of SSH FS extension? Failed to sent!"
    fi
}}
echo "Injected 'code' alias";
"""


class CommandKind(enum.Enum):
    TTY = "TTY"
    CODE = "code"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RemoteCommand:
    kind: CommandKind
    word: str
    args: str
    prefix: str = ""


def classify_line(line: str) -> Optional[RemoteCommand]:
    """Turn one output line into a RemoteCommand, or None for shell noise.

    The shell echoes what we type, so a line whose prefix ends with ``echo ``
    is our own probe command and not a protocol line.
    """
    match = COMMAND_LINE.search(line)
    if not match:
        return None
    prefix, word, args = match.groups()
    if not word or prefix.endswith("echo "):
        return None
    try:
        kind = CommandKind(word)
    except ValueError:
        kind = CommandKind.UNKNOWN
    return RemoteCommand(kind, word, args, prefix)


def parse_code_args(args: str) -> Optional[Tuple[str, str]]:
    cwd, _, target = args.partition(CODE_SEPARATOR)
    cwd = cwd.strip()
    target = target.strip()
    if not cwd or not target:
        return None
    return cwd, target


def resolve_target(cwd: str, target: str) -> str:
    if target.startswith("/"):
        return target
    return posixpath.normpath(posixpath.join(cwd, target))


def build_uri(authority: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"ssh://{authority}{path}"


class LineSplitter:
    """Incremental splitter for \\n, \\r\\n and bare \\r terminated lines."""

    def __init__(self):
        self.pending = ""

    def feed(self, text: str) -> List[str]:
        data = self.pending + text
        lines = []
        start = 0
        i = 0
        while i < len(data):
            ch = data[i]
            if ch == "\n":
                lines.append(data[start:i])
                start = i + 1
            elif ch == "\r":
                if i + 1 == len(data):
                    # Might be the first half of \r\n, wait for more data
                    break
                lines.append(data[start:i])
                if data[i + 1] == "\n":
                    i += 1
                start = i + 1
            i += 1
        self.pending = data[start:]
        return lines

    def flush(self) -> List[str]:
        rest = self.pending
        self.pending = ""
        if rest.endswith("\r"):
            rest = rest[:-1]
        return [rest] if rest else []


class CommandChannel:
    def __init__(self, session, authority: str, presentation):
        self.session = session
        self.authority = authority
        self.presentation = presentation
        self.scope = f"CmdTerm({authority})"
        self.channel = None
        self.tty_path: Optional[str] = None
        self.tty_future: Future = Future()
        self.reader_thread: Optional[threading.Thread] = None

    def start(self) -> Future:
        self.channel = self.session.shell()
        self.channel.send(TTY_PROBE_COMMAND)
        self.reader_thread = threading.Thread(
            target=self._reader_loop, name=f"sshfs-cmd-{self.authority}", daemon=True
        )
        self.reader_thread.start()
        return self.tty_future

    def _read_lines(self) -> Iterator[str]:
        channel = self.channel
        splitter = LineSplitter()
        # Multi-byte characters may be split across recv() chunks
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = channel.recv(BUFFER_SIZE)
            if not chunk:
                break
            yield from splitter.feed(decoder.decode(chunk))
        yield from splitter.feed(decoder.decode(b"", final=True))
        yield from splitter.flush()

    def _reader_loop(self) -> None:
        try:
            for line in self._read_lines():
                self.handle_line(line)
        except Exception as exc:
            log_error(f"command channel failed: {exc}", scope=self.scope)
            self._reject(CommandChannelError(f"command channel failed: {exc}"))
            return
        log_debug("command channel closed", scope=self.scope)
        self._reject(CommandChannelError("command channel closed before reporting its TTY"))

    def _reject(self, exc: Exception) -> None:
        if not self.tty_future.done():
            self.tty_future.set_exception(exc)

    def handle_line(self, line: str) -> None:
        log_debug(f"<< {line}", scope=self.scope)
        command = classify_line(line)
        if command is None:
            return
        if command.kind is CommandKind.TTY:
            self._handle_tty(command.args)
        elif command.kind is CommandKind.CODE:
            self._handle_code(command.args)
        else:
            log_error(f"Unrecognized command {command.word} with args: {command.args}", scope=self.scope)

    def _handle_tty(self, path: str) -> None:
        if self.tty_future.done():
            log_debug(f"ignoring repeated TTY path: {path}", scope=self.scope)
            return
        log_info(f"Got TTY path: {path}", scope=self.scope)
        self.tty_path = path
        self.tty_future.set_result(path)

    def _handle_code(self, args: str) -> None:
        parsed = parse_code_args(args)
        if parsed is None:
            log_error(f"Malformed 'code' command args: {args}", scope=self.scope)
            return
        cwd, target = parsed
        log_info(f"Received command to open '{target}' while in '{cwd}'", scope=self.scope)
        absolute_path = resolve_target(cwd, target)
        uri = build_uri(self.authority, absolute_path)
        try:
            stat = self.presentation.stat(uri)
            if stat.is_directory:
                self.presentation.add_workspace_folder(uri)
            else:
                self.presentation.open_text_document(uri)
        except PresentationError as exc:
            self.presentation.show_error_message(f"Error opening {absolute_path}: {exc.code}")
        except Exception as exc:
            self.presentation.show_error_message(f"Error opening {absolute_path}: {str(exc) or type(exc).__name__}")

    def close(self) -> None:
        try:
            if self.channel:
                self.channel.close()
        except Exception as exc:
            log_error(f"error closing command channel: {exc}", scope=self.scope)
        self.channel = None


def upload_profile_script(session) -> None:
    sftp = session.open_sftp()
    try:
        with sftp.file(PROFILE_SCRIPT_PATH, "w") as handle:
            handle.write(PROFILE_SCRIPT)
        sftp.chmod(PROFILE_SCRIPT_PATH, PROFILE_SCRIPT_MODE)
    finally:
        sftp.close()
