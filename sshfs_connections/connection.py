import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sshfs_connections.config import FileSystemConfig
from sshfs_connections.environment import EnvironmentVariable
from sshfs_connections.utils import iso_now, json_line, log_error


class IdleTimer:
    """Runs ``callback`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "sshfs-idle"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self.thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self.thread.start()

    def _loop(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as exc:
                log_error(f"{self.name} tick error: {exc}")

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        self.stop_event.set()


@dataclass(eq=False)
class Connection:
    config: FileSystemConfig
    actual_config: FileSystemConfig
    session: Any
    home: str
    environment: List[EnvironmentVariable]
    terminals: List[Any] = field(default_factory=list)
    filesystems: List[Any] = field(default_factory=list)
    pending_user_count: int = 0
    idle_timer: Optional[IdleTimer] = None
    idle_ticks: int = 0
    command_channel: Any = None
    command_path: Optional[str] = None
    log_path: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __setattr__(self, key: str, value: Any) -> None:
        if key == "home" and "home" in self.__dict__:
            raise AttributeError("home cannot change once the connection exists")
        super().__setattr__(key, value)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def authority(self) -> str:
        return self.config.name

    def add_pending_user(self) -> None:
        self.pending_user_count += 1

    def remove_pending_user(self) -> None:
        if self.pending_user_count <= 0:
            log_error(f"pending user count of '{self.name}' would drop below zero")
            return
        self.pending_user_count -= 1

    def log_event(self, event: str, **payload: Any) -> None:
        if not self.log_path:
            return
        data: Dict[str, Any] = {"ts": iso_now(), "event": event, "name": self.name}
        data.update(payload)
        json_line(self.log_path, data)

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "host": self.actual_config.host,
            "home": self.home,
            "terminals": len(self.terminals),
            "filesystems": len(self.filesystems),
            "pending_users": self.pending_user_count,
            "command_path": self.command_path,
            "created_at": self.created_at.isoformat(),
        }
