import threading
from typing import Any, Callable, List

from sshfs_connections.utils import log_error

Listener = Callable[..., Any]


class EventEmitter:
    """Publish/subscribe point. Late subscribers do not see past events."""

    def __init__(self, name: str):
        self.name = name
        self.lock = threading.Lock()
        self.listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self.lock:
            self.listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self.listeners:
                    self.listeners.remove(listener)

        return unsubscribe

    def fire(self, *args: Any) -> None:
        with self.lock:
            listeners = list(self.listeners)
        for listener in listeners:
            try:
                listener(*args)
            except Exception as exc:
                log_error(f"{self.name} listener error: {exc}")
