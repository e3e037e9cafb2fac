import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Callable, Dict, List, Optional, Tuple

from sshfs_connections.config import (
    IDLE_CHECK_INTERVAL, TTY_WAIT_TIMEOUT, CMD_PATH_VARIABLE, REMOTE_COMMANDS_FLAG,
    ConfigStore, FileSystemConfig, config_matches, get_flag_boolean
)
from sshfs_connections.command_channel import CommandChannel, upload_profile_script
from sshfs_connections.connection import Connection, IdleTimer
from sshfs_connections.environment import EnvironmentVariable, merge_environment
from sshfs_connections.errors import (
    CommandChannelError, ConfigurationError, ConnectionCancelled, HomeDirectoryError,
    TransportError
)
from sshfs_connections.events import EventEmitter
from sshfs_connections.presentation import ConsolePresentation
from sshfs_connections.ssh import SSHTransport, try_get_home
from sshfs_connections.utils import build_connection_log_path, log_error, log_info

IDLE_CLOSE_REASON = "Idle with no active filesystems/terminals"


class ConnectionManager:
    def __init__(
        self,
        config_store=None,
        transport=None,
        presentation=None,
        idle_interval: float = IDLE_CHECK_INTERVAL,
        log_dir: Optional[str] = None,
    ):
        self.config_store = config_store or ConfigStore()
        self.transport = transport or SSHTransport()
        self.presentation = presentation or ConsolePresentation(self)
        self.idle_interval = idle_interval
        self.log_dir = log_dir

        self.lock = threading.RLock()
        self.connections: List[Connection] = []
        self.pending: Dict[str, Tuple[Future, Optional[FileSystemConfig]]] = {}

        # Fired when a connection got added (and finished connecting)
        self.on_connection_added = EventEmitter("connection_added")
        # Fired when a connection got removed
        self.on_connection_removed = EventEmitter("connection_removed")
        # Fired when a connection got updated (terminal added/removed, ...)
        self.on_connection_updated = EventEmitter("connection_updated")
        # Fired when a pending connection gets added/removed
        self.on_pending_changed = EventEmitter("pending_changed")

    def get_active_connection(self, name: str, config: Optional[FileSystemConfig] = None) -> Optional[Connection]:
        with self.lock:
            if config:
                return next((con for con in self.connections if config_matches(con.config, config)), None)
            return next((con for con in self.connections if con.config.name == name), None)

    def get_active_connections(self) -> List[Connection]:
        with self.lock:
            return list(self.connections)

    def get_pending_connections(self) -> List[Tuple[str, Optional[FileSystemConfig]]]:
        with self.lock:
            return [(name, pending[1]) for name, pending in self.pending.items()]

    def create_connection(self, name: str, config: Optional[FileSystemConfig] = None) -> Future:
        """Return a future for the connection named ``name``.

        An active matching connection is returned right away, a creation
        already in flight for ``name`` is joined, and only otherwise a new
        session is started.
        """
        with self.lock:
            con = self.get_active_connection(name, config)
            if con:
                done: Future = Future()
                done.set_result(con)
                return done
            pending = self.pending.get(name)
            if pending:
                return pending[0]
            future: Future = Future()
            # Running futures cannot be cancelled by callers
            future.set_running_or_notify_cancel()
            self.pending[name] = (future, config)
        self.on_pending_changed.fire()

        thread = threading.Thread(
            target=self._run_creation, args=(name, config, future),
            name=f"sshfs-create-{name}", daemon=True,
        )
        thread.start()
        return future

    def connect(self, name: str, config: Optional[FileSystemConfig] = None, timeout: Optional[float] = None) -> Connection:
        return self.create_connection(name, config).result(timeout)

    def _run_creation(self, name: str, config: Optional[FileSystemConfig], future: Future) -> None:
        try:
            try:
                connection = self._create_connection(name, config)
            finally:
                with self.lock:
                    if name in self.pending and self.pending[name][0] is future:
                        del self.pending[name]
                self.on_pending_changed.fire()
        except Exception as exc:
            log_error(f"Creating connection '{name}' failed: {exc}")
            future.set_exception(exc)
            return
        future.set_result(connection)

    def _create_connection(self, name: str, config: Optional[FileSystemConfig]) -> Connection:
        scope = f"createConnection({name},{'config' if config else 'undefined'})"
        log_info(f"Creating a new connection for '{name}'", scope=scope)
        # Query and calculate the actual config
        if config is None:
            config = next((c for c in self.config_store.load_configs() if c.name == name), None)
        if config is None:
            raise ConfigurationError(f"No configuration with name '{name}' found")
        actual_config = self.config_store.calculate_actual_config(config)
        if not actual_config:
            raise ConnectionCancelled("Connection cancelled")
        # Start the actual SSH connection
        session = self.transport.establish_session(actual_config)
        if not session:
            raise TransportError(f"Could not create SSH session for '{name}'")
        try:
            return self._setup_connection(name, config, actual_config, session, scope)
        except Exception:
            session.destroy()
            raise

    def _setup_connection(self, name, config, actual_config, session, scope) -> Connection:
        home = try_get_home(session)
        if not home:
            self.presentation.show_error_message(f"Couldn't detect the home directory for '{name}'", "Okay")
            raise HomeDirectoryError("Could not detect home directory")

        environment = merge_environment([], config.environment)

        command_channel = None
        command_path = None
        enabled, source = get_flag_boolean(REMOTE_COMMANDS_FLAG, False, actual_config.flags)
        if enabled:
            log_info(f"Flag {REMOTE_COMMANDS_FLAG} provided in '{source}', setting up command terminal", scope=scope)
            command_channel = CommandChannel(session, name, self.presentation)
            try:
                command_path = command_channel.start().result(TTY_WAIT_TIMEOUT)
            except FutureTimeoutError:
                command_channel.close()
                raise CommandChannelError(f"command terminal did not report its TTY within {TTY_WAIT_TIMEOUT}s")
            environment.append(EnvironmentVariable(CMD_PATH_VARIABLE, command_path))
            upload_profile_script(session)

        connection = Connection(
            config=config,
            actual_config=actual_config,
            session=session,
            home=home,
            environment=environment,
            command_channel=command_channel,
            command_path=command_path,
        )
        if self.log_dir:
            connection.log_path = build_connection_log_path(self.log_dir, name)

        with self.lock:
            self.connections.append(connection)
            # Automatically close connection when idle for a while
            connection.idle_timer = IdleTimer(
                self.idle_interval, lambda: self.check_idle(connection), name=f"sshfs-idle-{name}"
            )
            connection.idle_timer.start()
        connection.log_event("connected", home=home, command_path=command_path)
        self.on_connection_added.fire(connection)
        return connection

    def check_idle(self, connection: Connection) -> None:
        """One idle tick: closes a connection idle for two consecutive ticks."""
        with self.lock:
            if connection not in self.connections:
                return
            connection.idle_ticks = connection.idle_ticks - 1 if connection.idle_ticks else 0
            if connection.pending_user_count:
                return  # Still got starting filesystems/terminals on this connection
            connection.filesystems = [
                fs for fs in connection.filesystems
                if not getattr(fs, "closed", False) and not getattr(fs, "closing", False)
            ]
            if connection.filesystems:
                return
            if connection.terminals:
                return
            if connection.idle_ticks != 1:
                connection.idle_ticks = 2
                return
            # idle_ticks == 1, so it has been inactive for at least one full interval.
            # Closing under the lock keeps update() from attaching in between.
            self.close_connection(connection, IDLE_CLOSE_REASON)

    def close_connection(self, connection: Connection, reason: Optional[str] = None) -> None:
        with self.lock:
            if connection not in self.connections:
                return
            self.connections.remove(connection)
            if connection.idle_timer:
                connection.idle_timer.cancel()
        reason_text = f"'{reason}' as reason" if reason else "no reason given"
        log_info(f"Closing connection to '{connection.actual_config.name}' with {reason_text}")
        connection.log_event("closed", reason=reason)
        self.on_connection_removed.fire(connection)
        if connection.command_channel:
            connection.command_channel.close()
        connection.session.destroy()

    # Connections are plain objects, so whatever mutates one (attaching a
    # terminal, ...) calls this to let observers know something changed.
    def update(self, connection: Connection, updater: Optional[Callable[[Connection], None]] = None) -> None:
        if updater:
            with self.lock:
                updater(connection)
        self.on_connection_updated.fire(connection)

    def close_all(self, reason: Optional[str] = None) -> None:
        for connection in self.get_active_connections():
            self.close_connection(connection, reason)
