import sys
import time
import argparse
from sshfs_connections.config import config, load_configs
from sshfs_connections.utils import log_error, log_info

manager = None


class HoldHandle:
    """Filesystem-like handle keeping a connection out of idle eviction."""

    def __init__(self):
        self.closed = False
        self.closing = False


def _describe(connection) -> str:
    info = connection.info()
    return f"{info['name']} (home={info['home']}, fs={info['filesystems']}, terminals={info['terminals']})"


def cmd_list(args) -> int:
    configs = load_configs(args.config)
    if not configs:
        log_error(f"no configs found in {args.config or config.CONFIG_PATH}")
        return 1
    for profile in configs:
        print(f"{profile.name}\t{profile.username or ''}@{profile.host or profile.name}:{profile.port}")
    return 0


def cmd_home(args) -> int:
    connection = manager.connect(args.name, timeout=args.timeout)
    print(connection.home)
    manager.close_connection(connection, "home lookup done")
    return 0


def cmd_connect(args) -> int:
    manager.on_connection_added.subscribe(lambda con: log_info(f"added {_describe(con)}"))
    manager.on_connection_removed.subscribe(lambda con: log_info(f"removed {con.name}"))
    manager.on_connection_updated.subscribe(lambda con: log_info(f"updated {_describe(con)}"))
    manager.on_pending_changed.subscribe(
        lambda: log_info(f"pending: {[name for name, _ in manager.get_pending_connections()]}")
    )

    connection = manager.connect(args.name, timeout=args.timeout)
    hold = HoldHandle()
    manager.update(connection, lambda con: con.filesystems.append(hold))
    if connection.command_path:
        log_info(f"remote commands enabled, run 'source /tmp/.Kelvin_sshfs' with "
                 f"KELVIN_SSHFS_CMD_PATH={connection.command_path} on the remote side")
    try:
        while connection in manager.get_active_connections():
            time.sleep(0.5)
        log_error(f"connection '{args.name}' went away")
        return 1
    except KeyboardInterrupt:
        hold.closed = True
        manager.close_connection(connection, "interrupted by user")
        return 0


def main() -> None:
    global manager
    from sshfs_connections.manager import ConnectionManager
    from sshfs_connections.config import ConfigStore

    # Pre-load from environment
    config.load_from_env()

    parser = argparse.ArgumentParser(
        description="SSH FS connection manager (deduplicated sessions, idle eviction, remote 'code' commands)"
    )
    parser.add_argument("--config", help="Path to the JSON connection profiles (overrides SSHFS_CONFIG env)")
    parser.add_argument("--flag", action="append", default=[], help="Global flag, e.g. +REMOTE_COMMANDS (repeatable)")
    parser.add_argument("--log-dir", help="Directory for per-connection event logs (overrides SSHFS_LOG_DIR env)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for a connection")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List connection profiles")
    home = sub.add_parser("home", help="Print the remote home directory")
    home.add_argument("name")
    connect = sub.add_parser("connect", help="Connect and keep the connection open until Ctrl-C")
    connect.add_argument("name")
    args = parser.parse_args()

    if args.config:
        config.CONFIG_PATH = args.config
    if args.flag:
        config.FLAGS = config.FLAGS + args.flag
    if args.log_dir:
        config.LOG_DIR = args.log_dir
    if args.debug:
        config.DEBUG = True

    manager = ConnectionManager(config_store=ConfigStore(config.CONFIG_PATH), log_dir=config.LOG_DIR)
    handlers = {"list": cmd_list, "home": cmd_home, "connect": cmd_connect}
    try:
        code = handlers[args.command](args)
    except Exception as exc:
        log_error(f"{args.command} failed: {exc}")
        code = 1
    finally:
        manager.close_all("shutting down")
    sys.exit(code)


if __name__ == "__main__":
    main()
