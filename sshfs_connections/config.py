import os
import copy
import json
import getpass
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple, Union
import paramiko

from sshfs_connections.environment import EnvironmentVariable

# ========= Static config =========
CONNECT_TIMEOUT = 10
KEEPALIVE_INTERVAL = 30
BUFFER_SIZE = 4096
IDLE_CHECK_INTERVAL = 5.0
TTY_WAIT_TIMEOUT = 30.0
EXEC_TIMEOUT = 15.0

HOME_PROBE_COMMAND = "echo Home: ~"
TTY_PROBE_COMMAND = "echo ::sshfs:TTY:$(tty)\n"
PROFILE_SCRIPT_PATH = "/tmp/.Kelvin_sshfs"
PROFILE_SCRIPT_MODE = 0o755
CMD_PATH_VARIABLE = "KELVIN_SSHFS_CMD_PATH"
REMOTE_COMMANDS_FLAG = "REMOTE_COMMANDS"

DEFAULT_CONFIG_PATH = os.path.join("~", ".sshfs", "connections.json")
DEFAULT_SSH_CONFIG_PATH = os.path.join("~", ".ssh", "config")

# ========= Runtime Configuration =========
class RuntimeConfig:
    def __init__(self):
        self.CONFIG_PATH: str = DEFAULT_CONFIG_PATH
        self.SSH_CONFIG_PATH: str = DEFAULT_SSH_CONFIG_PATH
        self.FLAGS: List[str] = []
        self.LOG_DIR: Optional[str] = None
        self.DEBUG: bool = False

    def load_from_env(self):
        self.CONFIG_PATH = os.environ.get("SSHFS_CONFIG", self.CONFIG_PATH)
        self.SSH_CONFIG_PATH = os.environ.get("SSHFS_SSH_CONFIG", self.SSH_CONFIG_PATH)
        self.LOG_DIR = os.environ.get("SSHFS_LOG_DIR", self.LOG_DIR)

        flags_env = os.environ.get("SSHFS_FLAGS")
        if flags_env is not None:
            self.FLAGS = [flag.strip() for flag in flags_env.split(",") if flag.strip()]

        debug_env = os.environ.get("SSHFS_DEBUG")
        if debug_env is not None:
            self.DEBUG = debug_env.lower() in ("true", "1", "yes")

# Global instance
config = RuntimeConfig()

# ========= Connection profiles =========
@dataclass
class FileSystemConfig:
    name: str
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    # True means "prompt for it" when calculating the actual config
    password: Union[str, bool, None] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    agent: bool = True
    verify_host_key: bool = True
    environment: Union[List[EnvironmentVariable], Dict[str, str], None] = None
    flags: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileSystemConfig":
        if not isinstance(data, dict) or not data.get("name"):
            raise ValueError("profile must be an object with a 'name'")
        known = {f.name for f in fields(cls)} - {"extra", "environment"}
        kwargs = {key: value for key, value in data.items() if key in known}
        extra = {key: value for key, value in data.items() if key not in known and key != "environment"}
        environment = data.get("environment")
        if isinstance(environment, list):
            environment = [
                EnvironmentVariable(item["key"], str(item["value"])) if isinstance(item, dict)
                else EnvironmentVariable(*item)
                for item in environment
            ]
        elif isinstance(environment, dict):
            environment = {str(key): str(value) for key, value in environment.items()}
        return cls(environment=environment, extra=extra, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "private_key_path": self.private_key_path,
            "passphrase": self.passphrase,
            "agent": self.agent,
            "verify_host_key": self.verify_host_key,
            "flags": list(self.flags),
        }
        if isinstance(self.environment, dict):
            data["environment"] = dict(self.environment)
        elif self.environment is not None:
            data["environment"] = [{"key": k, "value": v} for k, v in self.environment]
        data.update(self.extra)
        return data


def config_matches(a: Optional[FileSystemConfig], b: Optional[FileSystemConfig]) -> bool:
    if not a or not b:
        return False
    if a is b:
        return True
    if a.name != b.name:
        return False
    # Keys starting with '_' are bookkeeping (e.g. where the profile was loaded from)
    left = {k: v for k, v in a.to_dict().items() if not k.startswith("_")}
    right = {k: v for k, v in b.to_dict().items() if not k.startswith("_")}
    return left == right


def load_configs(path: Optional[str] = None) -> List[FileSystemConfig]:
    from sshfs_connections.utils import log_error
    path = os.path.expanduser(path or config.CONFIG_PATH)
    if not os.path.isfile(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except Exception as exc:
        log_error(f"could not read configs from {path}: {exc}")
        return []
    if isinstance(raw, dict):
        raw = raw.get("configs", [])
    if not isinstance(raw, list):
        log_error(f"expected a list of configs in {path}")
        return []

    result = []
    for index, item in enumerate(raw):
        try:
            profile = FileSystemConfig.from_dict(item)
        except Exception as exc:
            log_error(f"skipping config #{index} in {path}: {exc}")
            continue
        profile.extra.setdefault("_location", path)
        result.append(profile)
    return result

# ========= Flags =========
def _parse_flag(raw: str) -> Tuple[str, Optional[str]]:
    raw = raw.strip()
    if raw.startswith("+"):
        return raw[1:], "true"
    if raw.startswith("-"):
        return raw[1:], "false"
    if "=" in raw:
        name, value = raw.split("=", 1)
        return name.strip(), value.strip()
    return raw, None


def get_flag(flag: str, target_flags: Optional[List[str]] = None) -> Optional[Tuple[Optional[str], str]]:
    """Find ``flag`` in the profile flags, then in the global flags.

    Returns ``(value, source)`` where value is ``None`` for a bare flag,
    or ``None`` when the flag is not set anywhere.
    """
    flag = flag.upper()
    sources = [(target_flags or [], "config"), (config.FLAGS, "environment SSHFS_FLAGS")]
    for flags, source in sources:
        # Last occurrence wins within one source
        for raw in reversed(flags):
            name, value = _parse_flag(raw)
            if name.upper() == flag:
                return value, source
    return None


def get_flag_boolean(flag: str, default: bool, target_flags: Optional[List[str]] = None) -> Tuple[bool, str]:
    from sshfs_connections.utils import log_error, to_bool
    found = get_flag(flag, target_flags)
    if found is None:
        return default, "default"
    value, source = found
    if value is None:
        return True, source
    parsed = to_bool(value, None)
    if parsed is None:
        log_error(f"Could not parse boolean flag {flag}={value} from {source}, using default {default}")
        return default, source
    return parsed, source

# ========= Actual config =========
def _apply_ssh_config(actual: FileSystemConfig, ssh_config_path: str) -> None:
    path = os.path.expanduser(ssh_config_path)
    if not os.path.isfile(path):
        return
    ssh_config = paramiko.SSHConfig.from_path(path)
    entry = ssh_config.lookup(actual.host or actual.name)
    if entry.get("hostname"):
        actual.host = entry["hostname"]
    if entry.get("port") and actual.port == 22:
        actual.port = int(entry["port"])
    if entry.get("user") and not actual.username:
        actual.username = entry["user"]
    if entry.get("identityfile") and not actual.private_key_path:
        actual.private_key_path = entry["identityfile"][0]


def calculate_actual_config(profile: FileSystemConfig) -> Optional[FileSystemConfig]:
    """Resolve a stored profile into something the transport can use.

    Returns ``None`` when the user cancelled a prompt.
    """
    actual = copy.deepcopy(profile)
    if not actual.host:
        actual.host = actual.name
    _apply_ssh_config(actual, config.SSH_CONFIG_PATH)
    if not actual.username:
        actual.username = getpass.getuser()
    if actual.private_key_path:
        actual.private_key_path = os.path.expanduser(actual.private_key_path)
    if actual.password is True:
        try:
            password = getpass.getpass(f"Password for {actual.username}@{actual.host}: ")
        except (EOFError, KeyboardInterrupt):
            return None
        if not password:
            return None
        actual.password = password
    elif actual.password is False:
        actual.password = None
    return actual


class ConfigStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path

    def load_configs(self) -> List[FileSystemConfig]:
        return load_configs(self.path)

    def calculate_actual_config(self, profile: FileSystemConfig) -> Optional[FileSystemConfig]:
        return calculate_actual_config(profile)
