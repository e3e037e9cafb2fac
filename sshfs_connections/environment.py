import re
from typing import List, Mapping, NamedTuple, Optional, Sequence, Union


class EnvironmentVariable(NamedTuple):
    key: str
    value: str


EnvironmentOverlay = Union[Sequence[EnvironmentVariable], Mapping[str, str], None]


def merge_environment(env: Sequence[EnvironmentVariable], *others: EnvironmentOverlay) -> List[EnvironmentVariable]:
    """Merge overlays into a copy of ``env``.

    A list overlay replaces variables with the same key in place and appends
    new ones. A mapping overlay is appended as-is, so keys already present
    end up duplicated.
    """
    result = list(env)
    for other in others:
        if not other:
            continue
        if isinstance(other, Mapping):
            for key, value in other.items():
                result.append(EnvironmentVariable(key, value))
            continue
        for variable in other:
            variable = EnvironmentVariable(*variable)
            index = next((i for i, v in enumerate(result) if v.key == variable.key), -1)
            if index == -1:
                result.append(variable)
            else:
                result[index] = variable
    return result


# https://stackoverflow.com/a/20053121 way 1
CLEAN_BASH_VALUE = re.compile(r"[\w\-/\\]+", re.ASCII)

def escape_bash_value(value: str) -> str:
    if CLEAN_BASH_VALUE.fullmatch(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def environment_to_export_string(env: Sequence[EnvironmentVariable]) -> str:
    return "; ".join(f"export {escape_bash_value(key)}={escape_bash_value(value)}" for key, value in env)


def join_commands(commands: Union[str, Sequence[str], None], separator: str) -> Optional[str]:
    if not commands:
        return None
    if isinstance(commands, str):
        return commands
    return separator.join(c for c in commands if c and c.strip())
