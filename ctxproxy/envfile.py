"""Loader for KEY=VALUE env files (MCP server secrets, upstream keys)"""
from pathlib import Path
from typing import Mapping


class EnvFileError(ValueError):
    """Raised for a line that is not a comment, blank, or KEY=VALUE."""

    def __init__(self, path, line_no: int, line: str):
        self.path = str(path)
        self.line_no = line_no
        self.line = line
        super().__init__(f"{self.path}:{line_no}: invalid env line (expected KEY=VALUE): {line!r}")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def load_env_file(path) -> dict[str, str]:
    """Parse an env file into a dict.

    Blank lines and lines starting with '#' are skipped. Whitespace around
    keys and values is stripped, and one pair of matching quotes is removed
    from the value. Raises FileNotFoundError if the file does not exist.
    """
    env = {}
    text = Path(path).read_text()
    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise EnvFileError(path, line_no, raw)
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            raise EnvFileError(path, line_no, raw)
        env[key] = _unquote(value.strip())
    return env


def merge_env(file_env: Mapping[str, str], overrides: Mapping[str, str]) -> dict[str, str]:
    """File values first, then overrides on top."""
    merged = dict(file_env)
    merged.update(overrides)
    return merged
