"""Parameters read from a YAML configuration file."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

import yaml


def _strip_directive(text: str) -> str:
    # Files written for other YAML readers may start with a "%YAML:1.0" line.
    lines = text.splitlines()
    if lines and lines[0].lstrip().startswith("%YAML"):
        lines = lines[1:]
    return "\n".join(lines)


class Config:
    """Key-value parameters, typically loaded with :meth:`load`."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values = dict(values or {})

    @classmethod
    def load(cls, filename) -> "Config":
        """Read a parameter file; raises FileNotFoundError if it does not exist."""
        path = Path(filename)
        if not path.is_file():
            raise FileNotFoundError(f"parameter file {filename} does not exist.")
        data = yaml.safe_load(_strip_directive(path.read_text(encoding="utf-8")))
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"parameter file {filename} does not hold a mapping")
        return cls(data)

    def get(self, key: str) -> Any:
        """Value of a parameter; raises KeyError if it is not set."""
        try:
            return self._values[key]
        except KeyError:
            raise KeyError(f"parameter {key!r} is not set") from None

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"Config({self._values!r})"