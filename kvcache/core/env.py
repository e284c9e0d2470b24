from __future__ import annotations

import os
from pathlib import Path


def load_env(path: Path | None = None) -> None:
    """
    Populate os.environ from dotenv-style files.

    ``.env`` fills variables that are not set yet; ``.env.local`` (looked up
    next to it, only when no explicit path is given) may override ``.env``.
    Variables exported by the shell are never touched.
    """
    shell_keys = frozenset(os.environ)

    env_path = path or _default_env_path()
    for key, value in _read_pairs(env_path):
        os.environ.setdefault(key, value)

    if path is None:
        for key, value in _read_pairs(env_path.with_name(".env.local")):
            if key not in shell_keys:
                os.environ[key] = value


def _read_pairs(env_path: Path) -> list[tuple[str, str]]:
    if not env_path.exists():
        return []

    pairs: list[tuple[str, str]] = []
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            pairs.append((key, _unquote(value.strip())))
    return pairs


def _default_env_path() -> Path:
    return Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


__all__ = ["load_env"]
