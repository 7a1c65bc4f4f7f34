# datalens/utils/secrets.py
from __future__ import annotations
# Configuration lookup order: st.secrets, then ENV (.env loaded once), then the default.
# A dotted path ("openai.api_key") addresses a table in secrets.toml.

from typing import Any, Mapping, Optional, List
import os, pathlib

import streamlit as st
from streamlit.errors import StreamlitAPIException
from dotenv import load_dotenv

_DOTENV_FLAG = "_DATALENS_DOTENV_LOADED"
_TRUE = frozenset({"1", "true", "yes", "y", "on"})
_FALSE = frozenset({"0", "false", "no", "n", "off"})


# === SOURCES ===
def _streamlit_secrets() -> Mapping[str, Any]:
    # no secrets.toml -> empty mapping
    try:
        return dict(st.secrets)
    except (FileNotFoundError, StreamlitAPIException):
        return {}

def _from_secrets(secrets: Mapping[str, Any], path: str) -> Optional[Any]:
    current: Any = secrets
    for key in filter(None, path.split(".")):
        current = current.get(key) if isinstance(current, Mapping) else None
        if current is None:
            return None
    return None if current is secrets else current

def _env_candidates(path: str) -> List[str]:
    """ENV names for a path; "openai.api_key" -> API_KEY, OPENAI_API_KEY, openai.api_key."""
    head, _, tail = path.partition(".")
    if not tail:
        return [path, path.upper()]
    return [tail.upper(), f"{head}_{tail}".upper(), path]

def _from_env(path: str) -> Optional[str]:
    ensure_dotenv_loaded()
    return next((os.environ[k] for k in _env_candidates(path) if os.environ.get(k)), None)

def _coerce_bool(val: Any) -> Optional[bool]:
    if isinstance(val, bool):
        return val
    if isinstance(val, str):
        token = val.strip().lower()
        if token in _TRUE:
            return True
        if token in _FALSE:
            return False
    return None


# === .ENV ===
def ensure_dotenv_loaded() -> None:
    """Load the nearest .env (cwd, then parent) once per process; ENV wins."""
    if os.environ.get(_DOTENV_FLAG) == "1":
        return
    here = pathlib.Path.cwd()
    found = next((d / ".env" for d in (here, here.parent) if (d / ".env").is_file()), None)
    if found is not None:
        load_dotenv(dotenv_path=found, override=False)
    os.environ[_DOTENV_FLAG] = "1"


# === PUBLIC API ===
def get_secret(path: str, default: Optional[Any] = None) -> Optional[Any]:
    value = _from_secrets(_streamlit_secrets(), path)
    if value in (None, ""):
        value = _from_env(path)
    if value in (None, ""):
        return default
    return value.strip() if isinstance(value, str) else value

def _typed(path: str, default: Any, cast) -> Any:
    try:
        return cast(get_secret(path, default))
    except (TypeError, ValueError):
        return default

def get_int(path: str, default: int) -> int:
    return _typed(path, default, int)

def get_float(path: str, default: float) -> float:
    return _typed(path, default, float)

def get_bool(path: str, default: bool) -> bool:
    coerced = _coerce_bool(get_secret(path, default))
    return default if coerced is None else coerced
