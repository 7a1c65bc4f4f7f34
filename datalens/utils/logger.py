# datalens/utils/logger.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from loguru import logger
import logging, sys, os, pathlib

# Libraries whose stdlib loggers are routed into loguru
BRIDGED_LOGGERS = ("httpx", "openai", "google", "streamlit")

_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[mod]}</cyan>:{line} | {extra[service]}/{extra[environment]} | "
    "<level>{message}</level>"
)

# === stdlib -> loguru ===
class _ToLoguru(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: object = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame, depth = frame.f_back, depth + 1
        logger.opt(depth=depth, exception=record.exc_info).bind(mod=record.name).log(level, record.getMessage())

def _bridge_stdlib(level: str) -> None:
    root = logging.getLogger()
    root.handlers = [_ToLoguru()]
    root.setLevel(level)
    for name in BRIDGED_LOGGERS:
        lib_logger = logging.getLogger(name)
        lib_logger.handlers = [_ToLoguru()]
        lib_logger.propagate = False
        lib_logger.setLevel(level)

# === settings ===
def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}

@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    serialize: bool = False
    file: Optional[str] = None
    rotation: str = "5 MB"
    retention: str = "7 days"
    enqueue: bool = False
    service: str = "DataLens"
    environment: str = "dev"

    @classmethod
    def from_env(cls) -> "LoggingSettings":
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            serialize=_flag("LOG_JSON"),
            file=os.getenv("LOG_FILE") or None,
            rotation=os.getenv("LOG_ROTATION", "5 MB"),
            retention=os.getenv("LOG_RETENTION", "7 days"),
            enqueue=_flag("LOG_ENQUEUE"),
            service=os.getenv("SERVICE_NAME", "DataLens"),
            environment=os.getenv("ENVIRONMENT") or os.getenv("ENV", "dev"),
        )

_active = LoggingSettings()

def _with_defaults(record: dict) -> bool:
    extra = record["extra"]
    extra.setdefault("mod", record["name"] or "datalens")
    extra.setdefault("service", _active.service)
    extra.setdefault("environment", _active.environment)
    return True

# === public ===
def configure_logger(settings: Optional[LoggingSettings] = None):
    """
    (Re)install the loguru sinks: stderr (text or JSON) and, when LOG_FILE is
    set, a rotating file. Stdlib logging of the LLM/UI libraries is routed in.
    """
    global _active
    _active = settings or LoggingSettings.from_env()
    logger.remove()
    logger.add(
        sys.stderr,
        level=_active.level,
        format=_FORMAT,
        serialize=_active.serialize,
        enqueue=_active.enqueue,
        filter=_with_defaults,
    )
    if _active.file:
        target = pathlib.Path(_active.file)
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            target,
            level="DEBUG",
            rotation=_active.rotation,
            retention=_active.retention,
            enqueue=_active.enqueue,
            filter=_with_defaults,
        )
    _bridge_stdlib(_active.level)
    return logger.bind(service=_active.service, environment=_active.environment)

def get_logger(name: str = "datalens"):
    """Logger whose records carry `mod=name`."""
    return logger.bind(mod=name)
