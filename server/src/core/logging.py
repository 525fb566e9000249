import logging
import time
from copy import deepcopy
from typing import Any, Iterable, Optional

from uvicorn.config import LOGGING_CONFIG

_PREFIX = "server.src."
_ASCTIME = "%(asctime)s.%(msecs)03d"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name_or_obj: Any) -> logging.Logger:
    """Return a logger named after the module, without the "server.src." prefix.

    Accepts either a module/string or an object with __name__, so overrides
    such as "services.dashboard_cycle:DEBUG" stay short.
    """
    if hasattr(name_or_obj, "__name__"):
        name = getattr(name_or_obj, "__name__")
    else:
        name = str(name_or_obj)

    if name.startswith(_PREFIX):
        name = name[len(_PREFIX):]

    return logging.getLogger(name)


logger = get_logger(__name__)


def parse_logger_override(raw: str) -> Optional[tuple[str, str]]:
    """Parse a NAME:LEVEL pair. Returns None for malformed input or unknown levels."""
    if ":" not in raw:
        return None
    name, level = raw.split(":", 1)
    name = name.strip().strip('"').strip("'")
    level = level.strip().strip('"').strip("'").upper()
    try:
        logging._checkLevel(level)
    except (ValueError, TypeError):
        logger.warning("Skipping invalid log level '%s' for logger '%s'", level, name)
        return None
    if not name:
        return None
    return name, level


def _normalize_format(fmt_str: str) -> str:
    # Every line starts with a UTC timestamp and carries the logger name.
    if "%(message)s" in fmt_str:
        if "%(asctime)s" not in fmt_str:
            fmt_str = f"{_ASCTIME} {fmt_str}"
        if "%(name)s" not in fmt_str:
            fmt_str = fmt_str.replace("%(message)s", "%(name)s: %(message)s")
        return fmt_str

    level_token = "%(levelprefix)s" if "%(levelprefix)s" in fmt_str else "%(levelname)s"
    if level_token not in fmt_str:
        return fmt_str
    before, after = fmt_str.split(level_token, 1)
    rest = " ".join(part for part in (before.strip(), after.strip()) if part)
    return f"{_ASCTIME} {level_token} %(name)s: {rest}".rstrip()


def build_log_config(level: str, overrides: Iterable[str] = ()) -> dict[str, Any]:
    """Derive a dictConfig from uvicorn's defaults.

    The root logger and the uvicorn loggers share `level`; `overrides` are
    NAME:LEVEL strings applied in order, so later entries win.
    """
    desired = level.upper()
    config = deepcopy(LOGGING_CONFIG)
    config.setdefault("root", {"level": desired, "handlers": ["default"]})
    config["root"]["level"] = desired
    loggers = config.setdefault("loggers", {})

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        entry = loggers.setdefault(
            name,
            {"handlers": ["default"], "propagate": name != "uvicorn.access"},
        )
        entry["level"] = desired

    for formatter in config.get("formatters", {}).values():
        fmt_str = formatter.get("fmt")
        if not fmt_str:
            continue
        formatter["fmt"] = _normalize_format(fmt_str)
        formatter.setdefault("datefmt", _DATEFMT)

    for raw in overrides:
        parsed = parse_logger_override(raw)
        if parsed is None:
            continue
        name, override_level = parsed
        loggers.setdefault(name, {})["level"] = override_level

    # asctime is rendered in UTC
    logging.Formatter.converter = time.gmtime
    return config
