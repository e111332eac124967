# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/core/logger.py
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from termcolor import colored as _colored

# TRACE sits below DEBUG; used for per-module / per-path chatter during kernel scans.
TRACE = 5
if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE  # type: ignore[attr-defined]
    logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]

_LEVEL_EMOJI = {
    "TRACE": "🧬",
    "DEBUG": "🔍",
    "INFO": "✅",
    "WARNING": "⚠️",
    "ERROR": "💥",
    "CRITICAL": "🧨",
}
_LEVEL_COLOR = {
    "TRACE": "cyan",
    "DEBUG": "blue",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red",
}


def _is_tty() -> bool:
    return bool(getattr(sys.stderr, "isatty", lambda: False)())


def _supports_unicode() -> bool:
    try:
        "✅".encode(getattr(sys.stderr, "encoding", None) or "utf-8")
        return True
    except Exception:
        return False


def c(text: str, color: Optional[str] = None, attrs: Optional[List[str]] = None, *, enable: bool = True) -> str:
    """Colorize text when enabled."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


Ctx = Mapping[str, Any]


def _safe_str(v: Any, *, max_len: int = 240) -> str:
    s = str(v).replace("\n", "\\n").replace("\r", "\\r")
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s


def _format_ctx_kv(ctx: Optional[Ctx]) -> str:
    if not ctx:
        return ""
    parts = [f"{_safe_str(k, max_len=80)}={_safe_str(v)}" for k, v in sorted(ctx.items(), key=lambda kv: str(kv[0]))]
    return " " + " ".join(parts)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that carries a persistent context dict, e.g.

      log = Log.bind(logger, root="/dev/sda2", family="rhel")
      log.info("Kernel catalog built")
    """

    def __init__(self, logger: logging.Logger, ctx: Optional[Ctx] = None):
        super().__init__(logger, extra={"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = kwargs.get("extra") or {}
        merged = dict(self.extra.get("ctx") or {})
        merged.update(extra.get("ctx") or {})
        extra["ctx"] = merged
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **ctx: Any) -> "ContextLoggerAdapter":
        merged = dict(self.extra.get("ctx") or {})
        merged.update(ctx)
        return ContextLoggerAdapter(self.logger, merged)


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    show_ms: bool = False
    show_src: bool = False
    show_pid: bool = False
    unicode: bool = True
    align_level: int = 8


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _now(self, created: float) -> str:
        dt = _dt.datetime.fromtimestamp(created)
        return dt.strftime("%H:%M:%S.%f")[:-3] if self._style.show_ms else dt.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        color_ok = bool(self._style.color and _is_tty())
        emoji = _LEVEL_EMOJI.get(record.levelname, "•") if self._style.unicode else "·"

        lvl = c(record.levelname, _LEVEL_COLOR.get(record.levelname), enable=color_ok)
        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, _LEVEL_COLOR.get(record.levelname), attrs=["bold"], enable=color_ok)

        bits: List[str] = []
        if self._style.show_pid:
            bits.append(f"pid={os.getpid()}")
        if self._style.show_src:
            bits.append(f"{record.module}:{record.lineno}")
        prefix = (" [" + " ".join(bits) + "]") if bits else ""

        line = f"{self._now(record.created)} {emoji} {lvl:<{self._style.align_level}}{prefix} {msg}"
        line += _format_ctx_kv(getattr(record, "ctx", None))
        if record.exc_info:
            exc = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(exc, "red", enable=color_ok)
        return line


class JsonFormatter(logging.Formatter):
    """NDJSON formatter (one JSON object per line)."""

    def format(self, record: logging.LogRecord) -> str:
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = getattr(record, "ctx", None)
        if ctx:
            obj["ctx"] = {str(k): _safe_str(v) for k, v in dict(ctx).items()}
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)


class Log:
    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        if quiet >= 2:
            return logging.ERROR
        if quiet == 1:
            return logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def bind(logger: logging.Logger, **ctx: Any) -> ContextLoggerAdapter:
        return ContextLoggerAdapter(logger, ctx)

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("➡️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any) -> None:
        fn = getattr(logger, "trace", None)
        if callable(fn):
            fn(msg, *args)
        else:
            logger.debug(msg, *args)

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: bool = True,
        json_logs: bool = False,
        logger_name: str = "guestconvert",
    ) -> logging.Logger:
        """
        Configure and return the project's logger.

        -v INFO, -vv DEBUG, -vvv TRACE; -q WARNING, -qq ERROR.
        json_logs=True emits NDJSON on stderr and in the log file.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False

        level = Log._level_from_flags(verbose, quiet)
        logger.setLevel(level)

        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        style = LogStyle(
            color=bool(color),
            show_ms=verbose >= 3,
            show_src=verbose >= 3,
            show_pid=verbose >= 2,
            unicode=_supports_unicode(),
        )

        sh = logging.StreamHandler(stream=sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(JsonFormatter() if json_logs else EmojiFormatter(style))
        logger.addHandler(sh)

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(fp, encoding="utf-8")
            fh.setLevel(level)
            if json_logs:
                fh.setFormatter(JsonFormatter())
            else:
                fh.setFormatter(EmojiFormatter(LogStyle(color=False, show_ms=True, show_src=True, show_pid=True, unicode=style.unicode)))
            logger.addHandler(fh)

        logger.debug("Logger initialized (level=%s)", logging.getLevelName(level))
        return logger
