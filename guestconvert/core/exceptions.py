# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = " ".join((s or "").split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    return ", ".join(f"{k}={ctx[k]!r}" for k in sorted(ctx.keys()))


@dataclass(eq=False)
class GuestConvertError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - exit code clamped to 0..255
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "GuestConvertError":
        if self.context is None:
            self.context = {}
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        parts = [self.msg or self.__class__.__name__]
        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")
        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message()

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": self.context or {},
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(GuestConvertError):
    """
    The conversion cannot continue; the guest is left as the last saved step put it.
    """
    pass


class UnsupportedGuest(Fatal):
    """
    Guest family, bootloader generation or package layout we have no rules for.
    """
    pass


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, GuestConvertError):
        return e.user_message(include_context=(verbose >= 1), include_cause=(verbose >= 2))
    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
