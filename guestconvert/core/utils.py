# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/core/utils.py
from __future__ import annotations

import errno
import json
import logging
import shlex
from typing import Any, List, Optional, Sequence, TYPE_CHECKING

from .exceptions import Fatal

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def json_dump(obj: Any) -> str:
        try:
            return json.dumps(obj, indent=2, sort_keys=True, default=str)
        except Exception:
            return repr(obj)

    @staticmethod
    def banner(logger: logging.Logger, title: str) -> None:
        line = "─" * max(10, len(title) + 2)
        logger.info(line)
        logger.info(f" {title}")
        logger.info(line)

    @staticmethod
    def pretty_cmd(cmd: Sequence[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

    @staticmethod
    def to_text(x: Any) -> str:
        if x is None:
            return ""
        if isinstance(x, bytes):
            return x.decode("utf-8", "replace")
        return str(x)


# Where guest programs live; checked in order.
_PROGRAM_DIRS = ("/sbin", "/usr/sbin", "/bin", "/usr/bin")


def guest_find_program(g: "guestfs.GuestFS", prog: str) -> Optional[str]:
    """
    Absolute path of `prog` inside the guest, or None.
    Absolute names are checked as-is.
    """
    if prog.startswith("/"):
        return prog if g.is_file(prog, followsymlinks=True) else None
    for d in _PROGRAM_DIRS:
        name = f"{d}/{prog}"
        if g.is_file(name, followsymlinks=True):
            return name
    return None


def guest_run(logger: logging.Logger, g: "guestfs.GuestFS", cmd: Sequence[str]) -> str:
    """
    Run a command inside the guest and return its stdout.
    Non-zero exit raises RuntimeError (libguestfs semantics).
    """
    logger.debug("Guest command: %s", U.pretty_cmd(cmd))
    return U.to_text(g.command(list(cmd)))


def guest_run_lines(logger: logging.Logger, g: "guestfs.GuestFS", cmd: Sequence[str]) -> List[str]:
    logger.debug("Guest command: %s", U.pretty_cmd(cmd))
    return [U.to_text(x) for x in g.command_lines(list(cmd))]


def guest_last_error_is_enoent(g: "guestfs.GuestFS") -> bool:
    """True when the last failed libguestfs call failed with ENOENT."""
    try:
        return g.last_errno() == errno.ENOENT
    except RuntimeError:
        return False


def strip_grub_device_prefix(path: str) -> str:
    """'(hd0,0)/vmlinuz-x' -> '/vmlinuz-x'."""
    if path.startswith("(hd"):
        close = path.find(")")
        if close != -1:
            return path[close + 1:]
    return path
