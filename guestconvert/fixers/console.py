# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/console.py
from __future__ import annotations

import logging
import re
from typing import Optional

from ..core.augeas import AugeasTree
from .bootloader.grub import Bootloader

INITTAB_PROCESSES = "/files/etc/inittab/*/process"
SECURETTY_ROWS = "/files/etc/securetty/*"

_XEN_CONSOLE = re.compile(r"\b[xh]vc0\b")
_XEN_TTYS = ("xvc0", "hvc0")


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0]


class ConsoleConfigurer:
    """
    Moves getty/securetty/kernel console references from the Xen PV
    console (xvc0, hvc0) to a serial port, or drops them altogether.
    Running either operation twice changes nothing the second time.
    """

    def __init__(self, logger: logging.Logger, augeas: AugeasTree, bootloader: Bootloader, serial: str = "ttyS0"):
        self.logger = logger
        self.augeas = augeas
        self.bootloader = bootloader
        self.serial = serial

    def configure(self) -> int:
        def _process(value: str) -> Optional[str]:
            return _XEN_CONSOLE.sub(self.serial, value) if _XEN_CONSOLE.search(value) else None

        def _tty(value: str) -> Optional[str]:
            return self.serial if value in _XEN_TTYS else None

        changed = self.augeas.rewrite_matching(INITTAB_PROCESSES, _process)
        changed += self.augeas.rewrite_matching(SECURETTY_ROWS, _tty)
        if changed:
            self.logger.info("Pointed %d console reference(s) at %s", changed, self.serial)
            self.augeas.save()
        self.bootloader.configure_console(self.serial)
        return changed

    def remove(self) -> int:
        ttys = dict.fromkeys(_XEN_TTYS + ("ttyS0", self.serial))
        refs = re.compile(r"\b(" + "|".join(re.escape(t) for t in ttys) + r")\b")
        removed = self.augeas.remove_until_fixpoint(
            INITTAB_PROCESSES,
            lambda _path, value: bool(refs.search(value)),
            target=_parent,
        )
        removed += self.augeas.remove_until_fixpoint(
            SECURETTY_ROWS,
            lambda _path, value: value in _XEN_TTYS,
        )
        if removed:
            self.logger.info("Removed %d console reference(s)", removed)
            self.augeas.save()
        self.bootloader.remove_console()
        return removed
