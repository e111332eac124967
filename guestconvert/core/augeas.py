# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/core/augeas.py
"""
Thin wrapper over the libguestfs Augeas API (g.aug_*).

The tree is a path-addressable view over the guest's text config files.
Edits are only written back by save(); load() discards unsaved edits.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, TYPE_CHECKING

from .utils import U

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

# AUG_SAVE_BACKUP: keep <file>.augsave next to every file we rewrite.
AUG_SAVE_BACKUP = 1


class AugeasTree:
    def __init__(self, logger: logging.Logger, g: "guestfs.GuestFS"):
        self.logger = logger
        self.g = g
        self._initialized = False

    def init(self) -> None:
        if self._initialized:
            return
        self.g.aug_init("/", AUG_SAVE_BACKUP)
        self._initialized = True
        self._log_load_errors()

    def load(self) -> None:
        """Re-read every file from disk (drops unsaved edits)."""
        self.g.aug_load()
        self._log_load_errors()

    def _log_load_errors(self) -> None:
        try:
            errs = self.g.aug_match("/augeas/files//error")
        except RuntimeError:
            return
        for e in errs:
            self.logger.debug("Augeas load error: %s", U.to_text(e))

    def ensure_included(self, lens: str, path: str) -> bool:
        """
        Add `path` to the lens' include list if the default rules miss it.
        Returns True when the tree had to be reloaded.
        """
        incls = self.match(f"/augeas/load/{lens}/incl")
        if any(self.get(i) == path for i in incls):
            return False
        self.logger.debug("Augeas: adding %s to lens %s", path, lens)
        self.g.aug_set(f"/augeas/load/{lens}/incl[last()+1]", path)
        self.load()
        return True

    def match(self, expr: str) -> List[str]:
        return [U.to_text(p) for p in self.g.aug_match(expr)]

    def get(self, path: str) -> str:
        return U.to_text(self.g.aug_get(path))

    def get_or_none(self, path: str) -> Optional[str]:
        try:
            return self.get(path)
        except RuntimeError:
            return None

    def set(self, path: str, value: str) -> None:
        self.g.aug_set(path, value)

    def insert(self, path: str, label: str, *, before: bool) -> None:
        self.g.aug_insert(path, label, before)

    def rm(self, path: str) -> int:
        return int(self.g.aug_rm(path) or 0)

    def save(self) -> None:
        self.g.aug_save()

    def rewrite_matching(self, expr: str, rewrite: Callable[[str], Optional[str]]) -> int:
        """
        Set every node matched by `expr` to rewrite(value); None means leave it.
        Only nodes whose value actually changes are written.
        """
        changed = 0
        for path in self.match(expr):
            old = self.get(path)
            new = rewrite(old)
            if new is None or new == old:
                continue
            self.set(path, new)
            changed += 1
        return changed

    def remove_until_fixpoint(
        self,
        expr: str,
        pred: Callable[[str, str], bool],
        *,
        target: Callable[[str], str] = lambda p: p,
    ) -> int:
        """
        Remove target(path) for the first node matching `expr` whose value
        satisfies pred(path, value), then re-query, until nothing is left.
        aug_rm invalidates earlier aug_match results, hence the re-query.
        """
        removed = 0
        while True:
            hit = None
            for path in self.match(expr):
                if pred(path, self.get(path)):
                    hit = path
                    break
            if hit is None:
                return removed
            if self.rm(target(hit)) == 0:
                raise RuntimeError(f"augeas: could not remove {target(hit)}")
            removed += 1
