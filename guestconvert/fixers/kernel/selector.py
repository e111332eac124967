# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/kernel/selector.py
from __future__ import annotations

import logging
from typing import Dict, List, Sequence, TYPE_CHECKING

from ...core.utils import U, guest_last_error_is_enoent
from ...inspection.family import FamilyProfile
from ...inspection.model import GuestInspection
from ...inspection.versions import application_sort_key
from ..bootloader.grub import Bootloader
from .catalog import FileId, KernelInfo

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore


class KernelSelector:
    """
    Picks the kernel the converted guest should boot.

    Only kernels the bootloader actually offers are considered. A kernel
    with virtio drivers always beats one without, whatever their versions.
    """

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        profile: FamilyProfile,
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.profile = profile

    def resolve(self, paths: Sequence[str], catalog: Sequence[KernelInfo]) -> List[KernelInfo]:
        by_id: Dict[FileId, KernelInfo] = {k.vmlinuz_id: k for k in catalog}
        out: List[KernelInfo] = []
        for path in paths:
            try:
                st = self.g.statns(path)
            except RuntimeError as e:
                if guest_last_error_is_enoent(self.g):
                    self.logger.warning("Bootloader entry %s does not exist; ignoring it", path)
                    continue
                U.die(self.logger, f"cannot stat bootloader kernel {path}: {e}")
            ki = by_id.get((int(st["st_dev"]), int(st["st_ino"])))
            if ki is None:
                self.logger.debug("Bootloader entry %s is not from an installed kernel package; ignoring it", path)
                continue
            out.append(ki)

        if not out:
            U.die(
                self.logger,
                "no kernels could be found in the bootloader configuration. "
                "This probably indicates a bug or that the bootloader config is broken.",
            )
        self.logger.debug("Kernels offered by the bootloader:")
        for ki in out:
            self.logger.debug("    %s", ki.describe())
        return out

    def select_best(self, kernels: Sequence[KernelInfo]) -> KernelInfo:
        candidates = [k for k in kernels if not k.is_xen_kernel]
        if not candidates:
            U.die(self.logger, "only Xen kernels are installed in this guest. Install a non-Xen kernel first.")

        version_key = application_sort_key(self.inspection.package_format)
        # max() keeps the first of equal keys, i.e. the bootloader's order.
        best = max(candidates, key=lambda k: (k.supports_virtio, version_key(k.app)))
        self.logger.info("Best kernel for this guest: %s", best.name + " " + best.version)
        return best

    def activate(self, best: KernelInfo, kernels: Sequence[KernelInfo], bootloader: Bootloader) -> bool:
        """Make `best` the boot default. Returns True when the default changed."""
        if kernels and kernels[0] is best:
            self.logger.debug("%s is already the default kernel", best.vmlinuz)
            return False
        self.logger.info("Setting default kernel: %s", best.vmlinuz)
        return bootloader.set_default(best.vmlinuz)
