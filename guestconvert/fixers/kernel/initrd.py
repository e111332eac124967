# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/kernel/initrd.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from ...core.exceptions import wrap_fatal
from ...core.utils import U, guest_find_program, guest_run
from ...inspection.family import FamilyProfile
from ...inspection.model import GuestFamily, GuestInspection
from .catalog import KernelInfo

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

# Probe order decides the vdX block major numbers on old guests; keep it.
VIRTIO_MODULES: Tuple[str, ...] = ("virtio", "virtio_ring", "virtio_blk", "virtio_net", "virtio_pci")
LEGACY_MODULES: Tuple[str, ...] = ("sym53c8xx",)

INITRAMFS_TOOLS_MODULES = "/etc/initramfs-tools/modules"


def initrd_modules(kernel: KernelInfo) -> Tuple[str, ...]:
    return VIRTIO_MODULES if kernel.supports_virtio else LEGACY_MODULES


class InitrdRebuilder:
    """
    Regenerates the initrd of the chosen kernel so it can find its root
    disk on the new controller. The old image is kept next to it.
    """

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        profile: FamilyProfile,
        *,
        backup_suffix: str = ".pre-conversion",
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.profile = profile
        self.backup_suffix = backup_suffix

    def rebuild(self, kernel: KernelInfo) -> Optional[str]:
        """Returns the builder used, or None when the kernel has no initrd."""
        initrd = kernel.initrd
        if initrd is None:
            self.logger.info("Kernel %s has no initrd; nothing to rebuild", kernel.version)
            return None

        modules = initrd_modules(kernel)
        builder = self._pick_builder()
        if builder is None:
            U.die(self.logger, f"unable to rebuild initrd ({initrd}) because mkinitrd or dracut was not found in the guest")
        name, prog = builder

        backup = initrd + self.backup_suffix
        # dracut and mkinitrd refuse to overwrite an existing image.
        self.g.mv(initrd, backup)
        self.logger.info("Rebuilding %s with %s (modules: %s)", initrd, name, " ".join(modules))
        try:
            self._run_builder(name, prog, kernel, initrd, modules)
        except RuntimeError as e:
            self._restore(backup, initrd)
            raise wrap_fatal(f"failed to rebuild initrd {initrd} with {name}: {e}", e, initrd=initrd, backup=backup) from e
        return name

    def _pick_builder(self) -> Optional[Tuple[str, str]]:
        dracut = guest_find_program(self.g, "dracut")
        if dracut:
            return "dracut", dracut
        legacy = self.profile.legacy_initrd_builder
        if legacy == "suse-mkinitrd":
            prog = guest_find_program(self.g, "mkinitrd")
            if prog:
                return legacy, prog
        elif legacy == "mkinitramfs":
            prog = guest_find_program(self.g, "mkinitramfs")
            if prog:
                return legacy, prog
        prog = guest_find_program(self.g, "mkinitrd")
        if prog:
            return "mkinitrd", prog
        return None

    def _run_builder(self, name: str, prog: str, kernel: KernelInfo, initrd: str, modules: Sequence[str]) -> None:
        if name == "dracut":
            guest_run(self.logger, self.g, [prog, "--add-drivers", " ".join(modules), initrd, kernel.kernel_release])
        elif name == "suse-mkinitrd":
            guest_run(self.logger, self.g, [prog, "-m", " ".join(modules), "-i", initrd, "-k", kernel.vmlinuz])
        elif name == "mkinitramfs":
            self._add_initramfs_tools_modules(modules)
            guest_run(self.logger, self.g, [prog, "-o", initrd, kernel.kernel_release])
        else:
            self._run_generic_mkinitrd(prog, kernel, initrd, modules)

    def _add_initramfs_tools_modules(self, modules: Sequence[str]) -> None:
        existing: List[str] = []
        if self.g.is_file(INITRAMFS_TOOLS_MODULES, followsymlinks=True):
            existing = [U.to_text(ln) for ln in self.g.read_lines(INITRAMFS_TOOLS_MODULES)]
        listed = {ln.strip() for ln in existing if ln.strip() and not ln.lstrip().startswith("#")}
        missing = [m for m in modules if m not in listed]
        if not missing:
            return
        lines = list(existing)
        if lines and lines[-1] == "":
            lines.pop()
        lines.extend(missing)
        self.logger.debug("Adding %s to %s", " ".join(missing), INITRAMFS_TOOLS_MODULES)
        self.g.write(INITRAMFS_TOOLS_MODULES, "\n".join(lines) + "\n")

    def _run_generic_mkinitrd(self, prog: str, kernel: KernelInfo, initrd: str, modules: Sequence[str]) -> None:
        # ext2 is needed by RHEL 3 mkinitrd, loop by RHEL 5; neither is fatal.
        for mod in ("ext2", "loop"):
            try:
                self.g.modprobe(mod)
            except RuntimeError as e:
                self.logger.debug("modprobe %s failed (ignored): %s", mod, e)

        cmd = [prog] + [f"--with={m}" for m in modules] + [initrd, kernel.kernel_release]
        if self.inspection.family is GuestFamily.RHEL and self.inspection.major_version == 4:
            # RHEL 4 mkinitrd misdetects root-on-LVM behind /dev/dm-X symlinks.
            script = f"root_lvm=1 {U.pretty_cmd(cmd)}"
            self.logger.debug("Guest shell: %s", script)
            self.g.sh(script)
        else:
            guest_run(self.logger, self.g, cmd)

    def _restore(self, backup: str, initrd: str) -> None:
        try:
            self.g.rm_f(initrd)
            self.g.mv(backup, initrd)
            self.logger.warning("Restored the previous initrd %s", initrd)
        except RuntimeError as e:
            self.logger.error("Could not restore %s from %s: %s", initrd, backup, e)
