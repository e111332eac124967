# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/efi.py
"""
Move a guest that boots through UEFI over to BIOS booting.

The target runs with legacy BIOS firmware, so the ESP (partition 1) is
turned into a BIOS boot partition and grub is installed into the MBR.
"""
from __future__ import annotations

import logging
from typing import Optional, TYPE_CHECKING

from ..core.augeas import AugeasTree
from ..core.exceptions import wrap_fatal
from ..core.utils import U, guest_find_program, guest_run
from ..inspection.family import BootloaderGeneration, FamilyProfile
from ..inspection.model import GuestInspection
from .bootloader.grub import Bootloader
from .packages import GuestPackages

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

EFI_SYSTEM_GUID = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
BIOS_BOOT_GUID = "21686148-6449-6E6F-744E-656564454649"

ESP_PARTNUM = 1
ESP_FSTAB_EXPR = "/files/etc/fstab/*[file = '/boot/efi']"


class EFIUnconfigurer:
    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        profile: FamilyProfile,
        augeas: AugeasTree,
        packages: GuestPackages,
        bootloader: Bootloader,
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.profile = profile
        self.augeas = augeas
        self.packages = packages
        self.bootloader = bootloader

    def find_efi_device(self) -> Optional[str]:
        """First whole device whose partition 1 is an EFI System Partition."""
        for dev in self.g.list_devices():
            dev = U.to_text(dev)
            try:
                guid = U.to_text(self.g.part_get_gpt_type(dev, ESP_PARTNUM))
            except RuntimeError:
                # not GPT, or no partition 1
                continue
            if guid.upper() == EFI_SYSTEM_GUID:
                return dev
        return None

    def run(self) -> Optional[str]:
        """Returns the device that was converted, or None for BIOS guests."""
        dev = self.find_efi_device()
        if dev is None:
            self.logger.debug("No EFI System Partition found; guest already boots via BIOS")
            return None

        U.banner(self.logger, f"EFI -> BIOS ({dev})")
        if self.bootloader.generation is BootloaderGeneration.GRUB1:
            self._grub1(dev)
        else:
            self._grub2(dev)
        return dev

    def _grub1(self, dev: str) -> None:
        try:
            self.g.cp("/etc/grub.conf", "/boot/grub/grub.conf")
            self.g.ln_sf("/boot/grub/grub.conf", "/etc/grub.conf")
            self.augeas.load()
            guest_run(self.logger, self.g, ["grub-install", dev])
        except RuntimeError as e:
            raise wrap_fatal(f"failed to move grub-legacy off the EFI partition of {dev}: {e}", e, device=dev) from e

    def _grub2(self, dev: str) -> None:
        # EFI guests carry grub2-efi and usually not the BIOS flavour.
        try:
            self.packages.install([self.profile.bios_grub_package])
        except RuntimeError as e:
            raise wrap_fatal(f"could not install {self.profile.bios_grub_package} for BIOS boot: {e}", e) from e

        old_type = U.to_text(self.g.part_get_gpt_type(dev, ESP_PARTNUM))
        self.g.part_set_gpt_type(dev, ESP_PARTNUM, BIOS_BOOT_GUID)
        try:
            install = guest_find_program(self.g, "grub2-install") or guest_find_program(self.g, "grub-install")
            if install is None:
                raise RuntimeError("neither grub2-install nor grub-install found in the guest")
            guest_run(self.logger, self.g, [install, dev])
            self._mkconfig()
            if self.augeas.rm(ESP_FSTAB_EXPR):
                self.augeas.save()
        except RuntimeError as e:
            self._rollback(dev, old_type)
            raise wrap_fatal(f"failed to convert {dev} from EFI to BIOS boot: {e}", e, device=dev, gpt_type=old_type) from e
        self.logger.info("Converted %s to BIOS boot", dev)

    def _mkconfig(self) -> None:
        mk = guest_find_program(self.g, "grub2-mkconfig") or guest_find_program(self.g, "grub-mkconfig")
        if mk is None:
            raise RuntimeError("neither grub2-mkconfig nor grub-mkconfig found in the guest")
        guest_run(self.logger, self.g, [mk, "-o", self.profile.grub2_config])

    def _rollback(self, dev: str, old_type: str) -> None:
        self.logger.warning("Restoring partition type %s on %s", old_type, dev)
        try:
            self.g.part_set_gpt_type(dev, ESP_PARTNUM, old_type)
        except RuntimeError as e:
            self.logger.error("Could not restore partition type of %s: %s", dev, e)
        # drop the unsaved fstab edit
        self.augeas.load()
