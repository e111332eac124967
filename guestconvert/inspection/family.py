# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/inspection/family.py
"""
Per-family conversion rules and the (family, bootloader generation) table.

Everything that differs between RHEL-like, SUSE-like and Debian-like guests
lives in a FamilyProfile, so the fixers never branch on distro names.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Pattern, Tuple

from ..core.exceptions import Fatal, UnsupportedGuest
from .model import Application, GuestFamily

MODULES_PREFIX = "/lib/modules/"


class BootloaderGeneration(Enum):
    GRUB1 = "grub1"
    GRUB2 = "grub2"


class VersionFormula(Enum):
    # "<version>-<release>" from the package header
    VERSION_RELEASE = "version-release"
    # /lib/modules/<version> from the package file list
    MODPATH = "modpath"


@dataclass(frozen=True)
class FamilyProfile:
    family: GuestFamily
    version_formula: VersionFormula
    initrd_regex: Pattern[str]
    package_db_locks: Tuple[str, ...]
    bios_grub_package: str
    grub2_config: str
    legacy_initrd_builder: str  # "" when the family has none

    def kernel_version(self, app: Application, modpath: str) -> str:
        if self.version_formula is VersionFormula.VERSION_RELEASE:
            return f"{app.version}-{app.release}"
        if self.version_formula is VersionFormula.MODPATH:
            return modpath[len(MODULES_PREFIX):].rstrip("/")
        raise Fatal(msg=f"no kernel version formula for family {self.family.value}")

    @staticmethod
    def is_kernel_package(name: str) -> bool:
        return name == "kernel" or name.startswith("kernel-") or name.startswith("linux-image-")


_RPM_INITRD = re.compile(r"^initr(d|amfs)-.*(\.img)?$")
_DEB_INITRD = re.compile(r"^initrd\.img-.*$")

PROFILES: Dict[GuestFamily, FamilyProfile] = {
    GuestFamily.RHEL: FamilyProfile(
        family=GuestFamily.RHEL,
        version_formula=VersionFormula.VERSION_RELEASE,
        initrd_regex=_RPM_INITRD,
        package_db_locks=("/var/lib/rpm/__db.00?",),
        bios_grub_package="grub2",
        grub2_config="/boot/grub2/grub.cfg",
        legacy_initrd_builder="",
    ),
    GuestFamily.SUSE: FamilyProfile(
        family=GuestFamily.SUSE,
        version_formula=VersionFormula.MODPATH,
        initrd_regex=_RPM_INITRD,
        package_db_locks=("/var/lib/rpm/__db.00?",),
        bios_grub_package="grub2",
        grub2_config="/boot/grub2/grub.cfg",
        legacy_initrd_builder="suse-mkinitrd",
    ),
    GuestFamily.DEBIAN: FamilyProfile(
        family=GuestFamily.DEBIAN,
        version_formula=VersionFormula.MODPATH,
        initrd_regex=_DEB_INITRD,
        package_db_locks=(
            "/var/lib/dpkg/lock",
            "/var/lib/dpkg/lock-frontend",
            "/var/cache/apt/archives/lock",
        ),
        bios_grub_package="grub-pc",
        grub2_config="/boot/grub/grub.cfg",
        legacy_initrd_builder="mkinitramfs",
    ),
}


@dataclass(frozen=True)
class ConversionStrategy:
    profile: FamilyProfile
    generation: BootloaderGeneration

    @property
    def family(self) -> GuestFamily:
        return self.profile.family


# One entry per supported combination. Debian with grub-legacy is left out:
# update-grub regenerates menu.lst from its "# kopt" magic comments, so
# edits to the title stanzas would not survive.
STRATEGIES: Dict[Tuple[GuestFamily, BootloaderGeneration], ConversionStrategy] = {
    (fam, gen): ConversionStrategy(PROFILES[fam], gen)
    for fam, gen in (
        (GuestFamily.RHEL, BootloaderGeneration.GRUB1),
        (GuestFamily.RHEL, BootloaderGeneration.GRUB2),
        (GuestFamily.SUSE, BootloaderGeneration.GRUB1),
        (GuestFamily.SUSE, BootloaderGeneration.GRUB2),
        (GuestFamily.DEBIAN, BootloaderGeneration.GRUB2),
    )
}


def profile_for(family: GuestFamily) -> FamilyProfile:
    try:
        return PROFILES[family]
    except KeyError:
        raise UnsupportedGuest(msg=f"no conversion rules for family {family}") from None


def strategy_for(family: GuestFamily, generation: BootloaderGeneration) -> ConversionStrategy:
    try:
        return STRATEGIES[(family, generation)]
    except KeyError:
        raise UnsupportedGuest(
            msg=f"conversion of {family.value} guests using {generation.value} is not supported",
            context={"family": family.value, "bootloader": generation.value},
        ) from None
