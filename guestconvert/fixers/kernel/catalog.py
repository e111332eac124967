# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/kernel/catalog.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from ...core.logger import Log
from ...core.utils import U, guest_last_error_is_enoent
from ...inspection.family import MODULES_PREFIX, FamilyProfile
from ...inspection.model import Application, GuestInspection
from ..packages import GuestPackages

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

# (st_dev, st_ino): how a bootloader path is matched to a package's vmlinuz.
FileId = Tuple[int, int]

_KO = re.compile(r".*\.k?o(\.(xz|zst|gz))?$")
_KO_NAME = re.compile(r"(?:^|.*/)([^/]+)\.k?o(?:\.(?:xz|zst|gz))?$")


@dataclass(frozen=True)
class KernelInfo:
    app: Application
    name: str
    version: str
    arch: str
    vmlinuz: str
    vmlinuz_id: FileId
    initrd: Optional[str]
    modpath: str
    modules: Tuple[str, ...]
    supports_virtio: bool
    is_xen_kernel: bool
    is_debug: bool
    config_file: Optional[str] = None

    @property
    def kernel_release(self) -> str:
        """uname -r of this kernel: the /lib/modules directory name."""
        return self.modpath[len(MODULES_PREFIX):].rstrip("/")

    def describe(self) -> str:
        return (
            f"({self.name}, {self.version}, {self.arch}, {self.vmlinuz}, "
            f"{self.initrd or 'None'}, {self.config_file or 'None'}, "
            f"virtio={self.supports_virtio}, xen={self.is_xen_kernel}, debug={self.is_debug})"
        )


class KernelCatalog:
    """
    Inventory of installed kernel packages and what they put on disk.

    The package file lists, the files actually present and the initrds in
    /boot do not always agree; anything we cannot tie together reliably is
    skipped with a warning instead of guessed.
    """

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        profile: FamilyProfile,
        packages: GuestPackages,
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.profile = profile
        self.packages = packages

    def detect(self) -> List[KernelInfo]:
        kernels: List[KernelInfo] = []
        seen: Dict[FileId, KernelInfo] = {}
        for app in self.inspection.apps:
            if not self.profile.is_kernel_package(app.name):
                continue
            ki = self._inspect_package(app)
            if ki is None:
                continue
            if ki.vmlinuz_id in seen:
                self.logger.warning(
                    "Kernel package %s shares %s with %s; ignoring it",
                    app.nevra(), ki.vmlinuz, seen[ki.vmlinuz_id].app.nevra(),
                )
                continue
            seen[ki.vmlinuz_id] = ki
            kernels.append(ki)

        self.logger.debug("Installed kernel packages in this guest:")
        for ki in kernels:
            self.logger.debug("    %s", ki.describe())

        if not kernels:
            U.die(
                self.logger,
                "no installed kernel packages were found. "
                "This probably indicates that the guest could not be inspected properly.",
            )
        return kernels

    def _inspect_package(self, app: Application) -> Optional[KernelInfo]:
        name = app.name
        files = self.packages.file_list(app)
        if not files:
            self.logger.warning("Package %s contains no files", name)
            return None

        vmlinuz = next((f for f in files if f.startswith("/boot/vmlinuz-")), None)
        modpath = self._find_modpath(files)
        if vmlinuz is None or modpath is None:
            self.logger.warning("Package %s has no /boot/vmlinuz-* or %s* entry; skipping", name, MODULES_PREFIX)
            return None
        if not self.g.is_dir(modpath, followsymlinks=True):
            self.logger.warning("Module directory %s of %s does not exist; skipping", modpath, name)
            return None

        try:
            st = self.g.statns(vmlinuz)
        except RuntimeError as e:
            if guest_last_error_is_enoent(self.g):
                # rpm/dpkg file list and disk disagree; not worth a warning.
                self.logger.debug("Kernel %s of %s is missing; skipping", vmlinuz, name)
            else:
                self.logger.warning("Cannot stat %s of %s: %s; skipping", vmlinuz, name, e)
            return None
        vmlinuz_id: FileId = (int(st["st_dev"]), int(st["st_ino"]))

        version = self.profile.kernel_version(app, modpath)
        initrd = self._find_initrd(name, version)
        arch, modules = self._list_modules(modpath)

        # Named after uname -r, which on RHEL 6+ carries an .arch suffix
        # that version-release does not.
        uname_r = modpath[len(MODULES_PREFIX):].rstrip("/")
        config_file: Optional[str] = f"/boot/config-{uname_r}"
        if config_file not in files:
            config_file = None

        supports_virtio = "virtio_net" in modules or self._config_enabled(config_file, "VIRTIO_NET")

        return KernelInfo(
            app=app,
            name=name,
            version=version,
            arch=arch,
            vmlinuz=vmlinuz,
            vmlinuz_id=vmlinuz_id,
            initrd=initrd,
            modpath=modpath,
            modules=modules,
            supports_virtio=supports_virtio,
            is_xen_kernel="xennet" in modules,
            is_debug=name.endswith("-debug") or name.endswith("-dbg"),
            config_file=config_file,
        )

    @staticmethod
    def _find_modpath(files: List[str]) -> Optional[str]:
        candidates = [f for f in files if f.startswith(MODULES_PREFIX) and len(f) > len(MODULES_PREFIX)]
        if not candidates:
            return None
        for f in candidates:
            if "/" not in f[len(MODULES_PREFIX):].rstrip("/"):
                return f.rstrip("/")
        return candidates[0]

    def _find_initrd(self, name: str, version: str) -> Optional[str]:
        """
        The initrd is built at install time and is not in the package file
        list, so match /boot by naming convention and version string.
        """
        files = [U.to_text(f) for f in self.g.ls("/boot")]
        files = [f for f in files if self.profile.initrd_regex.match(f)]
        files = [f for f in files if version in f]
        files = [f for f in files if "kdump" not in f]
        if not files:
            self.logger.warning("No initrd was found in /boot matching %s %s", name, version)
            return None
        # initrd-2.6.18-308.el5.img vs initrd-2.6.18-308.el5xen.img: the
        # plain kernel's version matches both, the shorter one is its own.
        files.sort(key=lambda f: (len(f), f))
        return f"/boot/{files[0]}"

    def _list_modules(self, modpath: str) -> Tuple[str, Tuple[str, ...]]:
        found = [U.to_text(m) for m in self.g.find(modpath)]
        found = [m for m in found if _KO.match(m)]
        if not found:
            U.die(self.logger, f"no kernel modules found under {modpath}")

        any_module = f"{modpath.rstrip('/')}/{found[0].lstrip('/')}"
        arch = U.to_text(self.g.file_architecture(any_module))
        Log.trace(self.logger, "Kernel arch from %s: %s", any_module, arch)

        names: List[str] = []
        for m in found:
            mo = _KO_NAME.match(m)
            if mo:
                names.append(mo.group(1))
        if not names:
            U.die(self.logger, f"no kernel module names could be derived from {modpath}")
        return arch, tuple(names)

    def _config_enabled(self, config_file: Optional[str], feature: str) -> bool:
        """CONFIG_<feature> is =y or =m in the kernel's build config."""
        if config_file is None:
            return False
        lines = self.g.grep(f"^CONFIG_{feature.upper()}=", config_file, extended=True)
        if not lines:
            return False
        value = U.to_text(lines[0]).split("=", 1)[1].strip()
        return value in ("y", "m")
