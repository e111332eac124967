# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/offline/hypervisor_tools.py
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from ...core.augeas import AugeasTree
from ...core.utils import U, guest_run
from ...inspection.family import FamilyProfile
from ...inspection.model import GuestFamily, GuestInspection
from ..packages import GuestPackages

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore


@dataclass
class RemovalResult:
    removed_packages: List[str] = field(default_factory=list)
    removed_paths: List[str] = field(default_factory=list)
    touched_files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_XEN_VBD_LOAD = re.compile(r".*\b(insmod|modprobe)\b.*\bxen-vbd.*")
_SUSE_XEN_INITRD_VARS = ("INITRD_MODULES", "DOMU_INITRD_MODULES")
_SUSE_XEN_MODULES = ("xennet", "xen-vnif", "xenblk", "xen-vbd")

VBOX_PACKAGE = "virtualbox-guest-additions"
VBOX_CONFIG = "/var/lib/VBoxGuestAdditions/config"
_VBOX_INSTALL_DIR = re.compile(r"^INSTALL_DIR=(.*)$")

_VMWARE_BASEURL = r"https?://([^/]+\.)?vmware\.com/.*"
VMWARE_REPO_EXPRS = (
    f"/files/etc/yum.repos.d/*/*[baseurl =~ regexp('{_VMWARE_BASEURL}')]",
    f"/files/etc/zypp/repos.d/*/*[baseurl =~ regexp('{_VMWARE_BASEURL}')]",
)
VMWARE_UNINSTALLER = "/usr/bin/vmware-uninstall-tools.pl"

_INITTAB = "/files/etc/inittab"
_INITTAB_COMMENTED_ENTRY = re.compile(r"^([1-6]):([2-5]+):respawn:(.*)")


class HypervisorToolRemover:
    """
    Removes the guest agents and drivers of the source hypervisor.

    Each vendor is handled independently: a failure is logged, recorded in
    the RemovalResult and the next vendor still runs.
    """

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        profile: FamilyProfile,
        augeas: AugeasTree,
        packages: GuestPackages,
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.profile = profile
        self.augeas = augeas
        self.packages = packages
        self.result = RemovalResult()

    def run(self) -> RemovalResult:
        U.banner(self.logger, "Hypervisor tools removal")
        self._best_effort("xen", self.remove_xen)
        self._best_effort("virtualbox", self.remove_vbox)
        self._best_effort("vmware", self.remove_vmware)
        self._best_effort("citrix", self.remove_citrix)
        return self.result

    def _best_effort(self, name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as e:
            self.logger.warning("Removing %s tools failed: %s (ignored)", name, e)
            self.result.errors.append(f"{name}: {e}")

    def _warn(self, msg: str) -> None:
        self.logger.warning("%s", msg)
        self.result.warnings.append(msg)

    def _app_names(self, pred: Callable[[str], bool]) -> List[str]:
        return [a.name for a in self.inspection.apps if pred(a.name)]

    def _remove_packages(self, names: List[str]) -> None:
        if not names:
            return
        self.packages.remove(names)
        self.result.removed_packages.extend(names)

    # Xen

    def remove_xen(self) -> None:
        self._remove_packages(self._app_names(lambda n: n == "kmod-xenpv" or n.startswith("kmod-xenpv-")))
        self._remove_xenpv_module_dirs()
        self._comment_rc_local_xen_vbd()
        if self.profile.family is GuestFamily.SUSE:
            self._drop_suse_xen_initrd_modules()

    def _remove_xenpv_module_dirs(self) -> None:
        """kmod-xenpv modules get copied by hand into other kernels' trees."""
        if not self.g.is_dir("/lib/modules", followsymlinks=True):
            return
        found = [U.to_text(p) for p in self.g.find("/lib/modules")]
        dirs = [f"/lib/modules/{p.lstrip('/')}" for p in found if "/xenpv" in f"/{p.lstrip('/')}"]
        for d in dirs:
            if not self.g.is_dir(d):
                continue
            if self.packages.is_file_owned(d):
                self.logger.debug("%s is owned by a package; keeping it", d)
                continue
            self.logger.info("Removing unowned Xen PV module directory %s", d)
            self.g.rm_rf(d)
            self.result.removed_paths.append(d)

    def _comment_rc_local_xen_vbd(self) -> None:
        rc = "/etc/rc.local"
        if not self.g.is_file(rc, followsymlinks=True):
            return
        try:
            lines = [U.to_text(ln) for ln in self.g.read_lines(rc)]
            changed = False
            out: List[str] = []
            for ln in lines:
                if not ln.lstrip().startswith("#") and _XEN_VBD_LOAD.match(ln):
                    out.append("#" + ln)
                    changed = True
                else:
                    out.append(ln)
            if changed:
                self.g.write(rc, "\n".join(out) + "\n")
                self.result.touched_files.append(rc)
        except RuntimeError as e:
            self._warn(f"{rc}: {e} (ignored)")

    def _drop_suse_xen_initrd_modules(self) -> None:
        modified = False
        for var in _SUSE_XEN_INITRD_VARS:
            for mod in _SUSE_XEN_MODULES:
                if self.augeas.rm(f"/files/etc/sysconfig/kernel/{var}/value[. = '{mod}']"):
                    modified = True
        if modified:
            self.augeas.save()
            self.result.touched_files.append("/etc/sysconfig/kernel")

    # VirtualBox

    def remove_vbox(self) -> None:
        # The tarball uninstaller restores config files it cached at install
        # time, so it has to run before anything else edits them.
        self._run_vbox_uninstaller()
        if self.inspection.has_app(VBOX_PACKAGE):
            self._remove_packages([VBOX_PACKAGE])

    def _vbox_uninstaller(self) -> Optional[str]:
        if not self.g.is_file(VBOX_CONFIG, followsymlinks=True):
            return None
        for ln in self.g.read_lines(VBOX_CONFIG):
            m = _VBOX_INSTALL_DIR.match(U.to_text(ln))
            if not m:
                continue
            install_dir = m.group(1).strip().strip("'\"")
            candidate = f"{install_dir}/uninstall.sh"
            if self.g.is_file(candidate, followsymlinks=True):
                return candidate
        return None

    def _run_vbox_uninstaller(self) -> None:
        uninstaller = self._vbox_uninstaller()
        if uninstaller is None:
            return
        try:
            guest_run(self.logger, self.g, [uninstaller])
            self.augeas.load()
            self.result.removed_paths.append(uninstaller)
        except RuntimeError as e:
            self._warn(f"VirtualBox Guest Additions were detected, but uninstallation failed: {e} (ignored)")

    # VMware

    def remove_vmware(self) -> None:
        self._disable_vmware_repos()

        remove: List[str] = []
        libraries: List[str] = []
        for app in self.inspection.apps:
            name = app.name
            if name == "open-vm-tools":
                remove.append(name)
            elif name.startswith("vmware-tools-libraries-"):
                libraries.append(name)
            elif name.startswith("vmware-tools-"):
                remove.append(name)

        # vmware-tools-libraries-* replace core libraries; the stock
        # providers must go in first or removal breaks dependencies.
        if libraries:
            if self.packages.supports_capabilities:
                for lib in libraries:
                    if self._replace_vmware_library(lib):
                        remove.append(lib)
            else:
                self._warn(
                    f"{self.inspection.package_management or 'this package manager'} cannot install replacements "
                    f"for {' '.join(libraries)}; leaving them installed"
                )

        self._remove_packages(remove)
        self._run_vmware_uninstaller()

    def _disable_vmware_repos(self) -> None:
        for expr in VMWARE_REPO_EXPRS:
            for repo in self.augeas.match(expr):
                self.logger.info("Disabling VMware repository %s", repo)
                self.augeas.set(f"{repo}/enabled", "0")
                self.augeas.save()
                self.result.touched_files.append(repo)

    def _replace_vmware_library(self, lib: str) -> bool:
        try:
            provides = self.packages.provides(lib)
            self.packages.install_capabilities(provides)
            return True
        except RuntimeError as e:
            self._warn(f"could not install replacement for {lib}: {e}. {lib} was not removed.")
            return False

    def _run_vmware_uninstaller(self) -> None:
        if not self.g.is_file(VMWARE_UNINSTALLER, followsymlinks=True):
            return
        try:
            guest_run(self.logger, self.g, [VMWARE_UNINSTALLER])
            self.augeas.load()
            self.result.removed_paths.append(VMWARE_UNINSTALLER)
        except RuntimeError as e:
            self._warn(f"VMware tools were detected, but uninstallation failed: {e} (ignored)")

    # Citrix

    def remove_citrix(self) -> None:
        pkgs = self._app_names(lambda n: n.startswith("xe-guest-utilities"))
        if not pkgs:
            return
        self._remove_packages(pkgs)
        if self._restore_inittab_gettys():
            self.augeas.save()
            self.result.touched_files.append("/etc/inittab")

    def _restore_inittab_gettys(self) -> int:
        """
        xe-guest-utilities comments out the getty lines of /etc/inittab.
        Turn each such comment back into an entry placed right after it.
        """
        restored = 0
        while True:
            hit = None
            for commentp in self.augeas.match(f"{_INITTAB}/#comment"):
                m = _INITTAB_COMMENTED_ENTRY.match(self.augeas.get(commentp))
                if m and "getty" in m.group(3):
                    hit = (commentp, m)
                    break
            if hit is None:
                return restored

            commentp, m = hit
            name, runlevels, process = m.group(1), m.group(2), m.group(3)
            self.augeas.insert(commentp, name, before=False)
            self.augeas.set(f"{_INITTAB}/{name}/runlevels", runlevels)
            self.augeas.set(f"{_INITTAB}/{name}/action", "respawn")
            self.augeas.set(f"{_INITTAB}/{name}/process", process)
            if self.augeas.rm(commentp) == 0:
                raise RuntimeError(f"augeas: could not remove {commentp}")
            restored += 1
