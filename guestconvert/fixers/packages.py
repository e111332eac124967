# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/packages.py
from __future__ import annotations

import logging
from typing import Dict, List, Sequence, TYPE_CHECKING

from ..core.augeas import AugeasTree
from ..core.exceptions import Fatal
from ..core.utils import guest_run, guest_run_lines
from ..inspection.model import Application, GuestInspection

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore


_INSTALL_CMDS: Dict[str, List[str]] = {
    "yum": ["yum", "install", "-y"],
    "dnf": ["dnf", "install", "-y"],
    "zypper": ["zypper", "-n", "in"],
    "apt": ["apt-get", "install", "-y"],
}

_REMOVE_CMDS: Dict[str, List[str]] = {
    "rpm": ["rpm", "-e"],
    "deb": ["dpkg", "--remove"],
}

# Package managers that accept capability names (not only package names) on install.
_CAPABILITY_AWARE = frozenset({"yum", "dnf", "zypper"})


class GuestPackages:
    """
    Package database operations run inside the guest via g.command().

    Every mutating call reloads the Augeas tree afterwards, since package
    scripts are free to rewrite config files behind our back.
    """

    def __init__(self, logger: logging.Logger, g: "guestfs.GuestFS", inspection: GuestInspection, augeas: AugeasTree):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.augeas = augeas

    @property
    def package_format(self) -> str:
        return self.inspection.package_format

    def file_list(self, app: Application) -> List[str]:
        """Files directly owned by one installed package."""
        if self.package_format == "rpm":
            # Several kernels share the name "kernel"; query by full NVR(A).
            spec = f"{app.name}-{app.version}-{app.release}"
            if app.arch:
                spec += f".{app.arch}"
            lines = guest_run_lines(self.logger, self.g, ["rpm", "-ql", spec])
        elif self.package_format == "deb":
            lines = guest_run_lines(self.logger, self.g, ["dpkg", "-L", app.name])
        else:
            raise Fatal(msg=f"don't know how to list files of {self.package_format} packages")
        return sorted(ln.strip() for ln in lines if ln.strip().startswith("/"))

    def is_file_owned(self, path: str) -> bool:
        if self.package_format == "rpm":
            cmd = ["rpm", "-qf", path]
        elif self.package_format == "deb":
            cmd = ["dpkg", "-S", path]
        else:
            raise Fatal(msg=f"don't know how to query ownership in {self.package_format} databases")
        try:
            guest_run(self.logger, self.g, cmd)
            return True
        except RuntimeError:
            return False

    def remove(self, names: Sequence[str]) -> None:
        names = list(names)
        if not names:
            return
        base = _REMOVE_CMDS.get(self.package_format)
        if base is None:
            raise Fatal(msg=f"don't know how to remove packages using {self.package_format}")
        self.logger.info("Removing packages: %s", " ".join(names))
        guest_run(self.logger, self.g, base + names)
        self.augeas.load()

    def install(self, names: Sequence[str]) -> None:
        missing = [n for n in names if not self.inspection.has_app(n)]
        if not missing:
            return
        base = _INSTALL_CMDS.get(self.inspection.package_management)
        if base is None:
            raise Fatal(msg=f"don't know how to install packages using {self.inspection.package_management or 'unknown'}")
        self.logger.info("Installing packages: %s", " ".join(missing))
        guest_run(self.logger, self.g, base + missing)
        self.augeas.load()

    @property
    def supports_capabilities(self) -> bool:
        return self.package_format == "rpm" and self.inspection.package_management in _CAPABILITY_AWARE

    def provides(self, name: str) -> List[str]:
        """Capabilities a package provides, minus the ones naming itself."""
        lines = guest_run_lines(self.logger, self.g, ["rpm", "-q", "--provides", name])
        return [ln.strip() for ln in lines if ln.strip() and name not in ln]

    def install_capabilities(self, caps: Sequence[str]) -> None:
        if not caps:
            return
        base = _INSTALL_CMDS.get(self.inspection.package_management)
        if base is None or not self.supports_capabilities:
            raise Fatal(msg=f"{self.inspection.package_management or 'unknown'} cannot install by capability")
        guest_run(self.logger, self.g, base + list(caps))
        self.augeas.load()
