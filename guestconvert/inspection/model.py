# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/inspection/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, TYPE_CHECKING

from ..core.exceptions import UnsupportedGuest
from ..core.utils import U

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore


class GuestFamily(Enum):
    """Linux distribution families we have conversion rules for."""

    RHEL = "rhel"
    SUSE = "suse"
    DEBIAN = "debian"

    @classmethod
    def from_distro(cls, distro: str) -> "GuestFamily":
        fam = _DISTRO_FAMILY.get((distro or "").lower().strip())
        if fam is None:
            raise UnsupportedGuest(msg=f"unsupported Linux distribution: {distro or 'unknown'}")
        return fam


_DISTRO_FAMILY: Dict[str, GuestFamily] = {
    "rhel": GuestFamily.RHEL,
    "centos": GuestFamily.RHEL,
    "scientificlinux": GuestFamily.RHEL,
    "redhat-based": GuestFamily.RHEL,
    "oraclelinux": GuestFamily.RHEL,
    "rocky": GuestFamily.RHEL,
    "almalinux": GuestFamily.RHEL,
    "fedora": GuestFamily.RHEL,
    "sles": GuestFamily.SUSE,
    "suse-based": GuestFamily.SUSE,
    "opensuse": GuestFamily.SUSE,
    "debian": GuestFamily.DEBIAN,
    "ubuntu": GuestFamily.DEBIAN,
    "linuxmint": GuestFamily.DEBIAN,
}


@dataclass(frozen=True)
class Application:
    """One installed package, as reported by inspect_list_applications2."""

    name: str
    version: str = ""
    release: str = ""
    epoch: int = 0
    arch: str = ""

    @classmethod
    def from_guestfs(cls, rec: Mapping[str, Any]) -> "Application":
        try:
            epoch = int(rec.get("app2_epoch") or 0)
        except (TypeError, ValueError):
            epoch = 0
        return cls(
            name=U.to_text(rec.get("app2_name")),
            version=U.to_text(rec.get("app2_version")),
            release=U.to_text(rec.get("app2_release")),
            epoch=epoch,
            arch=U.to_text(rec.get("app2_arch")),
        )

    def nevra(self) -> str:
        evr = f"{self.epoch}:" if self.epoch else ""
        evr += self.version
        if self.release:
            evr += f"-{self.release}"
        return f"{self.name}-{evr}" + (f".{self.arch}" if self.arch else "")


@dataclass(frozen=True)
class GuestInspection:
    """
    What a previous inspection pass learnt about the guest.

    apps keeps the order libguestfs reported them in.
    """

    root: str
    distro: str
    major_version: int
    minor_version: int
    package_format: str
    package_management: str
    family: GuestFamily
    mountpoints: Dict[str, str] = field(default_factory=dict)
    apps: Tuple[Application, ...] = ()

    @classmethod
    def from_guestfs(cls, g: "guestfs.GuestFS", root: str) -> "GuestInspection":
        typ = U.to_text(g.inspect_get_type(root))
        if typ != "linux":
            raise UnsupportedGuest(msg=f"guest type {typ!r} is not linux", context={"root": root})
        distro = U.to_text(g.inspect_get_distro(root))
        mps = g.inspect_get_mountpoints(root)
        if not isinstance(mps, dict):
            # Older bindings without python_return_dict give a list of pairs.
            mps = dict(mps)
        return cls(
            root=root,
            distro=distro,
            major_version=int(g.inspect_get_major_version(root)),
            minor_version=int(g.inspect_get_minor_version(root)),
            package_format=U.to_text(g.inspect_get_package_format(root)),
            package_management=U.to_text(g.inspect_get_package_management(root)),
            family=GuestFamily.from_distro(distro),
            mountpoints={U.to_text(k): U.to_text(v) for k, v in mps.items()},
            apps=tuple(Application.from_guestfs(a) for a in g.inspect_list_applications2(root)),
        )

    def find_app(self, name: str) -> Optional[Application]:
        for a in self.apps:
            if a.name == name:
                return a
        return None

    def has_app(self, name: str) -> bool:
        return self.find_app(name) is not None
