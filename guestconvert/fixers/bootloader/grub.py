# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/bootloader/grub.py
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, TYPE_CHECKING

from ...core.augeas import AugeasTree
from ...core.list_utils import dedup_preserve_order, first_or_none, move_to_front
from ...core.utils import U, guest_find_program, guest_run, strip_grub_device_prefix
from ...inspection.family import BootloaderGeneration
from ...inspection.model import GuestInspection

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

# Probed in order; the first existing file decides the generation.
GRUB_CONFIGS = (
    ("/boot/grub2/grub.cfg", BootloaderGeneration.GRUB2),
    ("/boot/grub/grub.cfg", BootloaderGeneration.GRUB2),
    ("/boot/grub/menu.lst", BootloaderGeneration.GRUB1),
    ("/boot/grub/grub.conf", BootloaderGeneration.GRUB1),
)

# How grub2-mkconfig itself enumerates kernels.
GRUB2_KERNEL_GLOBS = ("/boot/kernel-*", "/boot/vmlinuz-*", "/vmlinuz-*")
_BACKUP_FILE = re.compile(r".*\.(dpkg-.*|rpmsave|rpmnew)$")

# Xen PV console devices: xvc0 on older Xen guest kernels, hvc0 on newer ones.
_XEN_CONSOLE = re.compile(r"\b[xh]vc0\b")
_XEN_CONSOLE_ARG = re.compile(r"\bconsole=[xh]vc0\b")
_XEN_CONSOLE_ARG_WS = re.compile(r"\bconsole=[xh]vc0\b ?")

# perl-Bootloader is SUSE only; Debian and Ubuntu ship perl without it.
BOOTLOADER_TOOLS_PM = (
    "/usr/lib/perl5/vendor_perl/*/Bootloader/Tools.pm",
    "/usr/lib/perl5/vendor_perl/Bootloader/Tools.pm",
    "/usr/share/perl5/vendor_perl/Bootloader/Tools.pm",
)

_PERL_DEFAULT_IMAGE = """
InitLibrary();
my $default = Bootloader::Tools::GetDefaultSection();
print $default->{image};
"""

_PERL_SET_DEFAULT = """
InitLibrary();
my @sections = GetSectionList(type => "image", image => $ARGV[0]);
my $section = GetSection(@sections);
my $newdefault = $section->{name};
SetGlobals(default => "$newdefault");
"""


class Bootloader(ABC):
    generation: BootloaderGeneration

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        augeas: AugeasTree,
        config: str,
    ):
        self.logger = logger
        self.g = g
        self.inspection = inspection
        self.augeas = augeas
        self.config = config

    def __repr__(self) -> str:
        return f"{type(self).__name__}(config={self.config!r})"

    @abstractmethod
    def augeas_init(self) -> None:
        """Make sure the Augeas tree covers the bootloader config."""

    @abstractmethod
    def list_kernels(self) -> List[str]:
        """vmlinuz paths offered at boot, default first."""

    @abstractmethod
    def set_default(self, vmlinuz: str) -> bool:
        """Make `vmlinuz` the boot default. False when that could not be done."""

    @abstractmethod
    def configure_console(self, serial: str) -> None: ...

    @abstractmethod
    def remove_console(self) -> None: ...

    def regenerate_config(self) -> None:
        mk = guest_find_program(self.g, "grub2-mkconfig") or guest_find_program(self.g, "grub-mkconfig")
        if mk is None:
            raise RuntimeError("neither grub2-mkconfig nor grub-mkconfig found in the guest")
        guest_run(self.logger, self.g, [mk, "-o", self.config])

    # management helpers shared by both generations

    def _grubby(self) -> Optional[str]:
        return guest_find_program(self.g, "grubby")

    def _perl(self) -> Optional[str]:
        """perl, but only when it can load Bootloader::Tools."""
        perl = guest_find_program(self.g, "/usr/bin/perl")
        if perl is None:
            return None
        if any(self.g.glob_expand(pattern) for pattern in BOOTLOADER_TOOLS_PM):
            return perl
        self.logger.debug("%s has no Bootloader::Tools module", perl)
        return None

    def _helper_default_image(self) -> Optional[str]:
        grubby = self._grubby()
        if grubby:
            cmd = [grubby, "--default-kernel"]
        else:
            perl = self._perl()
            if perl is None:
                self.logger.debug("No grubby or perl Bootloader::Tools; default kernel unknown")
                return None
            cmd = [perl, "-MBootloader::Tools", "-e", _PERL_DEFAULT_IMAGE]
        try:
            out = guest_run(self.logger, self.g, cmd).strip()
        except RuntimeError as e:
            self.logger.warning("Could not query the default kernel (%s): %s", U.pretty_cmd(cmd[:2]), e)
            return None
        return strip_grub_device_prefix(out) if out else None

    def _helper_set_default(self, vmlinuz: str) -> bool:
        grubby = self._grubby()
        if grubby:
            guest_run(self.logger, self.g, [grubby, "--set-kernel", vmlinuz])
            return True
        perl = self._perl()
        if perl:
            guest_run(self.logger, self.g, [perl, "-MBootloader::Tools", "-e", _PERL_SET_DEFAULT, vmlinuz])
            return True
        return False


class Grub1(Bootloader):
    generation = BootloaderGeneration.GRUB1

    @property
    def prefix(self) -> str:
        """Where grub's filesystem is mounted: /boot/grub, /boot, or / ("")."""
        for mp in ("/boot/grub", "/boot"):
            if mp in self.inspection.mountpoints:
                return mp
        return ""

    def augeas_init(self) -> None:
        self.augeas.ensure_included("Grub", self.config)

    def _kernel_expr(self, title: str = "title") -> str:
        return f"/files{self.config}/{title}/kernel"

    def _resolve(self, aug_path: str) -> str:
        return self.prefix + strip_grub_device_prefix(self.augeas.get(aug_path))

    def list_kernels(self) -> List[str]:
        paths = dedup_preserve_order(self.augeas.match(self._kernel_expr()))

        default = self.augeas.get_or_none(f"/files{self.config}/default")
        if default is not None:
            try:
                # grub counts titles from 0, Augeas from 1.
                want = self._kernel_expr(f"title[{int(default) + 1}]")
            except ValueError:
                self.logger.warning("Ignoring non-numeric grub default %r", default)
            else:
                # aug_match canonicalizes title[1] to title when there is only one.
                hit = first_or_none(self.augeas.match(want), lambda p: p in paths)
                if hit is not None:
                    paths = move_to_front(paths, hit)
                else:
                    self.logger.warning("grub default %s does not name a kernel entry", default)

        return [self._resolve(p) for p in paths]

    def set_default(self, vmlinuz: str) -> bool:
        if self._helper_set_default(vmlinuz):
            return True
        want = self._file_id(vmlinuz)
        titles = self.augeas.match(f"/files{self.config}/title")
        for idx, title in enumerate(titles):
            kernel = self.augeas.get_or_none(f"{title}/kernel")
            if kernel is None:
                continue
            path = self.prefix + strip_grub_device_prefix(kernel)
            # Titles may boot a symlink or hardlink such as /vmlinuz.
            if path == vmlinuz or (want is not None and self._file_id(path) == want):
                self.augeas.set(f"/files{self.config}/default", str(idx))
                self.augeas.save()
                return True
        self.logger.warning("No grub title boots %s; default left unchanged", vmlinuz)
        return False

    def _file_id(self, path: str) -> Optional[Tuple[int, int]]:
        try:
            st = self.g.statns(path)
        except RuntimeError as e:
            self.logger.debug("Cannot stat %s: %s", path, e)
            return None
        return int(st["st_dev"]), int(st["st_ino"])

    def _console_expr(self) -> str:
        return f"/files{self.config}/title/kernel/console"

    def configure_console(self, serial: str) -> None:
        def _rewrite(value: str) -> Optional[str]:
            return _XEN_CONSOLE.sub(serial, value) if _XEN_CONSOLE.search(value) else None

        if self.augeas.rewrite_matching(self._console_expr(), _rewrite):
            self.augeas.save()

    def remove_console(self) -> None:
        removed = self.augeas.remove_until_fixpoint(
            self._console_expr(),
            lambda _path, value: bool(_XEN_CONSOLE.search(value)),
        )
        if removed:
            self.augeas.save()


class Grub2(Bootloader):
    generation = BootloaderGeneration.GRUB2

    def augeas_init(self) -> None:
        # /etc/default/grub and /etc/sysconfig/grub are in the default Shellvars set.
        return None

    def list_kernels(self) -> List[str]:
        vmlinuzes: List[str] = []
        default = self._helper_default_image()
        if default:
            vmlinuzes.append(default)
        for pattern in GRUB2_KERNEL_GLOBS:
            vmlinuzes.extend(U.to_text(p) for p in self.g.glob_expand(pattern))
        return [v for v in vmlinuzes if not _BACKUP_FILE.match(v)]

    def set_default(self, vmlinuz: str) -> bool:
        if self._helper_set_default(vmlinuz):
            return True
        self.logger.warning("No grubby or perl Bootloader::Tools in the guest; cannot make %s the default", vmlinuz)
        return False

    def _cmdline_expr(self) -> str:
        if self.g.exists("/etc/sysconfig/grub"):
            return "/files/etc/sysconfig/grub/GRUB_CMDLINE_LINUX"
        return "/files/etc/default/grub/GRUB_CMDLINE_LINUX_DEFAULT"

    def _update_console(self, serial: Optional[str]) -> None:
        """Point console=xvc0/hvc0 at `serial`, or drop it when serial is None."""
        expr = self._cmdline_expr()
        try:
            cmdline = self.augeas.get_or_none(expr)
            if cmdline is None or not _XEN_CONSOLE_ARG.search(cmdline):
                return
            if serial is None:
                cmdline = _XEN_CONSOLE_ARG_WS.sub("", cmdline)
            else:
                cmdline = _XEN_CONSOLE_ARG.sub(f"console={serial}", cmdline)
            self.augeas.set(expr, cmdline)
            self.augeas.save()
            self.regenerate_config()
        except RuntimeError as e:
            self.logger.warning("Could not update grub2 console: %s (ignored)", e)

    def configure_console(self, serial: str) -> None:
        self._update_console(serial)

    def remove_console(self) -> None:
        self._update_console(None)


_BOOTLOADERS = {
    BootloaderGeneration.GRUB1: Grub1,
    BootloaderGeneration.GRUB2: Grub2,
}


def detect_bootloader(
    logger: logging.Logger,
    g: "guestfs.GuestFS",
    inspection: GuestInspection,
    augeas: AugeasTree,
) -> Bootloader:
    for config, generation in GRUB_CONFIGS:
        if g.is_file(config, followsymlinks=True):
            logger.info("Bootloader: %s (%s)", generation.value, config)
            return _BOOTLOADERS[generation](logger, g, inspection, augeas, config)
    U.die(logger, "no grub1/grub-legacy or grub2 configuration file was found")
    raise AssertionError  # U.die always raises
