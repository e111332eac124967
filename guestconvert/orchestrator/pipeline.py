# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/orchestrator/pipeline.py
from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar, TYPE_CHECKING

from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeElapsedColumn

from ..config.config_loader import ConvertOptions
from ..core.augeas import AugeasTree
from ..core.exceptions import GuestConvertError, format_exception_for_cli
from ..core.logger import Log
from ..core.utils import U
from ..fixers.bootloader.grub import Bootloader, detect_bootloader
from ..fixers.console import ConsoleConfigurer
from ..fixers.efi import EFIUnconfigurer
from ..fixers.kernel.catalog import KernelCatalog, KernelInfo
from ..fixers.kernel.initrd import InitrdRebuilder
from ..fixers.kernel.selector import KernelSelector
from ..fixers.offline.hypervisor_tools import HypervisorToolRemover
from ..fixers.packages import GuestPackages
from ..inspection.family import ConversionStrategy, strategy_for
from ..inspection.model import GuestInspection

if TYPE_CHECKING:  # pragma: no cover
    import guestfs  # type: ignore

_T = TypeVar("_T")

LOAD_POLICY = "/usr/sbin/load_policy"

STAGES = (
    "augeas_init",
    "clean_package_locks",
    "autorelabel",
    "remove_hypervisor_tools",
    "unconfigure_efi",
    "configure_kernel",
    "rebuild_initrd",
    "console",
)


@dataclass(frozen=True)
class GuestCapabilities:
    block_bus: str
    net_bus: str

    @classmethod
    def for_kernel(cls, kernel: KernelInfo) -> "GuestCapabilities":
        if kernel.supports_virtio:
            return cls(block_bus="virtio", net_bus="virtio")
        return cls(block_bus="ide", net_bus="e1000")

    def as_dict(self) -> Dict[str, str]:
        return {"block_bus": self.block_bus, "net_bus": self.net_bus}


class ConversionPipeline:
    """
    Converts one inspected Linux guest in place for KVM.

    The guest's filesystems must already be mounted on `g`. Steps run in a
    fixed order; tool removal is best-effort, every other step is fatal on
    failure. Per-step timings and outcomes end up in `self.report`.
    """

    def __init__(
        self,
        logger: logging.Logger,
        g: "guestfs.GuestFS",
        inspection: GuestInspection,
        options: Optional[ConvertOptions] = None,
    ):
        self.logger = logger
        # Stage lines carry which guest they belong to.
        self.log = Log.bind(logger, root=inspection.root, family=inspection.family.value)
        self.g = g
        self.inspection = inspection
        self.options = options or ConvertOptions()
        self.augeas = AugeasTree(logger, g)
        self.packages = GuestPackages(logger, g, inspection, self.augeas)
        self.report: Dict[str, Any] = {"stages": {}}
        self._timings: Dict[str, float] = {}
        self._progress: Optional[Tuple[Progress, TaskID]] = None

        self.bootloader: Optional[Bootloader] = None
        self.strategy: Optional[ConversionStrategy] = None

    @contextmanager
    def _time_stage(self, name: str) -> Iterator[None]:
        t0 = time.time()
        try:
            yield
        finally:
            dt = time.time() - t0
            self._timings[name] = dt
            self.report["stages"].setdefault(name, {})["duration_s"] = round(dt, 6)

    def _run_stage(
        self,
        name: str,
        fn: Callable[[], _T],
        *,
        critical: bool = True,
        default: Optional[_T] = None,
    ) -> _T:
        """
        Run one step and record it in the report.
        critical=True re-raises; otherwise the error is logged and `default` returned.
        """
        Log.step(self.log, name)
        with self._time_stage(name):
            try:
                out = fn()
            except Exception as e:
                self.report["stages"].setdefault(name, {}).update(
                    {"ok": False, "error": str(e), "traceback": traceback.format_exc(limit=50)}
                )
                if critical:
                    if isinstance(e, GuestConvertError):
                        e.with_context(stage=name)
                    Log.fail(self.log, f"Stage failed: {name}: {format_exception_for_cli(e, verbose=self.options.verbose)}")
                    raise
                Log.warn(self.log, f"Stage failed: {name}: {e} (continuing)")
                return default  # type: ignore[return-value]
            finally:
                if self._progress is not None:
                    progress, task = self._progress
                    progress.update(task, advance=1)
        self.report["stages"].setdefault(name, {}).update({"ok": True, "error": None})
        self.logger.debug("Stage ok: %s", name)
        return out

    # steps

    def _init_augeas(self) -> Bootloader:
        self.augeas.init()
        bootloader = detect_bootloader(self.logger, self.g, self.inspection, self.augeas)
        self.strategy = strategy_for(self.inspection.family, bootloader.generation)
        bootloader.augeas_init()
        self.bootloader = bootloader
        return bootloader

    def _clean_package_locks(self) -> List[str]:
        """Stale locks left by the source VM make every package command hang."""
        assert self.strategy is not None
        removed: List[str] = []
        for pattern in self.strategy.profile.package_db_locks:
            for path in self.g.glob_expand(pattern):
                path = U.to_text(path)
                self.g.rm_f(path)
                removed.append(path)
        if removed:
            self.logger.info("Removed package database locks: %s", " ".join(removed))
        return removed

    def _autorelabel(self) -> bool:
        # Loading the policy in the appliance is unreliable; relabel on first boot instead.
        if not self.options.autorelabel:
            return False
        if self.g.is_file(LOAD_POLICY, followsymlinks=True):
            self.g.touch("/.autorelabel")
            return True
        return False

    def _configure_kernel(self, bootloader: Bootloader) -> KernelInfo:
        assert self.strategy is not None
        profile = self.strategy.profile
        catalog = KernelCatalog(self.logger, self.g, self.inspection, profile, self.packages).detect()
        selector = KernelSelector(self.logger, self.g, self.inspection, profile)
        offered = selector.resolve(bootloader.list_kernels(), catalog)
        best = selector.select_best(offered)
        default_changed = selector.activate(best, offered, bootloader)
        self.report["kernel"] = {
            "name": best.name,
            "version": best.version,
            "vmlinuz": best.vmlinuz,
            "initrd": best.initrd,
            "supports_virtio": best.supports_virtio,
            "default_changed": default_changed,
        }
        return best

    def _console(self, bootloader: Bootloader) -> str:
        console = ConsoleConfigurer(self.logger, self.augeas, bootloader, self.options.serial_device)
        if self.options.keep_serial_console:
            console.configure()
            return "configured"
        console.remove()
        return "removed"

    def run(self) -> GuestCapabilities:
        U.banner(self.logger, f"Converting {self.inspection.distro} {self.inspection.major_version}.{self.inspection.minor_version} for KVM")
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            disable=not self.options.progress,
            transient=True,
        ) as progress:
            self._progress = (progress, progress.add_task("Converting guest", total=len(STAGES)))
            try:
                return self._convert()
            finally:
                self._progress = None

    def _convert(self) -> GuestCapabilities:
        bootloader = self._run_stage("augeas_init", self._init_augeas)
        assert self.strategy is not None
        profile = self.strategy.profile

        self.report["package_locks"] = self._run_stage("clean_package_locks", self._clean_package_locks)
        self.report["autorelabel"] = self._run_stage("autorelabel", self._autorelabel)

        remover = HypervisorToolRemover(self.logger, self.g, self.inspection, profile, self.augeas, self.packages)
        removal = self._run_stage("remove_hypervisor_tools", remover.run, critical=False, default=remover.result)
        self.report["hypervisor_tools"] = removal.to_dict()

        efi = EFIUnconfigurer(self.logger, self.g, self.inspection, profile, self.augeas, self.packages, bootloader)
        self.report["efi_device"] = self._run_stage("unconfigure_efi", efi.run)

        best = self._run_stage("configure_kernel", lambda: self._configure_kernel(bootloader))

        rebuilder = InitrdRebuilder(
            self.logger, self.g, self.inspection, profile, backup_suffix=self.options.initrd_backup_suffix
        )
        self.report["initrd_builder"] = self._run_stage("rebuild_initrd", lambda: rebuilder.rebuild(best))

        self.report["console"] = self._run_stage("console", lambda: self._console(bootloader))

        caps = GuestCapabilities.for_kernel(best)
        self.report["capabilities"] = caps.as_dict()
        Log.ok(self.log, f"Conversion done: block={caps.block_bus} net={caps.net_bus}")
        self.logger.debug("Conversion report:\n%s", U.json_dump(self.report))
        return caps
