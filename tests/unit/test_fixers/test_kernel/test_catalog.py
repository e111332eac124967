# SPDX-License-Identifier: LGPL-3.0-or-later
"""Installed-kernel discovery from package file lists and /boot."""
from __future__ import annotations

import errno

import pytest
from fakes.fake_guestfs import FakeGuestFS
from fakes.fake_logger import FakeLogger
from fakes.guest_builder import add_deb_kernel, add_rpm_kernel, make_inspection

from guestconvert.core.augeas import AugeasTree
from guestconvert.core.exceptions import Fatal
from guestconvert.fixers.kernel.catalog import KernelCatalog
from guestconvert.fixers.packages import GuestPackages
from guestconvert.inspection.family import profile_for
from guestconvert.inspection.model import Application, GuestFamily


def _catalog(g, apps, **kw):
    logger = FakeLogger()
    inspection = make_inspection(apps, **kw)
    aug = AugeasTree(logger, g)
    packages = GuestPackages(logger, g, inspection, aug)
    return KernelCatalog(logger, g, inspection, profile_for(inspection.family), packages), logger


@pytest.mark.unit
class TestRpmKernels:
    def test_detects_everything_about_one_kernel(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g)
        catalog, _ = _catalog(g, [app])

        (k,) = catalog.detect()
        assert k.app == app
        assert k.name == "kernel"
        assert k.version == "2.6.32-71.el6"
        assert k.arch == "x86_64"
        assert k.vmlinuz == "/boot/vmlinuz-2.6.32-71.el6.x86_64"
        assert k.initrd == "/boot/initramfs-2.6.32-71.el6.x86_64.img"
        assert k.modpath == "/lib/modules/2.6.32-71.el6.x86_64"
        assert k.kernel_release == "2.6.32-71.el6.x86_64"
        assert "virtio_net" in k.modules
        assert k.supports_virtio
        assert not k.is_xen_kernel
        assert not k.is_debug
        assert k.config_file is None
        assert "kernel" in k.describe()

    def test_virtio_from_build_config(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, modules=("e1000", "ata_piix"), config="CONFIG_VIRTIO=y\nCONFIG_VIRTIO_NET=m\n")
        catalog, _ = _catalog(g, [app])
        (k,) = catalog.detect()
        assert k.config_file == "/boot/config-2.6.32-71.el6.x86_64"
        assert k.supports_virtio

    def test_virtio_not_set_in_build_config(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, modules=("e1000",), config="# CONFIG_VIRTIO_NET is not set\n")
        catalog, _ = _catalog(g, [app])
        (k,) = catalog.detect()
        assert not k.supports_virtio

    def test_xen_and_debug_flags(self):
        g = FakeGuestFS()
        xen = add_rpm_kernel(g, name="kernel-xen", version="2.6.18", release="308.el5", flavour="xen", modules=("xennet", "xenblk"))
        dbg = add_rpm_kernel(g, name="kernel-debug", release="71.el6", flavour=".x86_64.debug")
        catalog, _ = _catalog(g, [xen, dbg])
        by_name = {k.name: k for k in catalog.detect()}
        assert by_name["kernel-xen"].is_xen_kernel
        assert not by_name["kernel-xen"].supports_virtio
        assert by_name["kernel-debug"].is_debug
        assert not by_name["kernel-debug"].is_xen_kernel

    def test_non_kernel_packages_are_not_queried(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g)
        bash = Application(name="bash", version="4.1.2", release="8.el6", arch="x86_64")
        catalog, _ = _catalog(g, [bash, app])
        assert len(catalog.detect()) == 1
        assert not g.ran("rpm", "-ql", "bash-4.1.2-8.el6.x86_64")

    def test_hardlinked_vmlinuz_is_kept_once(self):
        g = FakeGuestFS()
        a = add_rpm_kernel(g, release="71.el6")
        b = add_rpm_kernel(g, name="kernel-alias", release="72.el6")
        g.hardlink("/boot/vmlinuz-2.6.32-71.el6.x86_64", "/boot/vmlinuz-2.6.32-72.el6.x86_64")
        catalog, logger = _catalog(g, [a, b])

        kernels = catalog.detect()
        assert [k.name for k in kernels] == ["kernel"]
        assert any("shares" in m for m in logger.messages("warning"))

    def test_missing_vmlinuz_is_skipped_quietly(self):
        g = FakeGuestFS()
        good = add_rpm_kernel(g, release="71.el6")
        gone = add_rpm_kernel(g, release="72.el6")
        del g.fs["/boot/vmlinuz-2.6.32-72.el6.x86_64"]
        catalog, logger = _catalog(g, [good, gone])

        assert [k.version for k in catalog.detect()] == ["2.6.32-71.el6"]
        assert logger.messages("warning") == []
        assert any("missing" in m for m in logger.messages("debug"))

    def test_unreadable_vmlinuz_is_skipped_with_a_warning(self):
        g = FakeGuestFS()
        good = add_rpm_kernel(g, release="71.el6")
        bad = add_rpm_kernel(g, release="72.el6")
        g.stat_errno["/boot/vmlinuz-2.6.32-72.el6.x86_64"] = errno.EIO
        catalog, logger = _catalog(g, [good, bad])

        assert [k.version for k in catalog.detect()] == ["2.6.32-71.el6"]
        assert any("Cannot stat /boot/vmlinuz-2.6.32-72.el6.x86_64" in m for m in logger.messages("warning"))

    def test_package_without_files_warns(self):
        g = FakeGuestFS()
        good = add_rpm_kernel(g)
        empty = Application(name="kernel-headers", version="2.6.32", release="71.el6", arch="x86_64")
        g.on_command(["rpm", "-ql", "kernel-headers-2.6.32-71.el6.x86_64"], output="")
        catalog, logger = _catalog(g, [empty, good])

        assert [k.name for k in catalog.detect()] == ["kernel"]
        assert any("contains no files" in m for m in logger.messages("warning"))

    def test_package_without_modules_dir_is_skipped(self):
        g = FakeGuestFS()
        good = add_rpm_kernel(g)
        fw = Application(name="kernel-firmware", version="2.6.32", release="71.el6", arch="noarch")
        g.on_command(["rpm", "-ql", "kernel-firmware-2.6.32-71.el6.noarch"], output="/lib/firmware/e100/d101m_ucode.bin\n")
        catalog, logger = _catalog(g, [fw, good])
        assert [k.name for k in catalog.detect()] == ["kernel"]
        assert logger.messages("warning")


@pytest.mark.unit
class TestInitrdMatching:
    def test_shortest_matching_initrd_wins(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, version="2.6.18", release="308.el5", flavour="", initrd=False)
        for f in ("initrd-2.6.18-308.el5xen.img", "initrd-2.6.18-308.el5.img", "initrd-2.6.18-308.el5kdump.img"):
            g.add_file(f"/boot/{f}")
        catalog, _ = _catalog(g, [app])
        (k,) = catalog.detect()
        assert k.initrd == "/boot/initrd-2.6.18-308.el5.img"

    def test_kdump_initrd_is_never_chosen(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, initrd=False)
        g.add_file("/boot/initramfs-2.6.32-71.el6.x86_64kdump.img")
        catalog, logger = _catalog(g, [app])
        (k,) = catalog.detect()
        assert k.initrd is None
        assert any("No initrd" in m for m in logger.messages("warning"))


@pytest.mark.unit
class TestOtherFamilies:
    def test_debian_version_comes_from_modpath(self):
        g = FakeGuestFS()
        app = add_deb_kernel(g)
        catalog, _ = _catalog(g, [app], family=GuestFamily.DEBIAN)
        (k,) = catalog.detect()
        assert k.version == "4.19.0-6-amd64"
        assert k.initrd == "/boot/initrd.img-4.19.0-6-amd64"
        assert k.config_file == "/boot/config-4.19.0-6-amd64"
        assert k.supports_virtio

    def test_suse_version_comes_from_modpath(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, name="kernel-default", version="4.12.14", release="150.47.1", flavour="-default")
        catalog, _ = _catalog(g, [app], family=GuestFamily.SUSE)
        (k,) = catalog.detect()
        assert k.version == "4.12.14-150.47.1-default"
        assert k.initrd == "/boot/initramfs-4.12.14-150.47.1-default.img"


@pytest.mark.unit
class TestFatal:
    def test_no_kernels_at_all(self):
        g = FakeGuestFS()
        catalog, _ = _catalog(g, [])
        with pytest.raises(Fatal):
            catalog.detect()

    def test_modules_dir_without_modules(self):
        g = FakeGuestFS()
        app = add_rpm_kernel(g, modules=())
        catalog, _ = _catalog(g, [app])
        with pytest.raises(Fatal):
            catalog.detect()
