# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import dataclasses
import errno

import pytest
from fakes.fake_guestfs import FakeGuestFS
from fakes.fake_logger import FakeLogger
from fakes.guest_builder import make_inspection

from guestconvert.core.exceptions import Fatal
from guestconvert.fixers.kernel.catalog import KernelInfo
from guestconvert.fixers.kernel.selector import KernelSelector
from guestconvert.inspection.family import profile_for
from guestconvert.inspection.model import Application, GuestFamily


def _kernel(g, version, release, *, virtio=True, xen=False, name="kernel"):
    vmlinuz = f"/boot/vmlinuz-{version}-{release}"
    g.add_file(vmlinuz, vmlinuz)
    st = g.statns(vmlinuz)
    return KernelInfo(
        app=Application(name=name, version=version, release=release, arch="x86_64"),
        name=name,
        version=f"{version}-{release}",
        arch="x86_64",
        vmlinuz=vmlinuz,
        vmlinuz_id=(st["st_dev"], st["st_ino"]),
        initrd=None,
        modpath=f"/lib/modules/{version}-{release}",
        modules=("virtio_net",) if virtio else ("xennet",) if xen else ("e1000",),
        supports_virtio=virtio,
        is_xen_kernel=xen,
        is_debug=False,
    )


def _selector(g, family=GuestFamily.RHEL):
    logger = FakeLogger()
    inspection = make_inspection(family=family)
    return KernelSelector(logger, g, inspection, profile_for(family)), logger


class _RecordingBootloader:
    def __init__(self, can_set=True):
        self.defaults = []
        self.can_set = can_set

    def set_default(self, vmlinuz):
        self.defaults.append(vmlinuz)
        return self.can_set


@pytest.mark.unit
class TestSelectBest:
    def test_virtio_beats_newer_version(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6", virtio=True)
        b = _kernel(g, "2.6.32", "131.el6", virtio=False)
        sel, _ = _selector(g)
        assert sel.select_best([a, b]) is a
        assert sel.select_best([b, a]) is a

    def test_newest_virtio_kernel_wins(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        c = _kernel(g, "2.6.32", "131.el6")
        sel, _ = _selector(g)
        assert sel.select_best([a, c]) is c

    def test_rpm_order_is_not_lexical(self):
        g = FakeGuestFS()
        old = _kernel(g, "3.10.0", "957.el7")
        new = _kernel(g, "3.10.0", "1160.el7")
        sel, _ = _selector(g)
        assert sel.select_best([old, new]) is new

    def test_debian_revision_order(self):
        g = FakeGuestFS()
        old = _kernel(g, "4.19.67", "2", name="linux-image-4.19.0-6-amd64")
        new = _kernel(g, "4.19.98", "1", name="linux-image-4.19.0-8-amd64")
        sel, _ = _selector(g, GuestFamily.DEBIAN)
        assert sel.select_best([new, old]) is new

    def test_equal_kernels_keep_bootloader_order(self):
        g = FakeGuestFS()
        first = _kernel(g, "2.6.32", "71.el6", name="kernel")
        second = _kernel(g, "2.6.32", "71.el6.1", name="kernel")
        second = dataclasses.replace(second, app=first.app)
        sel, _ = _selector(g)
        assert sel.select_best([first, second]) is first

    def test_xen_kernels_are_never_chosen(self):
        g = FakeGuestFS()
        xen = _kernel(g, "2.6.18", "400.el5xen", virtio=False, xen=True)
        plain = _kernel(g, "2.6.18", "308.el5", virtio=False)
        sel, _ = _selector(g)
        assert sel.select_best([xen, plain]) is plain

    def test_only_xen_kernels_is_fatal(self):
        g = FakeGuestFS()
        xen = _kernel(g, "2.6.18", "308.el5xen", virtio=False, xen=True)
        sel, _ = _selector(g)
        with pytest.raises(Fatal, match="only Xen kernels"):
            sel.select_best([xen])


@pytest.mark.unit
class TestResolve:
    def test_keeps_bootloader_order(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        b = _kernel(g, "2.6.32", "131.el6")
        sel, _ = _selector(g)
        assert sel.resolve([b.vmlinuz, a.vmlinuz], [a, b]) == [b, a]

    def test_missing_entry_warns(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        sel, logger = _selector(g)
        assert sel.resolve(["/boot/vmlinuz-gone", a.vmlinuz], [a]) == [a]
        assert any("vmlinuz-gone" in m for m in logger.messages("warning"))

    def test_unpackaged_entry_is_ignored(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        g.add_file("/boot/vmlinuz-custom")
        sel, logger = _selector(g)
        assert sel.resolve(["/boot/vmlinuz-custom", a.vmlinuz], [a]) == [a]
        assert logger.messages("warning") == []

    def test_matches_by_file_identity(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        g.hardlink(a.vmlinuz, "/vmlinuz")
        sel, _ = _selector(g)
        assert sel.resolve(["/vmlinuz"], [a]) == [a]

    def test_unreadable_entry_is_fatal(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        g.stat_errno[a.vmlinuz] = errno.EIO
        sel, logger = _selector(g)
        with pytest.raises(Fatal, match="cannot stat bootloader kernel"):
            sel.resolve([a.vmlinuz], [a])
        assert logger.messages("warning") == []

    def test_nothing_resolved_is_fatal(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        sel, _ = _selector(g)
        with pytest.raises(Fatal):
            sel.resolve(["/boot/vmlinuz-gone"], [a])


@pytest.mark.unit
class TestActivate:
    def test_already_default(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        b = _kernel(g, "2.6.32", "131.el6")
        bl = _RecordingBootloader()
        sel, _ = _selector(g)
        assert sel.activate(a, [a, b], bl) is False
        assert bl.defaults == []

    def test_switches_default(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        b = _kernel(g, "2.6.32", "131.el6")
        bl = _RecordingBootloader()
        sel, _ = _selector(g)
        assert sel.activate(b, [a, b], bl) is True
        assert bl.defaults == [b.vmlinuz]

    def test_bootloader_that_cannot_switch(self):
        g = FakeGuestFS()
        a = _kernel(g, "2.6.32", "71.el6")
        b = _kernel(g, "2.6.32", "131.el6")
        bl = _RecordingBootloader(can_set=False)
        sel, _ = _selector(g)
        assert sel.activate(b, [a, b], bl) is False
        assert bl.defaults == [b.vmlinuz]
