# SPDX-License-Identifier: GPL-2.0-or-later
"""Helpers that lay out installed kernels and package databases in a FakeGuestFS."""
from __future__ import annotations

from guestconvert.inspection.model import Application, GuestFamily, GuestInspection

VIRTIO = ("virtio", "virtio_ring", "virtio_blk", "virtio_net", "virtio_pci")


def _add_modules(fake, modpath, modules):
    files = [modpath]
    fake.add_dir(modpath)
    fake.add_dir(f"{modpath}/kernel/drivers")
    for m in modules:
        p = f"{modpath}/kernel/drivers/{m}.ko"
        fake.add_file(p, b"\x7fELF")
        files.append(p)
    return files


def add_rpm_kernel(
    fake,
    *,
    name="kernel",
    version="2.6.32",
    release="71.el6",
    arch="x86_64",
    epoch=0,
    modules=VIRTIO,
    initrd=True,
    config=None,
    flavour=".x86_64",
):
    """
    RHEL-style kernel package. `flavour` is what follows version-release in
    the file names ('.x86_64' on RHEL 6, 'xen' for kernel-xen on RHEL 5).
    """
    kver = f"{version}-{release}{flavour}"
    vmlinuz = f"/boot/vmlinuz-{kver}"
    modpath = f"/lib/modules/{kver}"
    fake.add_file(vmlinuz, f"vmlinuz {kver}")
    files = [vmlinuz] + _add_modules(fake, modpath, modules)
    if initrd:
        fake.add_file(f"/boot/initramfs-{kver}.img", b"initrd")
    if config is not None:
        cfg = f"/boot/config-{kver}"
        fake.add_file(cfg, config)
        files.append(cfg)

    app = Application(name=name, version=version, release=release, epoch=epoch, arch=arch)
    spec = f"{name}-{version}-{release}" + (f".{arch}" if arch else "")
    fake.on_command(["rpm", "-ql", spec], output="\n".join(files) + "\n")
    return app


def add_deb_kernel(fake, *, kver="4.19.0-6-amd64", version="4.19.67-2", modules=VIRTIO, initrd=True):
    name = f"linux-image-{kver}"
    vmlinuz = f"/boot/vmlinuz-{kver}"
    modpath = f"/lib/modules/{kver}"
    fake.add_file(vmlinuz, f"vmlinuz {kver}")
    files = [vmlinuz] + _add_modules(fake, modpath, modules)
    cfg = f"/boot/config-{kver}"
    fake.add_file(cfg, "CONFIG_VIRTIO_NET=m\n")
    files.append(cfg)
    if initrd:
        fake.add_file(f"/boot/initrd.img-{kver}", b"initrd")
    app = Application(name=name, version=version, release="", arch="amd64")
    fake.on_command(["dpkg", "-L", name], output="\n".join(["/."] + files) + "\n")
    return app


def make_inspection(
    apps=(),
    *,
    family=GuestFamily.RHEL,
    distro=None,
    major=6,
    package_format=None,
    package_management=None,
    mountpoints=None,
):
    if package_format is None:
        package_format = "deb" if family is GuestFamily.DEBIAN else "rpm"
    if package_management is None:
        package_management = {GuestFamily.RHEL: "yum", GuestFamily.SUSE: "zypper", GuestFamily.DEBIAN: "apt"}[family]
    if distro is None:
        distro = {GuestFamily.RHEL: "rhel", GuestFamily.SUSE: "sles", GuestFamily.DEBIAN: "debian"}[family]
    return GuestInspection(
        root="/dev/sda2",
        distro=distro,
        major_version=major,
        minor_version=0,
        package_format=package_format,
        package_management=package_management,
        family=family,
        mountpoints=dict(mountpoints or {"/": "/dev/sda2"}),
        apps=tuple(apps),
    )


def seed_grub1(fake, config="/boot/grub/grub.conf", *, default=0, kernels=(), console=None):
    """title entries booting each path in `kernels` (paths relative to grub's root)."""
    fake.add_file(config, "# grub.conf\n")
    root = f"/files{config}"
    fake.aug_add(root, "default", str(default))
    for i, k in enumerate(kernels):
        title = fake.aug_add(root, "title", f"Linux {i}")
        kernel = fake.aug_add(title, "kernel", k)
        fake.aug_add(kernel, "ro")
        if console:
            fake.aug_add(kernel, "console", console)
    return root
