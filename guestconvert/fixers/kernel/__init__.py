# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/fixers/kernel/__init__.py
"""Kernel inventory, selection and initrd regeneration."""

from .catalog import KernelCatalog, KernelInfo
from .initrd import LEGACY_MODULES, VIRTIO_MODULES, InitrdRebuilder, initrd_modules
from .selector import KernelSelector

__all__ = [
    "KernelCatalog",
    "KernelInfo",
    "KernelSelector",
    "InitrdRebuilder",
    "VIRTIO_MODULES",
    "LEGACY_MODULES",
    "initrd_modules",
]
