# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/fixers/bootloader/__init__.py
"""
Grub detection, kernel listing, default selection and console edits.
"""

from .grub import Bootloader, Grub1, Grub2, detect_bootloader

__all__ = ["Bootloader", "Grub1", "Grub2", "detect_bootloader"]
