# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/fixers/__init__.py
"""Guest OS fixers applied while converting a Linux guest to KVM."""

from .console import ConsoleConfigurer
from .efi import EFIUnconfigurer
from .packages import GuestPackages

__all__ = ["ConsoleConfigurer", "EFIUnconfigurer", "GuestPackages"]
