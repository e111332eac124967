# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/fixers/offline/__init__.py
"""Fixers that edit the guest filesystem without booting it."""

from .hypervisor_tools import HypervisorToolRemover, RemovalResult

__all__ = ["HypervisorToolRemover", "RemovalResult"]
