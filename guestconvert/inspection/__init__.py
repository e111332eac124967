# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/inspection/__init__.py
"""Guest inspection data and the per-family rule tables."""

from .model import Application, GuestFamily, GuestInspection
from .family import BootloaderGeneration, ConversionStrategy, FamilyProfile, profile_for, strategy_for

__all__ = [
    "Application",
    "GuestFamily",
    "GuestInspection",
    "BootloaderGeneration",
    "ConversionStrategy",
    "FamilyProfile",
    "profile_for",
    "strategy_for",
]
