# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/orchestrator/__init__.py
"""Fixed-order conversion of one inspected Linux guest."""

from .pipeline import ConversionPipeline, GuestCapabilities

__all__ = ["ConversionPipeline", "GuestCapabilities"]
