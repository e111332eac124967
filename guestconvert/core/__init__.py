# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/core/__init__.py
from .exceptions import Fatal, GuestConvertError, UnsupportedGuest
from .augeas import AugeasTree

__all__ = ["Fatal", "GuestConvertError", "UnsupportedGuest", "AugeasTree"]
