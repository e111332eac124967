# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/inspection/versions.py
"""
Package version ordering for the two package ecosystems we understand.

Both are total orders over (epoch, version, release):

  rpm  - rpmvercmp() from librpm: alternating digit/alpha segments, digits
         newer than letters, '~' sorts before anything (pre-releases),
         '^' sorts after the bare version but before any further segment.
  dpkg - verrevcmp() from dpkg: non-digit runs compared with letters before
         other symbols and '~' before the end of string, digit runs
         compared numerically.
"""
from __future__ import annotations

import functools
import string
from typing import Callable, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .model import Application

_ALNUM = frozenset(string.ascii_letters + string.digits)
_DIGITS = frozenset(string.digits)
_ALPHA = frozenset(string.ascii_letters)


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


def rpmvercmp(a: str, b: str) -> int:
    """
    >>> rpmvercmp("2.6.32", "2.6.9")
    1
    >>> rpmvercmp("1.0~rc1", "1.0")
    -1
    >>> rpmvercmp("1.0^git1", "1.0")
    1
    """
    if a == b:
        return 0
    i = j = 0
    la, lb = len(a), len(b)
    while i < la or j < lb:
        while i < la and a[i] not in _ALNUM and a[i] not in "~^":
            i += 1
        while j < lb and b[j] not in _ALNUM and b[j] not in "~^":
            j += 1

        ca = a[i] if i < la else ""
        cb = b[j] if j < lb else ""

        if ca == "~" or cb == "~":
            if ca != "~":
                return 1
            if cb != "~":
                return -1
            i += 1
            j += 1
            continue

        if ca == "^" or cb == "^":
            if not ca:
                return -1
            if not cb:
                return 1
            if ca != "^":
                return 1
            if cb != "^":
                return -1
            i += 1
            j += 1
            continue

        if not (ca and cb):
            break

        charset = _DIGITS if ca in _DIGITS else _ALPHA
        isnum = charset is _DIGITS
        si, sj = i, j
        while i < la and a[i] in charset:
            i += 1
        while j < lb and b[j] in charset:
            j += 1
        seg1, seg2 = a[si:i], b[sj:j]

        # Segments of different types: numeric is newer.
        if not seg2:
            return 1 if isnum else -1

        if isnum:
            seg1 = seg1.lstrip("0")
            seg2 = seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1

        if seg1 != seg2:
            return 1 if seg1 > seg2 else -1

    if i >= la and j >= lb:
        return 0
    return 1 if i < la else -1


def _dpkg_order(ch: str) -> int:
    if not ch or ch in _DIGITS:
        return 0
    if ch in _ALPHA:
        return ord(ch)
    if ch == "~":
        return -1
    return ord(ch) + 256


def dpkg_verrevcmp(a: str, b: str) -> int:
    """
    >>> dpkg_verrevcmp("4.19.0-21", "4.9.0-3")
    1
    >>> dpkg_verrevcmp("1.0~beta", "1.0")
    -1
    """
    i = j = 0
    la, lb = len(a), len(b)
    while i < la or j < lb:
        first_diff = 0
        while (i < la and a[i] not in _DIGITS) or (j < lb and b[j] not in _DIGITS):
            ac = _dpkg_order(a[i] if i < la else "")
            bc = _dpkg_order(b[j] if j < lb else "")
            if ac != bc:
                return _sign(ac - bc)
            i += 1
            j += 1
        while i < la and a[i] == "0":
            i += 1
        while j < lb and b[j] == "0":
            j += 1
        while i < la and a[i] in _DIGITS and j < lb and b[j] in _DIGITS:
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1
        if i < la and a[i] in _DIGITS:
            return 1
        if j < lb and b[j] in _DIGITS:
            return -1
        if first_diff:
            return _sign(first_diff)
    return 0


_SEGMENT_CMP = {
    "rpm": rpmvercmp,
    "deb": dpkg_verrevcmp,
}


def compare_applications(package_format: str, a: "Application", b: "Application") -> int:
    """Compare two installed packages by (epoch, version, release)."""
    cmp = _SEGMENT_CMP.get(package_format)
    if cmp is None:
        raise ValueError(f"no version ordering for package format {package_format!r}")
    if a.epoch != b.epoch:
        return 1 if a.epoch > b.epoch else -1
    r = cmp(a.version, b.version)
    if r:
        return r
    return cmp(a.release, b.release)


def application_sort_key(package_format: str) -> Callable[["Application"], object]:
    return functools.cmp_to_key(lambda a, b: compare_applications(package_format, a, b))
