# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/core/list_utils.py
"""Ordered-list helpers shared by the bootloader and package code."""
from __future__ import annotations

from typing import Callable, Hashable, Iterable, List, Optional, TypeVar


T = TypeVar("T", bound=Hashable)
V = TypeVar("V")


def dedup_preserve_order(items: Iterable[T]) -> List[T]:
    """Remove duplicates while keeping the first occurrence.

    Example:
        >>> dedup_preserve_order(['a', 'b', 'a', 'c', 'b'])
        ['a', 'b', 'c']
    """
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def move_to_front(items: List[T], item: T) -> List[T]:
    """Return a copy with `item` first; unchanged order otherwise.

    Example:
        >>> move_to_front(['a', 'b', 'c'], 'c')
        ['c', 'a', 'b']
        >>> move_to_front(['a', 'b'], 'z')
        ['z', 'a', 'b']
    """
    return [item] + [x for x in items if x != item]


def first_or_none(items: Iterable[V], pred: Callable[[V], bool]) -> Optional[V]:
    for x in items:
        if pred(x):
            return x
    return None


__all__ = [
    "dedup_preserve_order",
    "move_to_front",
    "first_or_none",
]
