# SPDX-License-Identifier: LGPL-3.0-or-later
# guestconvert/config/__init__.py
from .config_loader import Config, ConvertOptions, deep_merge_dict

__all__ = ["Config", "ConvertOptions", "deep_merge_dict"]
