# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/__init__.py
"""
guestconvert - make an installed Linux guest bootable under KVM

Works on an already launched libguestfs handle with the guest mounted:

    import guestfs
    from guestconvert import ConversionPipeline, ConvertOptions, GuestInspection

    opts = ConvertOptions.load(["/etc/guestconvert.yaml"])
    logger = opts.setup_logging()
    g = guestfs.GuestFS(python_return_dict=True)
    ...  # add drive, launch, inspect, mount
    inspection = GuestInspection.from_guestfs(g, root)
    caps = ConversionPipeline(logger, g, inspection, opts).run()
    print(caps.as_dict())  # {'block_bus': 'virtio', 'net_bus': 'virtio'}
"""

__version__ = "0.1.0"

from .config import Config, ConvertOptions
from .core.exceptions import Fatal, GuestConvertError, UnsupportedGuest
from .inspection import GuestFamily, GuestInspection
from .orchestrator import ConversionPipeline, GuestCapabilities

__all__ = [
    "__version__",
    "Config",
    "ConvertOptions",
    "Fatal",
    "GuestConvertError",
    "UnsupportedGuest",
    "GuestFamily",
    "GuestInspection",
    "ConversionPipeline",
    "GuestCapabilities",
]
