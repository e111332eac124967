# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestconvert/config/config_loader.py
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

from ..core.exceptions import Fatal
from ..core.logger import Log

PathLike = Union[str, Path]


def deep_merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Dict values merge recursively; lists and scalars are replaced.

    >>> deep_merge_dict({"a": {"b": 1, "c": 2}}, {"a": {"c": 9}, "d": 4})
    {'a': {'b': 1, 'c': 9}, 'd': 4}
    """
    out: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = deep_merge_dict(out[k], v)
        else:
            out[k] = v
    return out


class Config:
    @staticmethod
    def load_one(path: PathLike) -> Dict[str, Any]:
        p = Path(path).expanduser().resolve()
        if not p.exists():
            raise Fatal(msg=f"config file not found: {p}")
        text = p.read_text(encoding="utf-8")
        try:
            if p.suffix.lower() == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise Fatal(msg=f"cannot parse config {p}: {e}", cause=e) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise Fatal(msg=f"config {p} must contain a mapping, got {type(data).__name__}")
        return data

    @staticmethod
    def load_many(paths: Iterable[PathLike], logger: Optional[logging.Logger] = None) -> Dict[str, Any]:
        """Later files win."""
        merged: Dict[str, Any] = {}
        for path in paths:
            if logger:
                logger.debug("Loading config %s", path)
            merged = deep_merge_dict(merged, Config.load_one(path))
        return merged


@dataclass
class ConvertOptions:
    keep_serial_console: bool = True
    serial_device: str = "ttyS0"
    autorelabel: bool = True
    initrd_backup_suffix: str = ".pre-conversion"
    verbose: int = 0
    log_file: Optional[str] = None
    json_logs: bool = False
    progress: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConvertOptions":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        # YAML users write keep-serial-console as often as keep_serial_console.
        data = {str(k).replace("-", "_"): v for k, v in data.items()}
        unknown = sorted(set(data) - known)
        if unknown:
            raise Fatal(msg=f"unknown option(s) in config: {', '.join(unknown)}", context={"known": sorted(known)})
        opts = cls(**data)
        opts.validate()
        return opts

    @classmethod
    def load(cls, paths: Iterable[PathLike], logger: Optional[logging.Logger] = None) -> "ConvertOptions":
        return cls.from_dict(Config.load_many(paths, logger))

    def validate(self) -> None:
        if not isinstance(self.serial_device, str) or not self.serial_device or "/" in self.serial_device:
            raise Fatal(msg=f"serial_device must be a bare tty name like ttyS0, got {self.serial_device!r}")
        if not self.initrd_backup_suffix:
            raise Fatal(msg="initrd_backup_suffix must not be empty")
        try:
            self.verbose = int(self.verbose)
        except (TypeError, ValueError):
            raise Fatal(msg=f"verbose must be an integer, got {self.verbose!r}") from None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def setup_logging(self) -> logging.Logger:
        return Log.setup(self.verbose, self.log_file, json_logs=self.json_logs)
