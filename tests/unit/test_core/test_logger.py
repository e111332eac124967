# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for logger setup, levels and formatters."""
from __future__ import annotations

import json
import logging

import pytest
from guestconvert.core.logger import TRACE, EmojiFormatter, JsonFormatter, Log, LogStyle


def _record(msg="hello %s", args=("world",), level=logging.INFO, ctx=None):
    rec = logging.LogRecord("guestconvert", level, __file__, 10, msg, args, None)
    if ctx is not None:
        rec.ctx = ctx
    return rec


@pytest.mark.unit
class TestLevels:
    @pytest.mark.parametrize(
        "verbose,quiet,expected",
        [(0, 0, logging.INFO), (2, 0, logging.DEBUG), (3, 0, TRACE), (0, 1, logging.WARNING), (5, 2, logging.ERROR)],
    )
    def test_level_from_flags(self, verbose, quiet, expected):
        assert Log._level_from_flags(verbose, quiet) == expected

    def test_setup_writes_ndjson_file(self, tmp_path):
        log_file = tmp_path / "convert.log"
        logger = Log.setup(verbose=2, log_file=str(log_file), json_logs=True, logger_name="guestconvert.test.json")
        Log.step(logger, "augeas_init", root="/dev/sda2")
        for h in logger.handlers:
            h.flush()

        lines = [json.loads(ln) for ln in log_file.read_text(encoding="utf-8").splitlines() if ln.strip()]
        step = [ln for ln in lines if "augeas_init" in ln["msg"]]
        assert step and step[0]["ctx"] == {"root": "/dev/sda2"}
        assert step[0]["level"] == "INFO"

    def test_setup_replaces_handlers(self):
        logger = Log.setup(logger_name="guestconvert.test.handlers")
        logger = Log.setup(logger_name="guestconvert.test.handlers")
        assert len(logger.handlers) == 1


@pytest.mark.unit
class TestFormatters:
    def test_emoji_formatter_plain(self):
        line = EmojiFormatter(LogStyle(color=False, unicode=False)).format(_record(ctx={"kernel": "2.6.32"}))
        assert "INFO" in line
        assert "hello world" in line
        assert line.endswith("kernel=2.6.32")

    def test_json_formatter(self):
        obj = json.loads(JsonFormatter().format(_record()))
        assert obj["msg"] == "hello world"
        assert obj["logger"] == "guestconvert"

    def test_bound_adapter_merges_context(self):
        base = logging.getLogger("guestconvert.test.bind")
        log = Log.bind(base, family="rhel").bind(bootloader="grub2")
        assert log.extra["ctx"] == {"family": "rhel", "bootloader": "grub2"}
