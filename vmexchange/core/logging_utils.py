# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmexchange/core/logging_utils.py
"""
Shared logging helpers for vmexchange.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator, Union

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def emoji_for_level(level: int) -> str:
    if level >= logging.ERROR:
        return "❌"
    if level >= logging.WARNING:
        return "⚠️"
    if level >= logging.INFO:
        return "✅"
    return "🔍"


def log_with_emoji(logger: LoggerLike, level: int, msg: str, *args: Any) -> None:
    logger.log(level, f"{emoji_for_level(level)} {msg}", *args)


@contextmanager
def log_step(logger: LoggerLike, description: str, *, level: int = logging.DEBUG) -> Generator[None, None, None]:
    """
    Context manager for logging and timing a processing step.

    Logs the start of the step, executes the block, then logs completion
    with the elapsed time. Logs the error and re-raises on exception.

    Args:
        logger: Logger instance to use
        description: Description of the step
        level: Level for the start/done lines (failures always log at WARNING)

    Example:
        with log_step(logger, "Parsing VirtualBox machine"):
            config = VirtualBoxConfiguration(data)
    """
    t0 = time.monotonic()
    log_with_emoji(logger, level, "%s ...", description)
    try:
        yield
        log_with_emoji(logger, level, "%s done (%.3fs)", description, time.monotonic() - t0)
    except Exception as e:
        log_with_emoji(logger, logging.WARNING, "%s failed (%.3fs): %s", description, time.monotonic() - t0, e)
        raise
