# SPDX-License-Identifier: LGPL-3.0-or-later
#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# vmexchange/__main__.py
from __future__ import annotations

import sys
import traceback
from typing import Optional, Sequence

from .cli.commands import run
from .cli.parser import parse_args_with_config
from .core.exceptions import VmExchangeError, format_exception_for_cli


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger, level: str, msg: str) -> None:
    """Log through ``logger`` when there is one, else print to stderr."""
    if logger is None:
        _print_stderr(msg)
        return
    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[object] = None
    verbose = 0

    # Phase 1: parse (config errors can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
        verbose = getattr(args, "verbose", 0)
    except VmExchangeError as e:
        _safe_log(logger, "error", format_exception_for_cli(e))
        raise SystemExit(e.code)
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(130)

    # Phase 2: run the command
    try:
        rc = run(args)
    except VmExchangeError as e:
        _safe_log(logger, "error", format_exception_for_cli(e, verbose=verbose))
        rc = e.code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        # unexpected exceptions must not fail silently
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = 1

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
