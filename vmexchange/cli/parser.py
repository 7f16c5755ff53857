# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmexchange/cli/parser.py
from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config.config_loader import Config
from ..core.logger import c

YAML_EXAMPLE = """\
  # vmexchange.yaml
  os_catalog: /etc/vmexchange/os_catalog.yaml
  verbose: 1
  pretty: true
"""

EXAMPLES = """\
  vmexchange probe disk.vmdk disk.qcow2
  vmexchange inspect machine.vbox
  vmexchange transform machine.vmx --privacy -o template.vmx
  vmexchange transform domain.xml --editable --set usb_speed=qemu-xhci
  vmexchange --config vmexchange.yaml validate machine.vbox
"""


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Combines raw description formatting with default value display in help."""


def _build_epilog() -> str:
    return (
        c("Examples:\n", "cyan", ["bold"])
        + c(EXAMPLES, "cyan")
        + "\n"
        + c("YAML config:\n", "cyan", ["bold"])
        + c(YAML_EXAMPLE, "cyan")
    )


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # two-phase parse relies on these
    from .. import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file or directory (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    p.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Only log errors.")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON logs on stderr.")
    p.add_argument(
        "--os-catalog",
        dest="os_catalog",
        default=None,
        help="YAML operating system catalog (default: the bundled one).",
    )


def _add_output_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--json", dest="as_json", action="store_true", help="Print JSON instead of tables.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vmexchange",
        description=c("vmexchange: virtual machine descriptor and disk image exchange", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_build_epilog(),
    )
    _add_global_config_logging(p)

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    probe = sub.add_parser("probe", help="Detect disk image formats.", formatter_class=HelpFormatter)
    probe.add_argument("disks", nargs="+", metavar="DISK", help="Disk image file(s).")
    _add_output_flags(probe)

    inspect = sub.add_parser("inspect", help="Show the normalized view of a descriptor.", formatter_class=HelpFormatter)
    inspect.add_argument("path", metavar="CONFIG", help="Machine descriptor (.vmx, .vbox, libvirt XML, tar.gz).")
    _add_output_flags(inspect)

    transform = sub.add_parser(
        "transform", help="Apply transformations and write the descriptor.", formatter_class=HelpFormatter
    )
    transform.add_argument("path", metavar="CONFIG", help="Machine descriptor.")
    transform.add_argument("--privacy", action="store_true", help="Remove user and host specific data.")
    transform.add_argument("--editable", action="store_true", help="Prepare for local editing.")
    transform.add_argument("--non-persistent", dest="non_persistent", action="store_true", help="Prepare for a stateless session.")
    transform.add_argument(
        "--set",
        dest="options",
        action="append",
        default=[],
        metavar="GROUP=OPTION",
        help="Select a hardware option, e.g. usb_speed=EHCI (groups: sound_card_model, nic_model, usb_speed, gfx_type, hw_version).",
    )
    transform.add_argument(
        "--filtered",
        action="store_true",
        help="VMware only: write just the keys marked as safe to keep.",
    )
    transform.add_argument(
        "--no-pretty",
        dest="pretty",
        action="store_false",
        default=True,
        help="Write XML without indentation.",
    )
    transform.add_argument("-o", "--output", default=None, help="Output file (default: stdout).")

    validate = sub.add_parser("validate", help="Validate a descriptor against its schema.", formatter_class=HelpFormatter)
    validate.add_argument("path", metavar="CONFIG", help="Machine descriptor.")

    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    pre.add_argument("--dump-args", action="store_true")
    return pre


def _json_dump(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=str)


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Flow:
      Phase 0: parse only the global flags needed to locate config/logging
      Phase 1: load and merge config files
      Phase 2: apply config as defaults onto the parser (CLI flags win)
      Phase 3: full parse
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    if logger is None:
        from ..core.logger import Log  # local import to avoid cycles

        logger = Log.setup(
            getattr(args0, "verbose", 0),
            getattr(args0, "log_file", None),
            quiet=getattr(args0, "quiet", 0),
            json_logs=getattr(args0, "json_logs", False),
        )

    conf: Dict[str, Any] = {}
    cfgs = getattr(args0, "config", None) or []
    if cfgs:
        expanded = Config.expand_configs(logger, list(cfgs))
        conf = Config.load_many(logger, expanded)

    if getattr(args0, "dump_config", False):
        print(_json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    if getattr(args0, "dump_args", False):
        print(_json_dump(vars(args)))
        raise SystemExit(0)

    # logging settings from config files only become known now
    if any(k in conf for k in ("verbose", "log_file", "json_logs")):
        from ..core.logger import Log

        logger = Log.setup(args.verbose, args.log_file, quiet=args.quiet, json_logs=args.json_logs)

    return args, conf, logger


__all__ = ["build_parser", "parse_args_with_config", "HelpFormatter"]
