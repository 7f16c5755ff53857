# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/cli/commands.py
"""Subcommand implementations; each returns a process exit code."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from ..catalog import OperatingSystem, load_os_catalog
from ..configuration.base import VirtualizationConfiguration
from ..configuration.dispatcher import detect
from ..configuration.transformation import TransformationManager
from ..configuration.vmware import VmwareConfiguration
from ..core.exceptions import Fatal, TransformationError, VmExchangeError, wrap_io
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.xml_utils import parse_xml, remove_formatting_nodes, to_bytes
from ..disk import probe
from ..hardware import ConfigurationGroup

logger = logging.getLogger(__name__)


def _console() -> Console:
    return Console(file=sys.stdout)


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "no"


def _load_catalog(args: argparse.Namespace) -> List[OperatingSystem]:
    return load_os_catalog(getattr(args, "os_catalog", None))


def _load_config(args: argparse.Namespace) -> VirtualizationConfiguration:
    os_list = _load_catalog(args)
    log = Log.bind(logger, path=args.path)
    with log_step(log, "Detecting descriptor format"):
        return detect(Path(args.path), os_list)


def _parse_group(name: str) -> ConfigurationGroup:
    key = name.strip().upper().replace("-", "_")
    try:
        return ConfigurationGroup[key]
    except KeyError:
        for group in ConfigurationGroup:
            if group.value.lower() == name.strip().lower():
                return group
    raise Fatal(code=2, msg=f"Unknown option group '{name}'")


def _parse_option_assignments(raw: List[str]) -> List[Tuple[ConfigurationGroup, str]]:
    out = []
    for item in raw:
        if "=" not in item:
            raise Fatal(code=2, msg=f"Expected GROUP=OPTION, got '{item}'")
        group, option = item.split("=", 1)
        out.append((_parse_group(group), option))
    return out


# ---------------------------------------------------------------------------
# probe
# ---------------------------------------------------------------------------

def cmd_probe(args: argparse.Namespace) -> int:
    rc = 0
    rows: List[Dict[str, Any]] = []
    for disk in args.disks:
        try:
            image = probe(disk)
        except VmExchangeError as e:
            Log.fail(logger, e.msg, path=disk)
            rows.append({"path": disk, "error": e.msg})
            rc = max(rc, e.code)
            continue
        rows.append(
            {
                "path": disk,
                "format": image.format.value,
                "sub_format": image.sub_format,
                "standalone": image.is_standalone,
                "compressed": image.is_compressed,
                "snapshot": image.is_snapshot,
                "hw_version": image.hw_version,
                "description": image.description,
            }
        )

    if args.as_json:
        print(json.dumps(rows, indent=2))
        return rc

    table = Table(title="Disk images")
    for col in ("Path", "Format", "Standalone", "Compressed", "Snapshot", "HW version", "Details"):
        table.add_column(col)
    for row in rows:
        if "error" in row:
            table.add_row(row["path"], "[red]error[/red]", "", "", "", "", row["error"])
            continue
        table.add_row(
            row["path"],
            row["format"],
            _yes_no(row["standalone"]),
            _yes_no(row["compressed"]),
            _yes_no(row["snapshot"]),
            str(row["hw_version"]),
            row["sub_format"] or row["description"] or "",
        )
    _console().print(table)
    return rc


# ---------------------------------------------------------------------------
# inspect
# ---------------------------------------------------------------------------

def describe(config: VirtualizationConfiguration) -> Dict[str, Any]:
    version = config.get_virtualizer_version()
    options = []
    for group in config.configurable_options:
        selected = group.selected
        options.append(
            {
                "group": group.group.name.lower(),
                "selected": selected.id if selected is not None else None,
                "selected_name": selected.display_name if selected is not None else None,
                "available": [o.id for o in group.options],
            }
        )
    return {
        "virtualizer": config.virtualizer.id,
        "virtualizer_name": config.virtualizer.name,
        "display_name": config.display_name,
        "os": config.os.os_name if config.os is not None else None,
        "machine_snapshot": config.is_machine_snapshot,
        "virtualizer_version": str(version) if version is not None else None,
        "file_name_extension": config.file_name_extension,
        "hdds": [
            {
                "bus": hdd.bus.value if hdd.bus is not None else None,
                "chipset": hdd.chipset_driver,
                "image": hdd.disk_image,
            }
            for hdd in config.hdds
        ],
        "options": options,
    }


def cmd_inspect(args: argparse.Namespace) -> int:
    info = describe(_load_config(args))
    if args.as_json:
        print(json.dumps(info, indent=2))
        return 0

    console = _console()
    summary = Table(title=f"{args.path}", show_header=False)
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    summary.add_row("Virtualizer", info["virtualizer_name"])
    summary.add_row("Display name", info["display_name"] or "-")
    summary.add_row("Operating system", info["os"] or "-")
    summary.add_row("Machine snapshot", _yes_no(info["machine_snapshot"]))
    summary.add_row("Hardware version", info["virtualizer_version"] or "-")
    console.print(summary)

    if info["hdds"]:
        disks = Table(title="Hard disks")
        for col in ("Bus", "Controller", "Image"):
            disks.add_column(col)
        for hdd in info["hdds"]:
            disks.add_row(hdd["bus"] or "-", hdd["chipset"] or "-", hdd["image"] or "-")
        console.print(disks)

    if info["options"]:
        opts = Table(title="Hardware options")
        for col in ("Group", "Selected", "Available"):
            opts.add_column(col)
        for o in info["options"]:
            selected = o["selected_name"] or "-"
            opts.add_row(o["group"], selected, ", ".join(repr(i) for i in o["available"]))
        console.print(opts)
    return 0


# ---------------------------------------------------------------------------
# transform
# ---------------------------------------------------------------------------

def _select(group: ConfigurationGroup, option: str) -> Callable[[VirtualizationConfiguration, Any], None]:
    def step(config: VirtualizationConfiguration, _args: Any) -> None:
        if not config.select_option(group, option):
            raise TransformationError(msg=f"Option '{option}' is not available in group {group.name.lower()}")

    return step


def build_manager(config: VirtualizationConfiguration, args: argparse.Namespace) -> TransformationManager:
    manager: TransformationManager = TransformationManager(config, args)
    manager.register("privacy", lambda cfg, _a: cfg.transform_privacy(), enabled=args.privacy)
    manager.register("editable", lambda cfg, _a: cfg.transform_editable(), enabled=args.editable)
    manager.register("non-persistent", lambda cfg, _a: cfg.transform_non_persistent(), enabled=args.non_persistent)
    for group, option in _parse_option_assignments(args.options):
        manager.register(f"select {group.name.lower()}={option}", _select(group, option))
    return manager


def render(config: VirtualizationConfiguration, *, filtered: bool = False, pretty: bool = True) -> bytes:
    if filtered:
        if not isinstance(config, VmwareConfiguration):
            raise Fatal(code=2, msg="--filtered is only supported for VMware descriptors")
        return config.get_filtered_bytes()
    data = config.get_configuration_bytes()
    if not pretty and config.file_name_extension in ("vbox", "xml"):
        data = to_bytes(remove_formatting_nodes(parse_xml(data)))
    return data


def cmd_transform(args: argparse.Namespace) -> int:
    config = _load_config(args)
    manager = build_manager(config, args)
    logger.debug("Transformations:\n%s", manager)
    with log_step(logger, "Applying transformations", level=logging.INFO):
        manager.transform()

    data = render(config, filtered=args.filtered, pretty=args.pretty)
    if args.output:
        out = Path(args.output)
        try:
            out.write_bytes(data)
        except OSError as e:
            raise wrap_io(f"Cannot write '{out}': {e.strerror or e}", e, path=str(out)) from e
        Log.ok(logger, f"Wrote {out}", size=len(data))
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    return 0


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------

def cmd_validate(args: argparse.Namespace) -> int:
    config = _load_config(args)
    with log_step(logger, f"Validating {args.path}"):
        config.validate()
    _console().print(f"[green]valid[/green] {args.path} ({config.virtualizer.name})")
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace], int]] = {
    "probe": cmd_probe,
    "inspect": cmd_inspect,
    "transform": cmd_transform,
    "validate": cmd_validate,
}


def run(args: argparse.Namespace) -> int:
    handler: Optional[Callable[[argparse.Namespace], int]] = COMMANDS.get(args.command)
    if handler is None:
        raise Fatal(code=2, msg=f"Unknown command '{args.command}'")
    return handler(args)


__all__ = ["run", "describe", "build_manager", "render", "COMMANDS"]
