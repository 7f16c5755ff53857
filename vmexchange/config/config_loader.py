# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/config/config_loader.py
"""
YAML/JSON configuration files for the command line tool.

Several ``--config`` files may be given; they are merged in order (later
files win, nested mappings are merged key by key) and the result becomes the
argparse defaults, so explicit command line flags still override them.

Recognized keys::

    os_catalog: /etc/vmexchange/os_catalog.yaml
    verbose: 1
    log_file: /var/log/vmexchange.log
    json_logs: false
    pretty: true
    filtered: false
"""
from __future__ import annotations

import argparse
import glob
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Set

import yaml

from ..core.exceptions import Fatal
from ..core.logger import Log

CONFIG_SUFFIXES = (".yaml", ".yml", ".json")

KNOWN_KEYS = frozenset({"os_catalog", "verbose", "log_file", "json_logs", "pretty", "filtered"})


def deep_merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``override`` into a copy of ``base``.

    Example:
        >>> deep_merge_dict({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 99}, "e": 4})
        {'a': {'b': 1, 'c': 99}, 'd': 3, 'e': 4}
    """
    out: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = deep_merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _normalize_key(key: Any) -> str:
    return str(key).strip().replace("-", "_")


class Config:
    @staticmethod
    def expand_configs(logger: logging.Logger, paths: Sequence[str]) -> List[Path]:
        """Resolve ``~``, globs and directories (their *.yaml/*.yml/*.json, sorted) to files."""
        out: List[Path] = []
        for raw in paths:
            pattern = str(Path(raw).expanduser())
            matches = sorted(glob.glob(pattern)) if glob.has_magic(pattern) else [pattern]
            if not matches:
                raise Fatal(code=2, msg=f"Config pattern matched nothing: {raw}")
            for m in matches:
                p = Path(m)
                if p.is_dir():
                    found = sorted(f for f in p.iterdir() if f.suffix.lower() in CONFIG_SUFFIXES and f.is_file())
                    logger.debug("Config directory %s: %d file(s)", p, len(found))
                    out.extend(found)
                elif p.is_file():
                    out.append(p)
                else:
                    raise Fatal(code=2, msg=f"Config file not found: {p}")
        return out

    @staticmethod
    def load_one(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise Fatal(code=2, msg=f"Cannot read config {path}: {e.strerror or e}", cause=e) from e
        try:
            # JSON is a subset of YAML
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise Fatal(code=2, msg=f"Invalid YAML/JSON in {path}: {e}", cause=e) from e
        if data is None:
            logger.debug("Config %s is empty", path)
            return {}
        if not isinstance(data, dict):
            raise Fatal(code=2, msg=f"Config {path} must contain a mapping, got {type(data).__name__}")
        return {_normalize_key(k): v for k, v in data.items()}

    @staticmethod
    def load_many(logger: logging.Logger, paths: Iterable[Path]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            logger.debug("Loading config %s", p)
            merged = deep_merge_dict(merged, Config.load_one(logger, p))
        unknown = sorted(set(merged) - KNOWN_KEYS)
        if unknown:
            Log.warn(logger, "Ignoring unknown config keys", keys=",".join(unknown))
        return merged

    @staticmethod
    def _dests(parser: argparse.ArgumentParser) -> Set[str]:
        return {a.dest for a in parser._actions if a.dest not in (argparse.SUPPRESS, "help")}

    @staticmethod
    def _subparsers(parser: argparse.ArgumentParser) -> List[argparse.ArgumentParser]:
        out: List[argparse.ArgumentParser] = []
        for action in parser._actions:
            if isinstance(action, argparse._SubParsersAction):
                out.extend(dict.fromkeys(action.choices.values()))
        return out

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """
        Set config values as defaults on ``parser`` and every subcommand parser
        declaring the same destination.
        """
        if not conf:
            return
        applied: Set[str] = set()
        stack = [parser]
        while stack:
            p = stack.pop()
            defaults = {k: v for k, v in conf.items() if k in Config._dests(p)}
            if defaults:
                p.set_defaults(**defaults)
                applied.update(defaults)
            stack.extend(Config._subparsers(p))
        for key in sorted(set(conf) - applied):
            logger.debug("Config key %r has no matching command line option", key)


__all__ = ["Config", "deep_merge_dict", "KNOWN_KEYS"]
