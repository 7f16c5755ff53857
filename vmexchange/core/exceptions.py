# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are 0..255.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "secret",
    "token",
    "mac",
    "uuid",
)


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    parts = []
    for k in sorted(ctx.keys()):
        v = ctx.get(k)
        if _is_secret_key(str(k)):
            parts.append(f"{k}=<redacted>")
        else:
            parts.append(f"{k}={v!r}")
    return ", ".join(parts)


@dataclass(eq=False)
class VmExchangeError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - an exit code the CLI honors
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "VmExchangeError":
        if self.context is None:
            self.context = {}
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context), limit=600)}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": self.context or {},
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(VmExchangeError):
    """
    User-facing fatal error (exit code is honored by the top-level main()).
    """
    pass


@dataclass(eq=False)
class IOFailure(VmExchangeError):
    """A file could not be read or written."""
    code: int = 2


# ---------------------------------------------------------------------------
# Disk images
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class DiskImageError(VmExchangeError):
    code: int = 10


@dataclass(eq=False)
class UnknownFormat(DiskImageError):
    """No disk image prober recognized the file."""
    code: int = 11


# ---------------------------------------------------------------------------
# Virtualization configurations
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ConfigurationError(VmExchangeError):
    """
    A machine descriptor could not be turned into a configuration.

    The format dispatcher treats every subclass as "try the next codec".
    """
    code: int = 20


@dataclass(eq=False)
class UnrecognizedFormat(ConfigurationError):
    code: int = 21


@dataclass(eq=False)
class MalformedStructure(ConfigurationError):
    code: int = 22


@dataclass(eq=False)
class SchemaValidationFailed(ConfigurationError):
    code: int = 23


@dataclass(eq=False)
class UnsupportedSchemaVersion(ConfigurationError):
    code: int = 24


@dataclass(eq=False)
class TransformationError(VmExchangeError):
    """A transformation or transformation logic could not be applied."""
    code: int = 30


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def wrap_io(msg: str, exc: Optional[BaseException] = None, **context: Any) -> IOFailure:
    return IOFailure(msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, VmExchangeError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
