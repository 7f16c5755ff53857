# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the exception hierarchy and CLI formatting."""
from __future__ import annotations

import pytest
from vmexchange.core.exceptions import (
    ConfigurationError,
    DiskImageError,
    Fatal,
    IOFailure,
    MalformedStructure,
    SchemaValidationFailed,
    TransformationError,
    UnknownFormat,
    UnrecognizedFormat,
    UnsupportedSchemaVersion,
    VmExchangeError,
    format_exception_for_cli,
    wrap_fatal,
    wrap_io,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    """Test exception class hierarchy and basic functionality."""

    def test_base_exception_creation(self):
        err = VmExchangeError(code=1, msg="Test error")

        assert err.code == 1
        assert err.msg == "Test error"
        assert err.cause is None
        assert err.context is None
        assert str(err) == "Test error"

    def test_fatal_exception(self):
        err = Fatal(code=2, msg="Fatal error")

        assert isinstance(err, VmExchangeError)
        assert err.code == 2

    def test_default_codes(self):
        """Each error family carries its own exit code."""
        assert IOFailure(msg="x").code == 2
        assert DiskImageError(msg="x").code == 10
        assert UnknownFormat(msg="x").code == 11
        assert ConfigurationError(msg="x").code == 20
        assert UnrecognizedFormat(msg="x").code == 21
        assert MalformedStructure(msg="x").code == 22
        assert SchemaValidationFailed(msg="x").code == 23
        assert UnsupportedSchemaVersion(msg="x").code == 24
        assert TransformationError(msg="x").code == 30

    def test_configuration_errors_share_a_base(self):
        for cls in (UnrecognizedFormat, MalformedStructure, SchemaValidationFailed, UnsupportedSchemaVersion):
            assert issubclass(cls, ConfigurationError)
        assert not issubclass(TransformationError, ConfigurationError)
        assert issubclass(UnknownFormat, DiskImageError)

    def test_exception_with_context(self):
        err = VmExchangeError(code=1, msg="Error").with_context(path="/tmp/a.vmx", codec="vmware")

        assert err.context == {"path": "/tmp/a.vmx", "codec": "vmware"}

    def test_message_is_single_line(self):
        err = VmExchangeError(msg="first\nsecond\r\nthird")

        assert err.msg == "first second third"

    def test_empty_message_falls_back_to_class_name(self):
        assert MalformedStructure(msg="").msg == "MalformedStructure"


@pytest.mark.unit
class TestExceptionExitCodes:
    """Test exception exit code validation."""

    def test_valid_exit_codes(self):
        for code in [0, 1, 2, 127, 255]:
            assert VmExchangeError(code=code, msg="Test").code == code

    def test_out_of_range_codes_are_clamped(self):
        assert VmExchangeError(code=-5, msg="x").code == 1
        assert VmExchangeError(code=1000, msg="x").code == 255

    def test_non_numeric_code_defaults(self):
        assert VmExchangeError(code="abc", msg="x").code == 1


@pytest.mark.unit
class TestWrappers:
    """Test the wrap helpers."""

    def test_wrap_io(self):
        cause = FileNotFoundError(2, "No such file")
        err = wrap_io("Cannot read", cause, path="/nope")

        assert isinstance(err, IOFailure)
        assert err.code == 2
        assert err.cause is cause
        assert err.context == {"path": "/nope"}

    def test_wrap_fatal_without_context(self):
        err = wrap_fatal("boom", code=7)

        assert isinstance(err, Fatal)
        assert err.code == 7
        assert err.context is None


@pytest.mark.security
class TestContextRedaction:
    """Identifiers in error context are not shown to users."""

    def test_uuid_and_mac_redacted(self):
        err = VmExchangeError(msg="Bad machine").with_context(uuid="{1234}", mac="0800271234", name="vm1")

        text = err.user_message(include_context=True)

        assert "uuid=<redacted>" in text
        assert "mac=<redacted>" in text
        assert "name='vm1'" in text
        assert "{1234}" not in text

    def test_to_dict_is_machine_readable(self):
        err = MalformedStructure(msg="bad", cause=ValueError("inner"))

        d = err.to_dict(include_cause=True)

        assert d["type"] == "MalformedStructure"
        assert d["code"] == 22
        assert d["cause"] == {"type": "ValueError", "message": "inner"}


@pytest.mark.unit
class TestFormatForCli:
    """Test one-line CLI rendering at each verbosity."""

    def test_verbosity_levels(self):
        err = MalformedStructure(msg="bad", cause=ValueError("inner"), context={"path": "a.vbox"})

        assert format_exception_for_cli(err) == "bad"
        assert format_exception_for_cli(err, verbose=1) == "bad [path='a.vbox']"
        assert "cause: ValueError: inner" in format_exception_for_cli(err, verbose=2)

    def test_foreign_exceptions(self):
        assert format_exception_for_cli(RuntimeError("oops")) == "oops"
        assert format_exception_for_cli(RuntimeError("oops"), verbose=2) == "RuntimeError: oops"
        assert format_exception_for_cli(RuntimeError()) == "RuntimeError"
