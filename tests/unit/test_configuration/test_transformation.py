# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the transformation manager."""
from __future__ import annotations

import pytest
from vmexchange.configuration.transformation import (
    FunctionTransformation,
    Transformation,
    TransformationManager,
)
from vmexchange.core.exceptions import MalformedStructure, TransformationError


class Append(Transformation):
    def __init__(self, name, value):
        super().__init__(name)
        self.value = value

    def transform(self, config, args):
        config.append((self.value, args))


class Explode(Transformation):
    def __init__(self, error):
        super().__init__("explode")
        self.error = error

    def transform(self, config, args):
        raise self.error


@pytest.mark.unit
class TestTransformationManager:
    def test_runs_in_registration_order(self):
        seen = []
        manager = TransformationManager(seen, "arg")
        manager.register(Append("first", 1))
        manager.register("second", lambda config, args: config.append((2, args)))
        manager.register(Append("third", 3))

        manager.transform()

        assert seen == [(1, "arg"), (2, "arg"), (3, "arg")]

    def test_disabled_steps_are_skipped(self):
        seen = []
        manager = TransformationManager(seen)
        manager.register(Append("on", 1))
        manager.register(Append("off", 2), enabled=False)

        manager.transform()

        assert seen == [(1, None)]
        assert not manager.transformations[1].enabled

    def test_listing(self):
        manager = TransformationManager([])
        manager.register(Append("privacy", 1))
        manager.register(Append("usb", 2), enabled=False)

        assert str(manager) == "1: [ active ] privacy\n2: [inactive] usb\n"

    def test_listing_pads_indexes(self):
        manager = TransformationManager([])
        for i in range(10):
            manager.register(Append(f"step{i}", i))

        lines = str(manager).splitlines()

        assert lines[0] == "1 : [ active ] step0"
        assert lines[9] == "10: [ active ] step9"

    def test_failure_names_the_step_and_stops(self):
        seen = []
        manager = TransformationManager(seen)
        manager.register(Explode(TransformationError(msg="no disk")))
        manager.register(Append("never", 1))

        with pytest.raises(TransformationError) as exc:
            manager.transform()

        assert str(exc.value) == "Error in configuration filter 'explode': no disk"
        assert isinstance(exc.value.cause, TransformationError)
        assert seen == []

    def test_configuration_errors_are_wrapped(self):
        manager = TransformationManager([])
        manager.register(Explode(MalformedStructure(msg="broken")))

        with pytest.raises(TransformationError, match="broken"):
            manager.transform()

    def test_other_errors_propagate(self):
        manager = TransformationManager([])
        manager.register(Explode(KeyError("bug")))

        with pytest.raises(KeyError):
            manager.transform()

    def test_name_needs_a_function(self):
        with pytest.raises(ValueError):
            TransformationManager([]).register("lonely")

    def test_function_transformation_repr(self):
        step = FunctionTransformation("noop", lambda c, a: None)

        assert repr(step) == "FunctionTransformation(name='noop', enabled=True)"
