# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/transformation.py
"""Named, switchable transformation steps and the manager running them in order."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, List, TypeVar

from ..core.exceptions import ConfigurationError, TransformationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

TransformationFunction = Callable[[T, R], None]


class Transformation(ABC, Generic[T, R]):
    """One step applied to a configuration ``T`` with arguments ``R``."""

    def __init__(self, name: str, enabled: bool = True):
        self.name = name
        self.enabled = enabled

    @abstractmethod
    def transform(self, config: T, args: R) -> None:
        """Raise TransformationError when the step cannot be applied."""

    def apply(self, config: T, args: R) -> None:
        self.transform(config, args)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"


class FunctionTransformation(Transformation[T, R]):
    def __init__(self, name: str, function: TransformationFunction, enabled: bool = True):
        super().__init__(name, enabled)
        self.function = function

    def transform(self, config: T, args: R) -> None:
        self.function(config, args)


class TransformationManager(Generic[T, R]):
    """
    Runs registered transformations over ``config`` in registration order.

    Disabled transformations are listed but skipped. The first failing step
    aborts the run with a TransformationError naming that step.
    """

    def __init__(self, config: T, args: R = None):
        self.config = config
        self.args = args
        self.transformations: List[Transformation[T, R]] = []

    def register(self, transformation: Any, function: TransformationFunction = None, enabled: bool = True) -> None:
        """
        ``register(step)``, ``register(step, enabled=False)`` or
        ``register("name", callable)``.
        """
        if isinstance(transformation, str):
            if function is None:
                raise ValueError("A transformation registered by name needs a function")
            transformation = FunctionTransformation(transformation, function)
        logger.debug(
            "Register transformation '%s' and %s it", transformation.name, "enable" if enabled else "do not enable"
        )
        transformation.enabled = enabled
        self.transformations.append(transformation)

    def transform(self) -> None:
        for transformation in self.transformations:
            if not transformation.enabled:
                logger.debug("Skip inactive transformation '%s'", transformation.name)
                continue
            logger.debug("Apply transformation '%s'", transformation.name)
            try:
                transformation.apply(self.config, self.args)
            except (TransformationError, ConfigurationError) as e:
                raise TransformationError(
                    msg=f"Error in configuration filter '{transformation.name}': {e.msg}", cause=e
                ) from e

    def __str__(self) -> str:
        width = len(str(len(self.transformations)))
        lines = []
        for i, transformation in enumerate(self.transformations, start=1):
            state = "[ active ]" if transformation.enabled else "[inactive]"
            lines.append(f"{i:<{width}}: {state} {transformation.name}\n")
        return "".join(lines)


__all__ = ["Transformation", "FunctionTransformation", "TransformationManager", "TransformationFunction"]
