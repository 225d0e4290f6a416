"""Generic sequential multi-step wizard.

A wizard is an ordered list of :class:`WizardStep` objects run against a
context record. Each step inspects the current context and returns one of
three results:

* :class:`StepSuccess` -- merge the patch and continue.
* :class:`StepSkipRemaining` -- merge the patch and finish successfully.
* :class:`StepFailure` -- stop with the step's error message.

Contexts are never mutated. :func:`merge` derives a new record from the old
one plus a patch, so a failed run's context only carries the patches of the
steps that succeeded before it.

Example::

    steps = [
        WizardStep(id="ask", title="Ask", execute=lambda ctx: StepSuccess({"name": "x"})),
    ]
    result = WizardEngine(steps).run(MyContext())
    assert result.success and result.context.name == "x"
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

C = TypeVar("C")


# ------------------------------------------------------------------ #
# Step results
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class StepSuccess:
    """Merge ``patch`` into the context and continue with the next step."""

    patch: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepSkipRemaining:
    """Merge ``patch`` and end the wizard successfully without running later steps."""

    patch: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepFailure:
    """Stop the wizard; ``error`` is reported verbatim in :class:`WizardResult`."""

    error: str


StepResult = Union[StepSuccess, StepSkipRemaining, StepFailure]


@dataclass
class WizardStep(Generic[C]):
    """One unit of work in a wizard.

    Attributes:
        id: Identifier, unique within a wizard.
        title: Short human-readable name.
        execute: ``execute(context) -> StepResult``. May block on I/O.
        can_skip: When ``True`` a failure is recorded as a skip and the
            wizard continues.
        condition: Optional predicate on the current context; the step is
            skipped when it returns ``False``.
        description: Optional longer explanation.
    """

    id: str
    title: str
    execute: Callable[[C], StepResult]
    can_skip: bool = False
    condition: Optional[Callable[[C], bool]] = None
    description: Optional[str] = None


# ------------------------------------------------------------------ #
# Events and results
# ------------------------------------------------------------------ #


class WizardEventType(str, Enum):
    WIZARD_START = "wizard:start"
    STEP_START = "step:start"
    STEP_SKIPPED = "step:skipped"
    STEP_COMPLETE = "step:complete"
    STEP_ERROR = "step:error"
    WIZARD_COMPLETE = "wizard:complete"
    WIZARD_ERROR = "wizard:error"


@dataclass(frozen=True)
class WizardEvent:
    type: WizardEventType
    step_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WizardResult(Generic[C]):
    """Outcome of :meth:`WizardEngine.run`.

    Attributes:
        success: ``False`` only when a non-skippable step failed.
        context: The final context.
        completed_steps: Ids of steps that returned a non-failure result,
            in order.
        error: The failing step's message when ``success`` is ``False``.
    """

    success: bool
    context: C
    completed_steps: list[str] = field(default_factory=list)
    error: Optional[str] = None


EventHandler = Callable[[WizardEvent], Any]


# ------------------------------------------------------------------ #
# Merge
# ------------------------------------------------------------------ #


def merge(context: C, patch: Mapping[str, Any]) -> C:
    """Return a copy of *context* with the keys of *patch* replaced.

    Supports pydantic models, dataclass instances, and mappings. The
    original *context* is left untouched.

    Raises:
        TypeError: For any other context type.
    """
    if not patch:
        return context
    if isinstance(context, BaseModel):
        return context.model_copy(update=dict(patch))
    if dataclasses.is_dataclass(context) and not isinstance(context, type):
        return dataclasses.replace(context, **patch)
    if isinstance(context, Mapping):
        return {**context, **patch}  # type: ignore[return-value]
    raise TypeError(f"Cannot merge a patch into {type(context).__name__}")


# ------------------------------------------------------------------ #
# Engine
# ------------------------------------------------------------------ #


class WizardEngine(Generic[C]):
    """Run :class:`WizardStep` objects in order against a context.

    Args:
        steps: Steps in execution order.
        title: Optional wizard title (for the caller's banner).
        description: Optional wizard description.

    Raises:
        ValueError: If two steps share an id.
    """

    def __init__(
        self,
        steps: list[WizardStep[C]],
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise ValueError(f"Duplicate wizard step id: {step.id!r}")
            seen.add(step.id)
        self.steps = list(steps)
        self.title = title
        self.description = description

    def run(self, initial_context: C, on_event: Optional[EventHandler] = None) -> WizardResult[C]:
        """Execute every applicable step and return the final result.

        Args:
            initial_context: Starting context; never mutated.
            on_event: Optional observer for progress events. Exceptions it
                raises are logged and ignored.

        Returns:
            A :class:`WizardResult`. Step failures are reported through it,
            never raised.
        """
        context = initial_context
        completed: list[str] = []

        def emit(event_type: WizardEventType, step_id: Optional[str] = None,
                 error: Optional[str] = None) -> None:
            if on_event is None:
                return
            try:
                on_event(WizardEvent(event_type, step_id, error))
            except Exception:
                logger.warning("Wizard event handler failed on %s", event_type.value, exc_info=True)

        emit(WizardEventType.WIZARD_START)

        for step in self.steps:
            if not self._should_run(step, context):
                emit(WizardEventType.STEP_SKIPPED, step.id)
                continue

            emit(WizardEventType.STEP_START, step.id)
            result = self._execute(step, context)

            merged = context
            if not isinstance(result, StepFailure):
                try:
                    merged = merge(context, result.patch)
                except (TypeError, ValueError) as exc:
                    logger.debug("Step '%s' returned a patch that does not fit", step.id, exc_info=True)
                    result = StepFailure(str(exc) or type(exc).__name__)

            if isinstance(result, StepFailure):
                if step.can_skip:
                    logger.warning("Optional step '%s' failed, skipping: %s", step.id, result.error)
                    emit(WizardEventType.STEP_SKIPPED, step.id, result.error)
                    continue
                emit(WizardEventType.STEP_ERROR, step.id, result.error)
                emit(WizardEventType.WIZARD_ERROR, step.id, result.error)
                return WizardResult(False, context, completed, result.error)

            context = merged
            completed.append(step.id)
            emit(WizardEventType.STEP_COMPLETE, step.id)

            if isinstance(result, StepSkipRemaining):
                break

        emit(WizardEventType.WIZARD_COMPLETE)
        return WizardResult(True, context, completed)

    @staticmethod
    def _should_run(step: WizardStep[C], context: C) -> bool:
        if step.condition is None:
            return True
        try:
            return bool(step.condition(context))
        except (KeyError, AttributeError):
            # Condition reads a value no earlier step has set yet.
            return False

    @staticmethod
    def _execute(step: WizardStep[C], context: C) -> StepResult:
        try:
            return step.execute(context)
        except Exception as exc:
            logger.debug("Step '%s' raised", step.id, exc_info=True)
            return StepFailure(str(exc) or type(exc).__name__)
