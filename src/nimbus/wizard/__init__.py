"""Sequential wizard engine and terminal prompts.

See :mod:`nimbus.wizard.engine` for the step/result model and
:mod:`nimbus.commands.login` for the ``nimbus login`` wizard built on it.
"""

from nimbus.wizard.engine import (
    StepFailure,
    StepResult,
    StepSkipRemaining,
    StepSuccess,
    WizardEngine,
    WizardEvent,
    WizardEventType,
    WizardResult,
    WizardStep,
    merge,
)
from nimbus.wizard.prompts import Prompter

__all__ = [
    "Prompter",
    "StepFailure",
    "StepResult",
    "StepSkipRemaining",
    "StepSuccess",
    "WizardEngine",
    "WizardEvent",
    "WizardEventType",
    "WizardResult",
    "WizardStep",
    "merge",
]
