"""
Retry/skip/abort handling for pipeline steps.

A step is a callable doing one unit of work against the control plane or a
driver. When it raises a RecoverableError a DecisionPolicy chooses what
happens next, and the runner reports the result as a StepOutcome. Abort is
returned like any other outcome; the pipeline entry point is the only place
that acts on it.
"""

import abc
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.prompt import Prompt

from .errors import RecoverableError
from .settings import ProvisionerSettings, get_settings

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Answers to a failed step."""
    RETRY = "retry"
    SKIP = "skip"
    SKIP_ALL = "skip_all"
    ABORT = "abort"         # tear the provision down
    QUIT = "quit"           # stop here, leave the provision in ERROR


class StepOutcome(str, Enum):
    """Result of running a step."""
    CONTINUE = "continue"
    SKIP_STEP = "skip_step"
    SKIP_ALL = "skip_all"
    ABORT = "abort"
    FAILED = "failed"

    @property
    def proceeds(self) -> bool:
        """True when the pipeline may go on with the next step."""
        return self in (StepOutcome.CONTINUE, StepOutcome.SKIP_STEP, StepOutcome.SKIP_ALL)

    @property
    def skipped(self) -> bool:
        return self in (StepOutcome.SKIP_STEP, StepOutcome.SKIP_ALL)


class DecisionPolicy(abc.ABC):
    """Chooses what to do when a step fails."""

    @abc.abstractmethod
    def decide(self, label: str, error: Exception, attempt: int) -> Decision:
        """Decide after the `attempt`-th failure of a step.

        Args:
            label: Human readable description of the failed step
            error: The recoverable error raised by the step
            attempt: 1 for the first failure, 2 after the first retry...
        """
        pass


class InteractivePolicy(DecisionPolicy):
    """Ask the operator on the terminal."""

    CHOICES: Dict[str, Decision] = {
        "retry": Decision.RETRY,
        "skip": Decision.SKIP,
        "skip-all": Decision.SKIP_ALL,
        "cleanup": Decision.ABORT,
        "quit": Decision.QUIT,
    }

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def decide(self, label: str, error: Exception, attempt: int) -> Decision:
        self.console.print(f"[bold red]✗ {label}:[/bold red] {error}")
        answer = Prompt.ask(
            "Choose failure action",
            choices=list(self.CHOICES),
            default="quit",
            console=self.console,
        )
        return self.CHOICES[answer]


class FixedPolicy(DecisionPolicy):
    """Always give the same answer.

    With Decision.RETRY the step is retried up to max_retries times and then
    the policy gives up with Decision.QUIT.
    """

    def __init__(self, decision: Decision, max_retries: int = 3):
        self.decision = Decision(decision)
        self.max_retries = max_retries

    def decide(self, label: str, error: Exception, attempt: int) -> Decision:
        if self.decision is Decision.RETRY and attempt > self.max_retries:
            logger.error(f"{label}: giving up after {self.max_retries} retries")
            return Decision.QUIT
        return self.decision


def policy_from_settings(settings: Optional[ProvisionerSettings] = None) -> DecisionPolicy:
    """Build the policy selected by settings.fail_mode."""
    settings = settings or get_settings()

    if settings.fail_mode == "interactive":
        return InteractivePolicy()
    return FixedPolicy(Decision(settings.fail_mode), max_retries=settings.max_retries)


class StepRunner:
    """Runs pipeline steps under a decision policy.

    Once the operator chooses skip-all, every later failure in the same
    invocation is skipped without asking again.
    """

    def __init__(self, policy: DecisionPolicy):
        self.policy = policy
        self.skip_all = False
        self.last_error: Optional[Exception] = None

    def reset(self) -> None:
        """Forget skip-all and the last error before a new invocation."""
        self.skip_all = False
        self.last_error = None

    def run(self, label: str, unit: Callable[[], Any]) -> StepOutcome:
        attempt = 0

        while True:
            attempt += 1
            try:
                unit()
                return StepOutcome.CONTINUE
            except RecoverableError as e:
                self.last_error = e
                logger.error(f"{label}: {e}")

                if self.skip_all:
                    logger.warning(f"Skipping step '{label}' (skip-all selected)")
                    return StepOutcome.SKIP_STEP

                decision = self.policy.decide(label, e, attempt)

            if decision is Decision.RETRY:
                logger.info(f"Retrying step '{label}' (attempt {attempt + 1})")
                continue

            if decision is Decision.SKIP:
                logger.warning(f"Skipping step '{label}'")
                return StepOutcome.SKIP_STEP

            if decision is Decision.SKIP_ALL:
                logger.warning(f"Skipping step '{label}' and every later failing step")
                self.skip_all = True
                return StepOutcome.SKIP_ALL

            if decision is Decision.ABORT:
                logger.warning(f"Cleanup requested after step '{label}'")
                return StepOutcome.ABORT

            return StepOutcome.FAILED
