"""Tests for the step runner and the failure decision policies."""

import io
from unittest.mock import patch

import pytest
from rich.console import Console

from provisioner.errors import ConfigurationError, PollTimeoutError, RemoteError
from provisioner.retry import (
    Decision,
    DecisionPolicy,
    FixedPolicy,
    InteractivePolicy,
    StepOutcome,
    StepRunner,
    policy_from_settings,
)
from provisioner.settings import ProvisionerSettings


class ScriptedPolicy(DecisionPolicy):
    """Answers from a list and remembers every question."""

    def __init__(self, *decisions):
        self.decisions = list(decisions)
        self.asked = []

    def decide(self, label, error, attempt):
        self.asked.append((label, str(error), attempt))
        return self.decisions.pop(0)


class FlakyUnit:
    """Raises the given errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)


class TestStepRunner:
    """Tests for StepRunner outcomes."""

    def test_success(self):
        runner = StepRunner(ScriptedPolicy())
        assert runner.run("step", FlakyUnit()) is StepOutcome.CONTINUE

    def test_retry_until_success(self):
        policy = ScriptedPolicy(Decision.RETRY, Decision.RETRY)
        unit = FlakyUnit(RemoteError("one"), RemoteError("two"))

        outcome = StepRunner(policy).run("step", unit)

        assert outcome is StepOutcome.CONTINUE
        assert unit.calls == 3
        assert [attempt for _, _, attempt in policy.asked] == [1, 2]

    @pytest.mark.parametrize("decision,outcome", [
        (Decision.SKIP, StepOutcome.SKIP_STEP),
        (Decision.SKIP_ALL, StepOutcome.SKIP_ALL),
        (Decision.ABORT, StepOutcome.ABORT),
        (Decision.QUIT, StepOutcome.FAILED),
    ])
    def test_decisions(self, decision, outcome):
        runner = StepRunner(ScriptedPolicy(decision))
        assert runner.run("step", FlakyUnit(RemoteError("boom"))) is outcome
        assert str(runner.last_error) == "boom"

    def test_skip_all_is_remembered(self):
        policy = ScriptedPolicy(Decision.SKIP_ALL)
        runner = StepRunner(policy)

        assert runner.run("first", FlakyUnit(RemoteError("a"))) is StepOutcome.SKIP_ALL
        assert runner.run("second", FlakyUnit(RemoteError("b"))) is StepOutcome.SKIP_STEP
        assert len(policy.asked) == 1

    def test_reset_forgets_skip_all(self):
        runner = StepRunner(ScriptedPolicy(Decision.SKIP_ALL, Decision.QUIT))
        runner.run("first", FlakyUnit(RemoteError("a")))
        runner.reset()

        assert runner.last_error is None
        assert runner.run("second", FlakyUnit(RemoteError("b"))) is StepOutcome.FAILED

    def test_poll_timeout_is_recoverable(self):
        policy = ScriptedPolicy(Decision.RETRY)
        unit = FlakyUnit(PollTimeoutError("Timeout expired for deleting VM 3"))

        assert StepRunner(policy).run("drain", unit) is StepOutcome.CONTINUE
        assert policy.asked[0][1] == "Timeout expired for deleting VM 3"

    def test_other_errors_propagate(self):
        runner = StepRunner(ScriptedPolicy())

        with pytest.raises(ConfigurationError):
            runner.run("step", FlakyUnit(ConfigurationError("bad")))
        with pytest.raises(ValueError):
            runner.run("step", FlakyUnit(ValueError("bug")))

    def test_outcome_properties(self):
        assert StepOutcome.SKIP_ALL.proceeds and StepOutcome.SKIP_ALL.skipped
        assert StepOutcome.CONTINUE.proceeds and not StepOutcome.CONTINUE.skipped
        assert not StepOutcome.ABORT.proceeds
        assert not StepOutcome.FAILED.proceeds


class TestPolicies:
    """Tests for the decision policies."""

    def test_fixed_retry_gives_up(self):
        policy = FixedPolicy(Decision.RETRY, max_retries=2)

        assert policy.decide("step", RemoteError("x"), 1) is Decision.RETRY
        assert policy.decide("step", RemoteError("x"), 2) is Decision.RETRY
        assert policy.decide("step", RemoteError("x"), 3) is Decision.QUIT

    def test_fixed_retry_bounded_in_runner(self):
        unit = FlakyUnit(*[RemoteError("x")] * 10)
        outcome = StepRunner(FixedPolicy(Decision.RETRY, max_retries=3)).run("step", unit)

        assert outcome is StepOutcome.FAILED
        assert unit.calls == 4

    @pytest.mark.parametrize("answer,decision", [
        ("retry", Decision.RETRY),
        ("skip", Decision.SKIP),
        ("skip-all", Decision.SKIP_ALL),
        ("cleanup", Decision.ABORT),
        ("quit", Decision.QUIT),
    ])
    def test_interactive_answers(self, answer, decision):
        output = io.StringIO()
        policy = InteractivePolicy(console=Console(file=output))

        with patch("provisioner.retry.Prompt.ask", return_value=answer) as ask:
            assert policy.decide("Failed to create hosts", RemoteError("quota"), 1) is decision

        assert ask.call_args.kwargs["default"] == "quit"
        assert "Failed to create hosts" in output.getvalue()

    def test_policy_from_settings(self):
        policy = policy_from_settings(ProvisionerSettings(fail_mode="retry", max_retries=5))

        assert isinstance(policy, FixedPolicy)
        assert policy.decision is Decision.RETRY
        assert policy.max_retries == 5

    def test_interactive_from_settings(self):
        assert isinstance(policy_from_settings(ProvisionerSettings(fail_mode="interactive")), InteractivePolicy)
