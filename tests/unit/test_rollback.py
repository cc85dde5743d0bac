"""Tests for the rollback stack."""

from spotshell.core.exceptions import RollbackStepError
from spotshell.core.rollback import RollbackAction, RollbackStack
from spotshell.providers.exceptions import ProviderNotFoundError, ProviderPermanentError


def action(log: list[str], name: str, error: Exception | None = None) -> RollbackAction:
    def undo() -> None:
        log.append(name)
        if error is not None:
            raise error

    return RollbackAction(description=name, forward=f"create {name}", resource_id=f"id-{name}", undo=undo)


class TestRollbackStack:
    """Tests for RollbackStack."""

    def test_unwinds_in_reverse_order(self) -> None:
        """Test reversals run newest first."""
        log: list[str] = []
        stack = RollbackStack()
        for name in ("request", "instance", "tag"):
            stack.push(action(log, name))

        errors = stack.unwind()

        assert log == ["tag", "instance", "request"]
        assert errors == []
        assert len(stack) == 0

    def test_each_reversal_runs_once(self) -> None:
        """Test a second unwind has nothing left to do."""
        log: list[str] = []
        stack = RollbackStack()
        stack.push(action(log, "instance"))

        stack.unwind()
        stack.unwind()

        assert log == ["instance"]

    def test_failures_are_collected_and_unwinding_continues(self) -> None:
        """Test a failing reversal does not stop the others."""
        log: list[str] = []
        stack = RollbackStack()
        stack.push(action(log, "request"))
        stack.push(action(log, "instance", ProviderPermanentError("denied")))

        errors = stack.unwind()

        assert log == ["instance", "request"]
        assert len(errors) == 1
        assert isinstance(errors[0], RollbackStepError)
        assert "id-instance" in str(errors[0])

    def test_missing_resource_counts_as_success(self) -> None:
        """Test a not-found reversal is not an error."""
        log: list[str] = []
        stack = RollbackStack()
        stack.push(action(log, "instance", ProviderNotFoundError("gone")))

        assert stack.unwind() == []
        assert log == ["instance"]

    def test_clear_discards_pending_actions(self) -> None:
        """Test clear forgets reversals after a clean teardown."""
        log: list[str] = []
        stack = RollbackStack()
        stack.push(action(log, "instance"))

        stack.clear()

        assert stack.unwind() == []
        assert log == []

    def test_actions_snapshot(self) -> None:
        """Test actions exposes the pending reversals in push order."""
        stack = RollbackStack()
        stack.push(action([], "a"))
        stack.push(action([], "b"))

        assert [a.description for a in stack.actions] == ["a", "b"]
