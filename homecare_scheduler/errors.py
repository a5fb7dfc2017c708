"""Exceptions raised by the planner."""


class SchedulingValidationError(ValueError):
    """Input rejected before any state was touched. The message is shown to the caller as-is."""


class PlanConflictError(SchedulingValidationError):
    """A second plan with the same (week, status) pair was written."""
