from __future__ import annotations


class RiResumeError(Exception):
    """Base class for errors raised by riresume services."""


class NotFoundError(RiResumeError):
    pass


class AuthorizationError(RiResumeError):
    """Caller is not signed in or lacks the role for the action."""


class InsufficientBalanceError(RiResumeError):
    def __init__(self, balance: int, cost: int):
        super().__init__("Insufficient token balance")
        self.balance = balance
        self.cost = cost


class NothingToPromoteError(RiResumeError):
    def __init__(self, analysis_id: int | None = None):
        if analysis_id is None:
            super().__init__("nothing to promote")
        else:
            super().__init__(f"analysis {analysis_id} has no draft to promote")
        self.analysis_id = analysis_id


class AnalysisLockedError(RiResumeError):
    def __init__(self, analysis_id: int):
        super().__init__(f"analysis {analysis_id} is locked by a submitted application")
        self.analysis_id = analysis_id


class InvalidTaskTransition(RiResumeError):
    pass


class TaskGoneError(RiResumeError):
    """The task row was deleted while a processor still held it."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} no longer exists")
        self.task_id = task_id


class CallableFunctionError(RiResumeError):
    def __init__(self, code: str, message: str, *, details: object | None = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.details = details


class PaymentError(RiResumeError):
    pass
