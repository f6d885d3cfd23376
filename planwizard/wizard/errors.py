from __future__ import annotations


class WizardError(Exception):
    error = "wizard_error"

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(WizardError):
    error = "session_not_found"

    def __init__(self, message: str = "Session not found."):
        super().__init__(message, status_code=404)


class NavigationError(WizardError):
    error = "step_not_reached"

    def __init__(self, message: str = "That step has not been reached yet."):
        super().__init__(message, status_code=409)


class SessionCompleteError(WizardError):
    error = "session_complete"

    def __init__(self, message: str = "This plan is already complete. Start a new session to plan again."):
        super().__init__(message, status_code=409)


class FinalizeError(WizardError):
    error = "finalize_failed"

    def __init__(self, message: str = "Could not create the plan. Please retry.", retryable: bool = True):
        super().__init__(message, status_code=502)
        self.retryable = retryable
