from __future__ import annotations

"""Error taxonomy shared by the interpreter, the evaluator and collaborators."""


class RulesflowError(Exception):
    """Base class for all rulesflow failures."""


class DefinitionError(RulesflowError):
    """Raised when a workflow definition cannot be executed as written."""


class MalformedExpression(DefinitionError, ValueError):
    """Raised when a guard expression cannot be parsed."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Malformed expression '{expression}': {reason}")
        self.expression = expression
        self.reason = reason


class CollaboratorError(RulesflowError):
    """Raised when an external collaborator (rules, services) fails."""


class ServiceInvocationError(CollaboratorError):
    """Raised when an external service call times out or returns garbage."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "CollaboratorError",
    "DefinitionError",
    "MalformedExpression",
    "RulesflowError",
    "ServiceInvocationError",
]
