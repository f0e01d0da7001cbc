# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from typing import Iterable, List

# ==================================== EXCEPTIONS ==================================== #

class WorkflowEVEError(Exception):
    """Base class for errors raised by the workflow."""
    pass


class SchemaError(WorkflowEVEError):
    """Raised when an input table is missing required columns or has malformed
    identifiers. Always raised before any processing starts."""

    def __init__(self, message: str, problems: Iterable[str] = ()):
        self.problems: List[str] = list(problems)
        if self.problems:
            message = message + "\n" + "\n".join(f"  • {p}" for p in self.problems)
        super().__init__(message)


class PreconditionError(WorkflowEVEError):
    """Raised when the comparative test inputs would make the external routine
    fail or silently misalign data."""

    def __init__(self, message: str, problems: Iterable[str] = ()):
        self.problems: List[str] = list(problems)
        if self.problems:
            message = message + "\n" + "\n".join(f"  • {p}" for p in self.problems)
        super().__init__(message)


class DelegateError(WorkflowEVEError):
    """Raised when the external beta-shared routine fails or returns unusable
    output."""
    pass


class JobCancelled(WorkflowEVEError):
    """Raised when a running beta-shared job is cancelled or times out."""
    pass
