"""
Step outcomes for the provisioning pipeline.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """Why a provisioning step stopped the run."""
    PRECONDITION = "precondition"
    NETWORK = "network"
    INTEGRITY = "integrity"
    FILESYSTEM = "filesystem"
    SERVICE = "service"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single step: success, or a typed failure with a message."""
    ok: bool
    kind: Optional[FailureKind] = None
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "StepResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, kind: FailureKind, message: str) -> "StepResult":
        return cls(ok=False, kind=kind, message=message)

    def __bool__(self) -> bool:
        return self.ok
