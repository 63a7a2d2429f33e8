from .engine import (
    EditionState,
    TransitionDescriptor,
    TransitionError,
    apply_update,
    validate_new_edition,
)
from .registry import WORKFLOWS

__all__ = [
    "EditionState",
    "TransitionDescriptor",
    "TransitionError",
    "WORKFLOWS",
    "apply_update",
    "validate_new_edition",
]
