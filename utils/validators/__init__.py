"""Registro de validadores de precondiciones agrupados por estado destino."""

from __future__ import annotations

from importlib import import_module
from pathlib import Path
from typing import Callable, Dict

from data.models.practice import PracticeState
from utils.validators.base import TransitionRequest, ValidationResult

Validator = Callable[[TransitionRequest], ValidationResult]

_VALIDATORS: Dict[PracticeState, Validator] = {}


def register_validator(target: PracticeState, validator: Validator) -> None:
    """Register ``validator`` to check transitions into ``target``."""

    _VALIDATORS[target] = validator


def validate_transition(request: TransitionRequest) -> ValidationResult:
    """Run the validator registered for ``request.target``.

    Targets without a registered validator have no preconditions.
    """

    validator = _VALIDATORS.get(request.target)
    if validator is None:
        return ValidationResult()
    return validator(request)


def _autodiscover() -> None:
    """Import validator modules so they can register themselves."""

    package_dir = Path(__file__).resolve().parent
    for module_path in package_dir.glob("*.py"):
        if module_path.stem in {"__init__", "base"}:
            continue
        import_module(f"{__name__}.{module_path.stem}")


_autodiscover()

VALIDATORS: Dict[PracticeState, Validator] = _VALIDATORS

__all__ = [
    "TransitionRequest",
    "VALIDATORS",
    "ValidationResult",
    "register_validator",
    "validate_transition",
]
