"""Pruebas del motor de nota final ponderada."""

import math
from decimal import Decimal

import pytest

from core.errors import ErrorKind, InvalidGradeError
from data.models.weights import WeightConfig
from grading import (
    compute_base_grade,
    compute_final_grade,
    grading_fingerprint,
    round_half_up,
    validate_grade,
)


def test_reference_example_sixty_forty() -> None:
    assert compute_final_grade(6.0, 5.0, WeightConfig.create(60, 40)) == 5.6


@pytest.mark.parametrize(
    "informe, empleador, weights, expected",
    [
        (7.0, 7.0, (60, 40), 7.0),
        (1.0, 1.0, (60, 40), 1.0),
        (5.5, 6.0, (50, 50), 5.8),  # 5.75 redondea hacia arriba
        (4.5, 4.0, (50, 50), 4.3),  # 4.25 redondea hacia arriba
        (6.3, 4.1, (100, 0), 6.3),
        (6.3, 4.1, (0, 100), 4.1),
        (5.0, 6.5, (70, 30), 5.5),  # 5.45
    ],
)
def test_weighted_grade_rounds_half_up(informe, empleador, weights, expected) -> None:
    assert compute_final_grade(informe, empleador, WeightConfig.create(*weights)) == expected


def test_weighted_grade_is_deterministic() -> None:
    weights = WeightConfig.create(60, 40)
    results = {compute_final_grade(5.9, 4.6, weights) for _ in range(50)}
    assert len(results) == 1


@pytest.mark.parametrize("bad", [0.9, 7.1, -1, float("nan"), float("inf"), True, "6.0", None])
def test_invalid_grades_are_rejected_before_computing(bad) -> None:
    with pytest.raises(InvalidGradeError) as excinfo:
        compute_final_grade(bad, 5.0, WeightConfig.create(60, 40))
    assert excinfo.value.kind is ErrorKind.INVALID_GRADE


def test_validate_grade_accepts_decimals_and_ints() -> None:
    assert validate_grade(Decimal("6.5")) == Decimal("6.5")
    assert validate_grade(4) == Decimal("4")


def test_base_grade_is_rounded_mean() -> None:
    assert compute_base_grade(6.0, 5.5) == 5.8
    assert compute_base_grade(7, 1) == 4.0


def test_round_half_up_avoids_binary_surprises() -> None:
    # 2.675 no es representable exactamente en binario; round() daría 2.67.
    assert round_half_up(2.675, 2) == 2.68
    assert round_half_up(0.05) == 0.1
    assert math.isclose(round_half_up(5.649), 5.6)


def test_fingerprint_ignores_numeric_representation() -> None:
    weights = WeightConfig.create(60, 40)
    assert grading_fingerprint(6, 5, weights, 5.6) == grading_fingerprint(6.0, Decimal("5.00"), weights, 5.6)
    assert grading_fingerprint(6, 5, weights, 5.6) != grading_fingerprint(6, 5, WeightConfig.create(50, 50), 5.6)
