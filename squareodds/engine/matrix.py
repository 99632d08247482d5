"""
Digit vector and matrix primitives.

All matrices are 10x10, indexed [home_digit][away_digit]. Functions accept
nested lists (or numpy arrays) and return nested lists so results stay
JSON/pydantic friendly.
"""

import math
from typing import Iterable, Sequence

import numpy as np

from squareodds.models.schemas import DIGIT_COUNT, DigitMatrix


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp value to [lo, hi]."""
    return min(hi, max(lo, value))


def to_digit(score: int) -> int:
    """Last base-10 digit of a score."""
    return int(score) % DIGIT_COUNT


def uniform_vector() -> list[float]:
    return [1.0 / DIGIT_COUNT] * DIGIT_COUNT


def uniform_matrix() -> DigitMatrix:
    return [[1.0 / (DIGIT_COUNT * DIGIT_COUNT)] * DIGIT_COUNT for _ in range(DIGIT_COUNT)]


def zero_matrix() -> DigitMatrix:
    return [[0.0] * DIGIT_COUNT for _ in range(DIGIT_COUNT)]


def normalize_vector(values: Sequence[float]) -> list[float]:
    """Normalize to sum 1; negatives count as 0; degenerate input -> uniform."""
    arr = np.asarray(values, dtype=float)
    if arr.shape != (DIGIT_COUNT,) or not np.all(np.isfinite(arr)):
        return uniform_vector()
    arr = np.maximum(arr, 0.0)
    total = arr.sum()
    if total <= 0:
        return uniform_vector()
    return (arr / total).tolist()


def normalize_matrix(matrix) -> DigitMatrix:
    """Normalize to sum 1; negatives count as 0; all-zero or NaN input -> uniform 1/100."""
    arr = np.asarray(matrix, dtype=float)
    if arr.shape != (DIGIT_COUNT, DIGIT_COUNT) or not np.all(np.isfinite(arr)):
        return uniform_matrix()
    arr = np.maximum(arr, 0.0)
    total = arr.sum()
    if not math.isfinite(total) or total <= 0:
        return uniform_matrix()
    return (arr / total).tolist()


def outer_product(home: Sequence[float], away: Sequence[float]) -> DigitMatrix:
    """Joint matrix of two independent digit distributions."""
    return normalize_matrix(np.outer(np.asarray(home, dtype=float), np.asarray(away, dtype=float)))


def blend_vectors(parts: Iterable[tuple[Sequence[float], float]]) -> list[float]:
    """Weighted blend of digit vectors; malformed or non-positive-weight parts are skipped."""
    output = np.zeros(DIGIT_COUNT)
    weight_total = 0.0
    for values, weight in parts:
        if values is None or len(values) != DIGIT_COUNT or weight <= 0:
            continue
        output += np.asarray(values, dtype=float) * weight
        weight_total += weight
    if weight_total <= 0:
        return uniform_vector()
    return normalize_vector(output)


def blend_matrices(parts: Iterable[tuple[DigitMatrix, float]]) -> DigitMatrix:
    """Weighted blend of digit matrices."""
    output = np.zeros((DIGIT_COUNT, DIGIT_COUNT))
    weight_total = 0.0
    for matrix, weight in parts:
        if matrix is None or weight <= 0:
            continue
        output += np.asarray(matrix, dtype=float) * weight
        weight_total += weight
    if weight_total <= 0:
        return uniform_matrix()
    return normalize_matrix(output)


def poisson_digit_distribution(mean_points: float, max_score: int = 85) -> list[float]:
    """
    Last-digit distribution of a Poisson-distributed final score.

    Lambda is clamped to [8, 55]. Mass beyond ``max_score`` is assigned to
    the digit of round(lambda).
    """
    lam = clamp(mean_points, 8.0, 55.0)
    probabilities = [0.0] * DIGIT_COUNT

    pmf = math.exp(-lam)
    probabilities[0] += pmf
    for score in range(1, max_score + 1):
        pmf *= lam / score
        probabilities[score % DIGIT_COUNT] += pmf

    tail = max(0.0, 1.0 - sum(probabilities))
    probabilities[int(math.floor(lam + 0.5)) % DIGIT_COUNT] += tail
    return normalize_vector(probabilities)


def single_cell_matrix(home_score: int, away_score: int) -> DigitMatrix:
    """All mass on the digits of an exact final score."""
    matrix = zero_matrix()
    matrix[to_digit(home_score)][to_digit(away_score)] = 1.0
    return matrix


def validate_labels(row_labels: Sequence[int], col_labels: Sequence[int]) -> None:
    """Raise ValueError unless both label lists hold 10 integer digits."""
    if len(row_labels) != DIGIT_COUNT or len(col_labels) != DIGIT_COUNT:
        raise ValueError("Expected row and column labels to each have length 10.")
    for kind, labels in (("row", row_labels), ("column", col_labels)):
        for label in labels:
            if isinstance(label, bool) or not isinstance(label, (int, np.integer)) or not 0 <= label <= 9:
                raise ValueError(f"Invalid {kind} label while mapping digit probabilities: {label!r}")


def map_digit_matrix_to_board(
    digit_matrix: DigitMatrix,
    row_labels: Sequence[int],
    col_labels: Sequence[int],
) -> list[list[float]]:
    """Re-index a digit matrix through the board's label permutation, as percentages."""
    validate_labels(row_labels, col_labels)
    arr = np.asarray(digit_matrix, dtype=float)
    rows = np.asarray(row_labels, dtype=int)
    cols = np.asarray(col_labels, dtype=int)
    return (arr[np.ix_(rows, cols)] * 100.0).tolist()


def finalize_board_percentages(board: Sequence[Sequence[float]]) -> list[list[float]]:
    """Proportionally rescale a board so it sums to exactly 100."""
    arr = np.asarray(board, dtype=float)
    total = arr.sum()
    if not np.isfinite(total) or total <= 0:
        return [[1.0] * DIGIT_COUNT for _ in range(DIGIT_COUNT)]
    return np.clip(arr * (100.0 / total), 0.0, 100.0).tolist()


def build_board(
    digit_matrix: DigitMatrix,
    row_labels: Sequence[int],
    col_labels: Sequence[int],
) -> list[list[float]]:
    """Digit matrix -> ready-to-render board percentages."""
    return finalize_board_percentages(
        map_digit_matrix_to_board(digit_matrix, row_labels, col_labels)
    )
