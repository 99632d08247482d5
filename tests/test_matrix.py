"""
Tests for digit vector / matrix primitives and board mapping.
"""

import math

import pytest

from squareodds.engine.matrix import (
    blend_matrices,
    blend_vectors,
    build_board,
    normalize_matrix,
    normalize_vector,
    outer_product,
    poisson_digit_distribution,
    single_cell_matrix,
    to_digit,
    validate_labels,
)


@pytest.fixture
def skewed_matrix():
    """A matrix with all mass spread over row 7."""
    matrix = [[0.0] * 10 for _ in range(10)]
    for away in range(10):
        matrix[7][away] = away + 1.0
    return matrix


class TestNormalization:
    """Tests for normalization and degenerate inputs."""

    def test_vector_sums_to_one(self):
        vector = normalize_vector([1, 2, 3, 4, 0, 0, 0, 0, 0, 0])
        assert sum(vector) == pytest.approx(1.0)
        assert vector[3] == pytest.approx(0.4)

    def test_degenerate_vector_is_uniform(self):
        """All-zero, negative-only or wrongly sized input -> uniform."""
        assert normalize_vector([0.0] * 10) == [0.1] * 10
        assert normalize_vector([-1.0] * 10) == [0.1] * 10
        assert normalize_vector([1.0, 2.0]) == [0.1] * 10

    def test_nan_matrix_is_uniform(self):
        matrix = [[math.nan] * 10 for _ in range(10)]
        result = normalize_matrix(matrix)
        assert all(cell == pytest.approx(0.01) for row in result for cell in row)

    def test_negative_cells_count_as_zero(self, skewed_matrix):
        skewed_matrix[0][0] = -50.0
        result = normalize_matrix(skewed_matrix)
        assert result[0][0] == 0.0
        assert sum(sum(row) for row in result) == pytest.approx(1.0)

    def test_to_digit(self):
        assert to_digit(27) == 7
        assert to_digit(0) == 0
        assert to_digit(10) == 0


class TestBlending:
    """Tests for weighted blends."""

    def test_outer_product(self):
        home = [0.0] * 10
        home[3] = 1.0
        away = [0.1] * 10
        matrix = outer_product(home, away)
        assert sum(matrix[3]) == pytest.approx(1.0)
        assert sum(matrix[4]) == 0.0

    def test_blend_matrices_weights(self, skewed_matrix):
        """Blend weight is the share of mass each part contributes."""
        skewed = normalize_matrix(skewed_matrix)
        uniform = [[0.01] * 10 for _ in range(10)]
        blended = blend_matrices([(skewed, 0.5), (uniform, 0.5)])
        assert sum(blended[7]) == pytest.approx(0.5 + 0.05)

    def test_blend_skips_zero_weights(self, skewed_matrix):
        skewed = normalize_matrix(skewed_matrix)
        blended = blend_matrices([(skewed, 1.0), ([[1.0] * 10] * 10, 0.0)])
        flat = [cell for row in blended for cell in row]
        assert flat == pytest.approx([cell for row in skewed for cell in row])

    def test_blend_without_parts_is_uniform(self):
        assert blend_vectors([]) == [0.1] * 10
        assert blend_vectors([([0.5] * 10, 0.0)]) == [0.1] * 10


class TestPoisson:
    """Tests for the Poisson last-digit distribution."""

    def test_sums_to_one(self):
        for mean in (3.0, 21.0, 38.5, 90.0):
            assert sum(poisson_digit_distribution(mean)) == pytest.approx(1.0)

    def test_low_mean_is_clamped(self):
        """Lambda below 8 is treated as 8."""
        assert poisson_digit_distribution(0.5) == pytest.approx(poisson_digit_distribution(8.0))

    def test_mode_follows_mean(self):
        """With lambda = 8 the digit 7/8 region carries the most mass."""
        distribution = poisson_digit_distribution(8.0)
        assert max(range(10), key=lambda d: distribution[d]) in (7, 8)


class TestBoard:
    """Tests for mapping digit matrices onto labelled boards."""

    def test_board_sums_to_100(self, skewed_matrix):
        board = build_board(normalize_matrix(skewed_matrix), list(range(10)), list(range(10)))
        assert sum(sum(row) for row in board) == pytest.approx(100.0)

    def test_board_follows_label_permutation(self):
        """board[i][j] is the probability of (row_labels[i], col_labels[j])."""
        matrix = single_cell_matrix(14, 10)
        rows = [5, 0, 1, 2, 3, 4, 6, 7, 8, 9]
        cols = [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
        board = build_board(matrix, rows, cols)
        assert board[5][9] == pytest.approx(100.0)
        assert sum(sum(row) for row in board) == pytest.approx(100.0)

    def test_wrong_label_count_raises(self):
        with pytest.raises(ValueError, match="length 10"):
            validate_labels(list(range(9)), list(range(10)))

    @pytest.mark.parametrize("bad", [10, -1, 2.5, True, "3"])
    def test_invalid_label_raises(self, bad):
        rows = list(range(9)) + [bad]
        with pytest.raises(ValueError, match="Invalid row label"):
            validate_labels(rows, list(range(10)))

