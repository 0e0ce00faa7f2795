########################################################################################
##
##                                  TESTS FOR
##                        'estimation/least_squares.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from batchod.estimation import (
    SingularSystemError,
    denormalize_correction,
    normalize_apriori,
    normalize_columns,
    rms,
    solve_normal_equations,
)


# ═══════════════════════════════════════════════════════════════════════════
# RMS
# ═══════════════════════════════════════════════════════════════════════════

class TestRms:

    def test_value(self):
        assert rms([3.0, -4.0]) == pytest.approx(np.sqrt(12.5))

    def test_zero_vector(self):
        assert rms(np.zeros(4)) == 0.0

    def test_empty(self):
        assert rms([]) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Normal equations
# ═══════════════════════════════════════════════════════════════════════════

class TestSolveNormalEquations:

    def test_single_parameter_fit(self):
        # y = a t with t = 1, 2, 3 and y = 2.1, 3.9, 6.2 from a = 0
        J = np.array([[1.0], [2.0], [3.0]])
        r = np.array([2.1, 3.9, 6.2])
        dx, N = solve_normal_equations(J, r, np.ones(3))
        assert dx[0] == pytest.approx(28.5 / 14.0)
        np.testing.assert_allclose(N, [[14.0]])

    def test_apriori_constrains_correction(self):
        J = np.array([[1.0], [2.0], [3.0]])
        r = np.array([2.1, 3.9, 6.2])
        dx, N = solve_normal_equations(J, r, np.ones(3), np.array([[1e6]]))
        assert dx[0] == pytest.approx(28.5 / (14.0 + 1e6))
        assert abs(dx[0]) < 1e-4
        np.testing.assert_allclose(N, [[14.0 + 1e6]])

    def test_weights(self):
        # zero weight removes the outlier from the fit
        J = np.array([[1.0], [1.0], [1.0]])
        r = np.array([1.0, 1.0, 100.0])
        dx, _ = solve_normal_equations(J, r, np.array([1.0, 1.0, 0.0]))
        assert dx[0] == pytest.approx(1.0)

    def test_matches_lstsq(self):
        rng = np.random.default_rng(1)
        J = rng.normal(size=(30, 4))
        r = rng.normal(size=30)
        dx, _ = solve_normal_equations(J, r, np.ones(30))
        expected, *_ = np.linalg.lstsq(J, r, rcond=None)
        np.testing.assert_allclose(dx, expected, rtol=1e-10, atol=1e-12)

    def test_normalized_solve_matches_direct_solve(self):
        rng = np.random.default_rng(42)
        J = rng.normal(size=(25, 3)) * np.array([1e-4, 1.0, 1e3])
        r = rng.normal(size=25)
        w = rng.uniform(0.5, 2.0, size=25)
        P0_inv = np.diag([1e6, 1e-2, 1e-8])

        direct, _ = solve_normal_equations(J, r, w, P0_inv)

        J_norm = J.copy()
        scale = normalize_columns(J_norm)
        normalized, _ = solve_normal_equations(J_norm, r, w, normalize_apriori(P0_inv, scale))

        np.testing.assert_allclose(
            denormalize_correction(normalized, scale), direct, rtol=1e-8
        )

    def test_rank_deficient(self):
        J = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0]])
        with pytest.raises(SingularSystemError):
            solve_normal_equations(J, np.ones(3), np.ones(3))

    def test_rank_deficiency_lifted_by_apriori(self):
        J = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0]])
        dx, _ = solve_normal_equations(J, np.ones(3), np.ones(3), np.eye(2))
        assert np.all(np.isfinite(dx))

    def test_singular_error_is_linalg_error(self):
        with pytest.raises(np.linalg.LinAlgError):
            solve_normal_equations(np.zeros((3, 1)), np.ones(3), np.ones(3))

    def test_non_finite(self):
        J = np.array([[1.0], [np.inf]])
        with pytest.raises(SingularSystemError):
            solve_normal_equations(J, np.ones(2), np.ones(2))

    @pytest.mark.parametrize("residuals, weights", [
        (np.ones(2), np.ones(3)),
        (np.ones(3), np.ones(2)),
    ])
    def test_length_mismatch(self, residuals, weights):
        with pytest.raises(ValueError):
            solve_normal_equations(np.ones((3, 1)), residuals, weights)

    def test_apriori_shape_mismatch(self):
        with pytest.raises(ValueError):
            solve_normal_equations(np.eye(3), np.ones(3), np.ones(3), np.eye(2))

    def test_empty_parameter_vector(self):
        with pytest.raises(ValueError):
            solve_normal_equations(np.zeros((3, 0)), np.ones(3), np.ones(3))
