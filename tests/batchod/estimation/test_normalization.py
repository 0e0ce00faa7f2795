########################################################################################
##
##                                  TESTS FOR
##                        'estimation/normalization.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from batchod.estimation import (
    DegenerateColumnError,
    denormalize_correction,
    normalize_apriori,
    normalize_columns,
)


# ═══════════════════════════════════════════════════════════════════════════
# Column normalization
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalizeColumns:

    def test_scale_is_largest_magnitude_with_sign(self):
        J = np.array([
            [-4.0, 1.0, 3.0],
            [ 2.0, 2.0, 6.0],
        ])
        scale = normalize_columns(J)
        np.testing.assert_array_equal(scale, [-4.0, 2.0, 6.0])
        np.testing.assert_allclose(J, [[1.0, 0.5, 0.5], [-0.5, 1.0, 1.0]])

    def test_range_and_reconstruction(self):
        rng = np.random.default_rng(7)
        original = rng.normal(scale=[1e-3, 1.0, 1e4], size=(20, 3))
        J = original.copy()
        scale = normalize_columns(J)

        assert np.all(np.abs(J) <= 1.0 + 1e-15)
        assert np.allclose(np.max(np.abs(J), axis=0), 1.0)
        np.testing.assert_allclose(J * scale[None, :], original, rtol=1e-14)

    def test_in_place(self):
        J = np.array([[2.0], [4.0]])
        normalize_columns(J)
        np.testing.assert_array_equal(J, [[0.5], [1.0]])

    def test_degenerate_column_raises(self):
        J = np.array([[1.0, 0.0], [2.0, 0.0]])
        with pytest.raises(DegenerateColumnError) as excinfo:
            normalize_columns(J, parameter_names=["gm", "bias"])
        assert excinfo.value.column == 1
        assert excinfo.value.parameter_name == "bias"
        assert "bias" in str(excinfo.value)

    def test_degenerate_column_skip_warns(self):
        J = np.array([[1.0, 0.0], [2.0, 0.0]])
        with pytest.warns(UserWarning, match="identically zero"):
            scale = normalize_columns(J, on_degenerate="skip")
        np.testing.assert_array_equal(scale, [2.0, 1.0])
        np.testing.assert_array_equal(J[:, 1], [0.0, 0.0])

    def test_invalid_option(self):
        with pytest.raises(ValueError):
            normalize_columns(np.ones((2, 2)), on_degenerate="ignore")

    def test_not_2d(self):
        with pytest.raises(ValueError):
            normalize_columns(np.ones(3))

    def test_integer_jacobian_rejected(self):
        J = np.array([[1, 2], [3, 4]])
        with pytest.raises(TypeError, match="floating-point"):
            normalize_columns(J)
        # left untouched
        np.testing.assert_array_equal(J, [[1, 2], [3, 4]])

    def test_float32_jacobian_normalized(self):
        J = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
        scale = normalize_columns(J)
        np.testing.assert_allclose(scale, [3.0, 4.0])
        np.testing.assert_allclose(J, [[1.0 / 3.0, 0.5], [1.0, 1.0]], rtol=1e-6)


# ═══════════════════════════════════════════════════════════════════════════
# A priori and correction scaling
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalizationHelpers:

    def test_normalize_apriori(self):
        P0_inv = np.array([[4.0, 2.0], [2.0, 9.0]])
        scale = np.array([2.0, -3.0])
        np.testing.assert_allclose(
            normalize_apriori(P0_inv, scale),
            [[1.0, -1.0 / 3.0], [-1.0 / 3.0, 1.0]],
        )

    def test_denormalize_correction(self):
        np.testing.assert_allclose(
            denormalize_correction([2.0, 3.0], [4.0, -6.0]), [0.5, -0.5]
        )
