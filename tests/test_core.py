"""Tests for core modules."""

import numpy as np
import pytest

from brainwarp.core.status import Status
from brainwarp.core.exceptions import ConfigurationError, FittingError
from brainwarp.core.volume import Volume
from brainwarp.core.basis import SeparableBasis, dct_matrix
from brainwarp.core.layout import ParameterLayout, INTENSITY_TERMS
from brainwarp.core.fit_parameters import FitParameters, SamplingControls


class TestStatus:
    """Tests for Status enum."""

    def test_status_values(self):
        """Test status values."""
        assert Status.SUCCESS == 1
        assert Status.FAILED == 0
        assert Status.DEGENERATE == -1

    def test_status_methods(self):
        """Test status class methods."""
        assert Status.success() == Status.SUCCESS
        assert Status.failed() == Status.FAILED
        assert Status.degenerate() == Status.DEGENERATE


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_configuration_error_is_value_error(self):
        """ConfigurationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            raise ConfigurationError("bad input")

    def test_fitting_error_is_arithmetic_error(self):
        """FittingError can be caught as ArithmeticError."""
        with pytest.raises(ArithmeticError):
            raise FittingError("no samples")


class TestVolume:
    """Tests for Volume class."""

    def test_from_array(self, smooth_volume):
        """Test creating a volume from an array."""
        vol = Volume.from_array(smooth_volume, voxel_size=(2, 2, 3))

        assert vol.shape == (16, 16, 12)
        assert vol.voxel_size == (2.0, 2.0, 3.0)
        assert vol.data.dtype == np.float64
        assert vol.order == 1

    def test_integer_data_converted(self):
        """Test integer data is converted to float64."""
        vol = Volume(np.ones((3, 3, 3), dtype=np.uint8))

        assert vol.data.dtype == np.float64

    def test_reject_2d(self):
        """Test 2-D data is rejected."""
        with pytest.raises(ConfigurationError):
            Volume(np.zeros((10, 10)))

    def test_reject_non_finite(self):
        """Test NaN data is rejected."""
        data = np.zeros((4, 4, 4))
        data[1, 1, 1] = np.nan

        with pytest.raises(ConfigurationError, match="non-finite"):
            Volume(data)

    def test_reject_complex(self):
        """Test complex data is rejected."""
        with pytest.raises(ConfigurationError, match="complex"):
            Volume(np.zeros((4, 4, 4), dtype=np.complex128))

    def test_reject_thin_axis(self):
        """Test an axis with a single voxel is rejected."""
        with pytest.raises(ConfigurationError, match="at least 2 voxels"):
            Volume(np.zeros((4, 4, 1)))

    def test_reject_bad_voxel_size(self):
        """Test non-positive voxel sizes are rejected."""
        with pytest.raises(ConfigurationError):
            Volume(np.zeros((4, 4, 4)), voxel_size=(1, 0, 1))

        with pytest.raises(ConfigurationError):
            Volume(np.zeros((4, 4, 4)), voxel_size=(1, 1))

    def test_reject_bad_order(self):
        """Test unsupported interpolation orders are rejected."""
        with pytest.raises(ConfigurationError):
            Volume(np.zeros((4, 4, 4)), order=2)

    def test_get_coef_linear(self, smooth_volume):
        """Test trilinear volumes interpolate their data directly."""
        vol = Volume(smooth_volume)

        assert vol.get_coef() is vol.data

    def test_get_coef_cubic_cached(self, smooth_volume):
        """Test cubic coefficients are computed once."""
        vol = Volume(smooth_volume, order=3)

        coef = vol.get_coef()

        assert coef.shape == vol.shape
        assert not np.allclose(coef, vol.data)
        assert vol.get_coef() is coef

    def test_with_order(self, smooth_volume):
        """Test switching interpolation order shares the data."""
        vol = Volume(smooth_volume, voxel_size=(2, 2, 2))

        cubic = vol.with_order(3)

        assert vol.with_order(1) is vol
        assert cubic.order == 3
        assert cubic.data is vol.data
        assert cubic.voxel_size == vol.voxel_size


class TestDctMatrix:
    """Tests for the cosine basis."""

    def test_orthonormal(self):
        """Test the basis columns are orthonormal."""
        B = dct_matrix(12, 5)

        np.testing.assert_allclose(B.T @ B, np.eye(5), atol=1e-12)

    def test_constant_column(self):
        """Test the first column is constant."""
        B = dct_matrix(9, 3)
        dB = dct_matrix(9, 3, derivative=True)

        np.testing.assert_allclose(B[:, 0], 1.0 / 3.0)
        np.testing.assert_allclose(dB[:, 0], 0.0)

    def test_derivative_matches_finite_difference(self):
        """Test the analytic derivative against central differences."""
        n, k, h = 20, 4, 1e-5

        def cosine(i):
            j = np.arange(k)
            return np.sqrt(2.0 / n) * np.cos(np.pi * (2.0 * i + 1.0) * j / (2.0 * n))

        dB = dct_matrix(n, k, derivative=True)
        for i in (3, 10, 17):
            fd = (cosine(i + h) - cosine(i - h)) / (2 * h)
            np.testing.assert_allclose(dB[i, 1:], fd[1:], rtol=1e-5, atol=1e-8)

    def test_invalid_count(self):
        """Test out-of-range basis counts."""
        with pytest.raises(ValueError):
            dct_matrix(5, 0)

        with pytest.raises(ValueError):
            dct_matrix(5, 6)


class TestSeparableBasis:
    """Tests for SeparableBasis class."""

    def test_dct(self):
        """Test building a cosine basis."""
        basis = SeparableBasis.dct((10, 8, 6), (3, 2, 4))

        assert basis.counts == (3, 2, 4)
        assert basis.grid_shape == (10, 8, 6)
        assert basis.dBY.shape == (8, 2)

    def test_wrong_derivative_shape(self):
        """Test mismatched value and derivative matrices."""
        with pytest.raises(ConfigurationError, match="Wrong sized X basis function derivatives"):
            SeparableBasis(
                BX=np.ones((5, 2)), BY=np.ones((5, 2)), BZ=np.ones((5, 2)),
                dBX=np.ones((5, 3)), dBY=np.ones((5, 2)), dBZ=np.ones((5, 2)),
            )

    def test_reject_1d(self):
        """Test basis matrices must be 2-D."""
        with pytest.raises(ConfigurationError):
            SeparableBasis(
                BX=np.ones(5), BY=np.ones((5, 2)), BZ=np.ones((5, 2)),
                dBX=np.ones(5), dBY=np.ones((5, 2)), dBZ=np.ones((5, 2)),
            )

    def test_check_grid(self):
        """Test basis rows are checked against the template grid."""
        basis = SeparableBasis.dct((10, 8, 6), (2, 2, 2))

        basis.check_grid((10, 8, 6))

        with pytest.raises(ConfigurationError, match="Wrong sized Y basis functions"):
            basis.check_grid((10, 9, 6))

    def test_jacobian_factors(self):
        """Test derivative matrices are placed on the matching axis."""
        basis = SeparableBasis.dct((10, 8, 6), (2, 2, 2))

        factors = basis.jacobian_factors(1)

        assert factors[0] is basis.BY
        assert factors[1] is basis.dBY
        assert factors[2] is basis.BY


class TestParameterLayout:
    """Tests for ParameterLayout class."""

    def test_sizes(self):
        """Test parameter counts."""
        layout = ParameterLayout(nx=3, ny=2, nz=4, n_templates=2)

        assert layout.n_spatial == 24
        assert layout.n_intensity == 8
        assert layout.size == 3 * 24 + 8

    def test_from_basis(self):
        """Test creating a layout from a basis."""
        basis = SeparableBasis.dct((10, 8, 6), (3, 2, 4))

        layout = ParameterLayout.from_basis(basis, 1)

        assert (layout.nx, layout.ny, layout.nz) == (3, 2, 4)
        assert layout.size == 76

    def test_spatial_view_matches_index(self):
        """Test the spatial view agrees with the flat index."""
        layout = ParameterLayout(nx=3, ny=2, nz=4, n_templates=1)
        T = np.arange(layout.size, dtype=np.float64)

        spatial = layout.spatial(T)

        for c in range(3):
            for z in range(4):
                for y in range(2):
                    for x in range(3):
                        assert spatial[c, z, y, x] == T[layout.spatial_index(c, x, y, z)]

    def test_intensity_view_matches_index(self):
        """Test the intensity view agrees with the flat index."""
        layout = ParameterLayout(nx=2, ny=2, nz=2, n_templates=3)
        T = np.arange(layout.size, dtype=np.float64)

        intensity = layout.intensity(T)

        assert intensity.shape == (3, len(INTENSITY_TERMS))
        for k in range(3):
            for term in range(4):
                assert intensity[k, term] == T[layout.intensity_index(k, term)]

    def test_views_share_memory(self):
        """Test the views write through to T."""
        layout = ParameterLayout(nx=2, ny=2, nz=2, n_templates=1)
        T = np.zeros(layout.size)

        layout.spatial(T)[1, 0, 1, 0] = 5.0
        layout.intensity(T)[0, 2] = 7.0

        assert T[layout.spatial_index(1, 0, 1, 0)] == 5.0
        assert T[layout.intensity_index(0, 2)] == 7.0

    def test_check_wrong_size(self):
        """Test parameter vectors of the wrong length are rejected."""
        layout = ParameterLayout(nx=2, ny=2, nz=2, n_templates=1)

        with pytest.raises(ConfigurationError, match="Transform is wrong size"):
            layout.check(np.zeros(layout.size + 1))

    def test_check_flattens(self):
        """Test column vectors are accepted."""
        layout = ParameterLayout(nx=2, ny=2, nz=2, n_templates=1)

        T = layout.check(np.zeros((layout.size, 1)))

        assert T.shape == (layout.size,)

    def test_initial(self):
        """Test the starting parameter vector."""
        layout = ParameterLayout(nx=2, ny=2, nz=2, n_templates=2)

        T = layout.initial(scale=2.5)

        assert np.all(layout.spatial(T) == 0)
        np.testing.assert_array_equal(layout.intensity(T)[:, 0], [2.5, 2.5])
        assert np.all(layout.intensity(T)[:, 1:] == 0)


class TestSamplingControls:
    """Tests for SamplingControls class."""

    def test_defaults(self):
        """Test default sampling visits every voxel."""
        controls = SamplingControls()

        assert controls.stride == (1, 1, 1)
        assert controls.edgeskip == (0, 0, 0)

    def test_reject_zero_stride(self):
        """Test stride must be at least 1."""
        with pytest.raises(ConfigurationError):
            SamplingControls(stride=(1, 0, 1))

    def test_reject_negative_edgeskip(self):
        """Test edge skip must be non-negative."""
        with pytest.raises(ConfigurationError):
            SamplingControls(edgeskip=(0, -1, 0))

    def test_reject_wrong_length(self):
        """Test triplets must have three values."""
        with pytest.raises(ConfigurationError):
            SamplingControls(stride=(1, 1))


class TestFitParameters:
    """Tests for FitParameters class."""

    def test_default_values(self):
        """Test default parameter values."""
        params = FitParameters()

        assert params.fwhm == 8.0
        assert params.residual_fwhm is None
        assert params.order == 1
        assert params.total_threads == 1

    def test_from_fwhm_single(self):
        """Test a single smoothness value."""
        params = FitParameters.from_fwhm(6.0)

        assert params.fwhm == 6.0
        assert params.effective_residual_fwhm == 6.0

    def test_from_fwhm_pair(self):
        """Test separate residual smoothness."""
        params = FitParameters.from_fwhm([6.0, 12.0], show_progress=False)

        assert params.fwhm == 6.0
        assert params.effective_residual_fwhm == 12.0
        assert not params.show_progress

    def test_from_fwhm_too_many(self):
        """Test more than two smoothness values."""
        with pytest.raises(ConfigurationError, match="FWHM should contain one or two values"):
            FitParameters.from_fwhm([1.0, 2.0, 3.0])

    def test_from_fwhm_numpy_scalar(self):
        """Test numpy integer and array inputs."""
        params = FitParameters.from_fwhm(np.int64(8))

        assert params.fwhm == 8.0
        assert params.residual_fwhm is None

        params = FitParameters.from_fwhm(np.array([6, 9]))

        assert params.fwhm == 6.0
        assert params.residual_fwhm == 9.0

    def test_from_fwhm_non_positive(self):
        """Test zero, negative, non-finite and empty smoothness values."""
        for fwhm in (0.0, -1, [8, 0], [np.nan], []):
            with pytest.raises(ConfigurationError):
                FitParameters.from_fwhm(fwhm)

    def test_from_fwhm_non_numeric(self):
        """Test non-numeric smoothness values."""
        with pytest.raises(ConfigurationError, match="numeric"):
            FitParameters.from_fwhm("wide")

    def test_validate_valid(self):
        """Test validation of valid parameters."""
        params = FitParameters(fwhm=4.0, residual_fwhm=8.0, order=3, total_threads=4)

        assert params.validate()

    def test_validate_invalid(self):
        """Test validation of invalid parameters."""
        with pytest.raises(ValueError):
            FitParameters(fwhm=0.0).validate()

        with pytest.raises(ValueError):
            FitParameters(residual_fwhm=-1.0).validate()

        with pytest.raises(ValueError):
            FitParameters(order=2).validate()

        with pytest.raises(ValueError):
            FitParameters(total_threads=0).validate()

    def test_sampling(self):
        """Test sampling controls derived from the smoothness."""
        params = FitParameters(fwhm=8.0)

        controls = params.sampling(moving_voxel_size=(2, 2, 4), template_voxel_size=(2, 2, 10))

        assert controls.edgeskip == (4, 4, 2)
        assert controls.stride == (2, 2, 1)

    def test_to_dict(self):
        """Test conversion to dictionary."""
        params = FitParameters(fwhm=6.0, residual_fwhm=10.0)

        d = params.to_dict()

        assert d["fwhm"] == 6.0
        assert d["residual_fwhm"] == 10.0

    def test_from_dict(self):
        """Test creation from dictionary."""
        params = FitParameters.from_dict({"fwhm": 5.0, "order": 3})

        assert params.fwhm == 5.0
        assert params.order == 3
        assert params.residual_fwhm is None

    def test_round_trip(self):
        """Test dictionary round trip."""
        params = FitParameters(fwhm=6.0, residual_fwhm=9.0, order=3, total_threads=2)

        assert FitParameters.from_dict(params.to_dict()) == params
