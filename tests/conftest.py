"""Pytest fixtures for brainwarp tests."""

import numpy as np
import pytest
from scipy import ndimage


@pytest.fixture
def smooth_volume():
    """Create a smooth random volume."""
    np.random.seed(42)
    data = np.random.rand(16, 16, 12)
    data = ndimage.gaussian_filter(data, sigma=2.0, mode="nearest")

    # Normalize to roughly 0-100
    data = (data - data.min()) / (data.max() - data.min())
    return data * 100.0


@pytest.fixture
def shifted_volume(smooth_volume):
    """Create a translated copy of the smooth volume."""
    displacement = np.array([0.6, -0.4, 0.3])
    shifted = ndimage.shift(smooth_volume, displacement, order=3, mode="nearest")
    return shifted, displacement


@pytest.fixture
def linear_volume():
    """Create a volume that is linear in the voxel coordinates."""
    x, y, z = np.meshgrid(np.arange(6), np.arange(5), np.arange(4), indexing="ij")
    return 3.0 + 2.0 * x - 1.5 * y + 0.5 * z


@pytest.fixture
def small_basis(smooth_volume):
    """Create a 3x3x3 cosine basis on the smooth volume grid."""
    from brainwarp.core.basis import SeparableBasis

    return SeparableBasis.dct(smooth_volume.shape, (3, 3, 3))


@pytest.fixture
def oblique_affine():
    """Create a small rotation plus translation (template voxels -> moving voxels)."""
    angle = 0.05
    M = np.eye(4)
    M[:3, :3] = [
        [np.cos(angle), -np.sin(angle), 0.0],
        [np.sin(angle), np.cos(angle), 0.0],
        [0.0, 0.0, 1.0],
    ]
    M[:3, 3] = [0.3, -0.2, 0.1]
    return M


@pytest.fixture
def fit_parameters():
    """Create fit parameters for testing."""
    from brainwarp.core.fit_parameters import FitParameters

    return FitParameters(
        fwhm=4.0,
        order=1,
        total_threads=1,
        show_progress=False,
    )
