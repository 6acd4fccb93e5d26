"""Pytest configuration for gridgeom tests.

This configuration file:
1. Adds the workspace root to sys.path so that tests run without installing
2. Registers custom pytest marks to eliminate warnings
3. Provides grid geometry factories shared by the derivation tests
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add workspace root to Python path
workspace_root = Path(__file__).parent.parent.parent
if str(workspace_root) not in sys.path:
    sys.path.insert(0, str(workspace_root))

from gridgeom.core.extent import GridExtent  # noqa: E402
from gridgeom.core.grid import GridGeometry, PixelInCell  # noqa: E402
from gridgeom.referencing import transforms  # noqa: E402


def pytest_configure(config):
    """Register custom pytest marks."""
    config.addinivalue_line(
        "markers",
        "reprojection: test delegates a map projection change to GDAL through rasterio",
    )


@pytest.fixture
def scaled_grid():
    """Factory of 2-D grids with cell-corner transform ``(x_scale * i + 200, y_scale * j + 500)``."""

    def make(xmin, ymin, xmax, ymax, x_scale, y_scale):
        extent = GridExtent((xmin, ymin), (xmax, ymax))
        matrix = np.array([
            [x_scale, 0, 200],
            [0, y_scale, 500],
            [0, 0, 1],
        ], dtype=float)
        return GridGeometry(extent, PixelInCell.CELL_CORNER, transforms.linear(matrix))

    return make
