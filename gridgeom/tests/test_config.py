import pytest
from pydantic import ValidationError

from gridgeom.config import GridSettings
from gridgeom.core import derivation
from gridgeom.core.envelope import Envelope
from gridgeom.core.extent import GridExtent
from gridgeom.core.grid import GridGeometry, PixelInCell
from gridgeom.referencing import transforms
from gridgeom.referencing.crs import WGS84


def test_defaults(monkeypatch):
    for name in ("GRID_ROUNDING_MODE", "GRID_CLIPPING_MODE", "GRID_ENVELOPE_DENSIFY_POINTS"):
        monkeypatch.delenv(name, raising=False)
    config = GridSettings()
    assert config.default_rounding == "nearest"
    assert config.default_clipping == "strict"
    assert config.envelope_densify_points == 21


def test_environment_overrides_are_normalized(monkeypatch):
    monkeypatch.setenv("GRID_ROUNDING_MODE", "ENCLOSING")
    monkeypatch.setenv("GRID_CLIPPING_MODE", "Border-Expansion")
    monkeypatch.setenv("GRID_SLICE_EDGE_TOLERANCE", "0.001")
    config = GridSettings()
    assert config.default_rounding == "enclosing"
    assert config.default_clipping == "border_expansion"
    assert config.slice_edge_tolerance == 0.001


@pytest.mark.parametrize(
    "name, value",
    [
        ("GRID_ROUNDING_MODE", "floor"),
        ("GRID_SUBSAMPLING_TOLERANCE", "-1"),
        ("GRID_ENVELOPE_DENSIFY_POINTS", "1"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        GridSettings()


def test_derivation_uses_configured_rounding(monkeypatch):
    base = GridGeometry(GridExtent.of_size(100, 100), PixelInCell.CELL_CORNER, transforms.scale(1, 1), WGS84)
    area = Envelope.from_ranges((10.6, 20.4), (10.6, 20.4), crs=WGS84)

    assert base.derive().subgrid(area).build().extent == GridExtent((11, 11), (19, 19))

    monkeypatch.setattr(derivation, "settings", GridSettings(GRID_ROUNDING_MODE="enclosing"))
    assert base.derive().subgrid(area).build().extent == GridExtent((10, 10), (20, 20))
