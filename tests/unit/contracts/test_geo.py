import numpy as np
import pytest
from rasterzone.contracts.errors import (
    CRSMismatch, CRSUndefined, GridMismatch, InvalidRange, OutOfBounds,
)
from rasterzone.contracts.geo import (
    Bounds, CRSRef, GridGeometry, Raster, valid_mask, validate_grid_compat,
)
from tests.factories import UTM, OTHER, make_grid, make_raster

# ---------- GridGeometry ----------
def test_cell_to_world_is_cell_center():
    g = make_grid()
    assert g.cell_to_world(0, 0) == (0.5, 0.5)
    assert g.cell_to_world(2, 3) == (3.5, 2.5)

def test_north_up_row_zero_is_top():
    g = GridGeometry(x0=0.0, y0=10.0, sx=1.0, sy=-1.0, rows=10, cols=10)
    assert g.cell_to_world(0, 0) == (0.5, 9.5)
    assert g.world_to_cell(0.5, 9.5) == (0, 0)
    assert g.world_to_cell(0.5, 0.2) == (9, 0)

@pytest.mark.parametrize("sy", [1.0, -2.0])
def test_world_to_cell_inverts_cell_to_world(sy):
    g = GridGeometry(x0=100.0, y0=50.0, sx=2.0, sy=sy, rows=5, cols=7)
    for r in range(g.rows):
        for c in range(g.cols):
            assert g.world_to_cell(*g.cell_to_world(r, c)) == (r, c)

def test_world_to_cell_half_open_cells():
    g = make_grid()
    assert g.world_to_cell(1.0, 1.0) == (1, 1)
    assert g.world_to_cell(3.999, 0.0) == (0, 3)
    with pytest.raises(OutOfBounds):
        g.world_to_cell(4.0, 0.0)
    with pytest.raises(OutOfBounds):
        g.world_to_cell(-0.01, 0.5)

def test_cell_to_world_vectorized():
    g = make_grid()
    xs, ys = g.cell_to_world(np.array([0, 1]), np.array([2, 3]))
    np.testing.assert_allclose(xs, [2.5, 3.5])
    np.testing.assert_allclose(ys, [0.5, 1.5])

@pytest.mark.parametrize("sx,sy", [(0.0, 1.0), (-1.0, 1.0), (1.0, 0.0)])
def test_invalid_cell_size(sx, sy):
    with pytest.raises(ValueError):
        GridGeometry(0.0, 0.0, sx, sy, 2, 2)

def test_sub_grid_shares_world_positions():
    g = GridGeometry(x0=10.0, y0=20.0, sx=2.0, sy=-2.0, rows=6, cols=6)
    s = g.sub_grid(range(1, 3), range(2, 5))
    assert s.shape == (2, 3)
    assert (s.sx, s.sy) == (g.sx, g.sy)
    for r in range(2):
        for c in range(3):
            assert s.cell_to_world(r, c) == g.cell_to_world(r + 1, c + 2)

@pytest.mark.parametrize("rows,cols", [
    (range(0, 0), range(0, 2)),
    (range(0, 5), range(0, 2)),
    (range(-1, 2), range(0, 2)),
    (range(0, 2), range(3, 3)),
])
def test_sub_grid_invalid_range(rows, cols):
    with pytest.raises(InvalidRange):
        make_grid().sub_grid(rows, cols)

def test_from_bounds_and_geotransform():
    g = GridGeometry.from_bounds(Bounds(0, 0, 10, 5), rows=5, cols=10)
    assert (g.x0, g.y0, g.sx, g.sy) == (0, 5, 1, -1)
    assert g.bounds == Bounds(0, 0, 10, 5)
    assert GridGeometry.from_geotransform(g.to_geotransform(), 5, 10) == g
    with pytest.raises(ValueError):
        GridGeometry.from_geotransform((0, 1, 0.5, 0, 0, -1), 2, 2)

def test_window_for_bounds():
    g = make_grid()
    assert g.window_for_bounds(Bounds(0.5, 0.5, 1.5, 1.5)) == (range(0, 2), range(0, 2))
    assert g.window_for_bounds(Bounds(0, 0, 2, 2)) == (range(0, 2), range(0, 2))
    assert g.window_for_bounds(Bounds(-5, -5, 50, 50)) == (range(0, 4), range(0, 4))
    # bbox degenerado -> al menos una celda
    assert g.window_for_bounds(Bounds(1.5, 1.5, 1.5, 1.5)) == (range(1, 2), range(1, 2))

def test_window_for_bounds_outside_or_touching_edge():
    g = make_grid()
    assert g.window_for_bounds(Bounds(10, 10, 12, 12)) is None
    assert g.window_for_bounds(Bounds(4, 0, 5, 1)) is None

def test_window_for_bounds_north_up():
    g = GridGeometry(x0=0.0, y0=4.0, sx=1.0, sy=-1.0, rows=4, cols=4)
    assert g.window_for_bounds(Bounds(0, 3, 1, 4)) == (range(0, 1), range(0, 1))

# ---------- Bounds ----------
def test_bounds_intersection():
    a = Bounds(0.0, 0.0, 2.0, 2.0)
    assert a.intersection(Bounds(1.0, 1.0, 3.0, 3.0)) == Bounds(1.0, 1.0, 2.0, 2.0)
    assert a.intersection(Bounds(5.0, 5.0, 6.0, 6.0)) is None

def test_bounds_touching_edges_intersect():
    a = Bounds(0.0, 0.0, 2.0, 2.0)
    assert a.intersects(Bounds(2.0, 0.0, 3.0, 1.0))
    assert a.intersection(Bounds(2.0, 0.0, 3.0, 1.0)) == Bounds(2.0, 0.0, 2.0, 1.0)
    assert not a.intersects(Bounds(2.1, 0.0, 3.0, 1.0))

# ---------- Raster ----------
def test_raster_immutable_buffer():
    r = make_raster()
    with pytest.raises((ValueError, RuntimeError)):
        r.data[...] = 1

def test_raster_copies_caller_array():
    arr = np.zeros((2, 2))
    r = Raster(arr, make_grid(2, 2), UTM)
    arr[0, 0] = 5
    assert r.data[0, 0, 0] == 0

def test_raster_promotes_2d_and_broadcasts_nodata():
    r = Raster(np.zeros((3, 2)), make_grid(3, 2), UTM, nodata=-1)
    assert r.shape == (1, 3, 2)
    assert r.nodata == (-1.0,)
    r2 = make_raster(bands=2, nodata=0)
    assert r2.nodata == (0.0, 0.0)

def test_raster_shape_mismatch():
    with pytest.raises(GridMismatch):
        Raster(np.zeros((3, 3)), make_grid(2, 2), UTM)
    with pytest.raises(ValueError):
        Raster(np.zeros((2, 2, 2)), make_grid(2, 2), UTM, nodata=(0, 1, 2))

def test_valid_mask_nan_and_sentinel():
    arr = np.array([[1.0, np.nan], [-9999.0, 3.0]])
    np.testing.assert_array_equal(valid_mask(arr, -9999.0), [[True, False], [False, True]])
    np.testing.assert_array_equal(valid_mask(arr, None), [[True, False], [True, True]])

def test_sub_raster_values_and_grid():
    r = make_raster(4, 4)
    s = r.sub_raster(range(1, 3), range(2, 4))
    np.testing.assert_array_equal(s.data[0], [[6, 7], [10, 11]])
    assert s.grid.cell_to_world(0, 0) == r.grid.cell_to_world(1, 2)
    assert s.crs == r.crs

def test_with_data_keeps_metadata():
    r = make_raster(nodata=-1)
    r2 = r.with_data(np.ones((1, 4, 4)))
    assert r2.nodata == (-1.0,)
    assert r2.grid == r.grid
    assert not r2.equals(r)
    assert r.equals(make_raster(nodata=-1))

# ---------- CRS ----------
def test_crsref_equals_rules():
    assert CRSRef.from_epsg(4326).equals(CRSRef.parse("EPSG:4326"))
    assert CRSRef.from_wkt('GEOGCS["x" , 1]').equals(CRSRef.from_wkt('geogcs["x",1]'))
    assert not CRSRef.from_epsg(4326).equals(CRSRef.from_wkt("GEOGCS[...]"))
    assert not UTM.equals(None)
    assert CRSRef.parse(32719) == UTM

def test_crsref_empty():
    with pytest.raises(CRSUndefined):
        CRSRef().to_wkt()
    with pytest.raises(ValueError):
        CRSRef.parse("  ")

def test_validate_grid_compat():
    a = make_raster()
    validate_grid_compat(a, make_raster(x0=1e-7))  # no lanza
    with pytest.raises(CRSMismatch):
        validate_grid_compat(a, make_raster(crs=OTHER))
    with pytest.raises(CRSUndefined):
        validate_grid_compat(a, make_raster(crs=None))
    with pytest.raises(GridMismatch):
        validate_grid_compat(a, make_raster(3, 4))
    with pytest.raises(GridMismatch):
        validate_grid_compat(a, make_raster(x0=1.0))
    with pytest.raises(GridMismatch):
        validate_grid_compat(a, make_raster(bands=2))
