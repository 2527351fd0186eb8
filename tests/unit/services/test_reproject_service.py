import numpy as np
import pytest

from rasterzone.config import Settings
from rasterzone.contracts.core import Resampling
from rasterzone.contracts.errors import CRSMismatch, CRSUndefined, EmptyIntersection
from rasterzone.contracts.geo import GridGeometry, Raster
from rasterzone.services.reproject_service import ReprojectService, nearest_index
from tests.factories import UTM, OTHER, ShiftTransformer, make_grid, make_raster


def _svc(transformer=None, **kw):
    return ReprojectService(transformer=transformer, settings=Settings(**kw))


def test_nearest_index_ties_go_low():
    idx, inside = nearest_index(np.array([0.0, 0.5, 1.0, 1.49, 2.0, 3.999, 4.0, -0.1]), 4)
    assert idx[:6].tolist() == [0, 0, 0, 1, 1, 3]
    assert inside.tolist() == [True] * 6 + [False, False]

@pytest.mark.parametrize("method", ["nearest", "bilinear"])
def test_same_grid_same_crs_is_identity(method):
    r = make_raster(5, 6, bands=2, x0=3.0, y0=-2.0, sx=2.0, sy=-1.5)
    out = _svc().reproject(r, r.grid, UTM, method)
    np.testing.assert_allclose(out.data, r.data)
    assert out.grid == r.grid and out.crs == UTM

def test_nearest_tie_picks_lower_column():
    r = Raster(np.array([[10.0, 20.0, 30.0, 40.0]]), make_grid(1, 4), UTM)
    target = GridGeometry(x0=1.5, y0=0.0, sx=1.0, sy=1.0, rows=1, cols=1)  # centro x=2.0
    out = _svc().reproject(r, target, UTM, Resampling.NEAREST)
    assert out.data[0, 0, 0] == 20.0

def test_downsampling_nearest():
    r = make_raster()
    target = make_grid(2, 2, sx=2.0, sy=2.0)
    out = _svc().reproject(r, target, UTM)
    np.testing.assert_array_equal(out.data[0], [[0, 2], [8, 10]])

def test_bilinear_average_and_nodata_neighbour():
    target = make_grid(1, 1, x0=0.5, y0=0.5)  # centro (1, 1)
    out = _svc().reproject(make_raster(), target, UTM, "bilinear")
    assert out.data[0, 0, 0] == pytest.approx(2.5)
    out_nd = _svc().reproject(make_raster(nodata=5.0), target, UTM, "bilinear")
    assert out_nd.nodata == (5.0,)
    assert not out_nd.valid_mask(0)[0, 0]

def test_bilinear_clamps_at_outer_edge():
    r = Raster(np.array([[10.0, 20.0]]), make_grid(1, 2), UTM)
    target = GridGeometry(x0=0.0, y0=0.0, sx=0.5, sy=1.0, rows=1, cols=1)  # centro x=0.25
    out = _svc().reproject(r, target, UTM, "bilinear")
    assert out.data[0, 0, 0] == pytest.approx(10.0)

def test_target_cells_outside_source_are_nodata():
    r = make_raster()
    target = make_grid(1, 2, x0=3.0)
    out = _svc().reproject(r, target, UTM)
    assert out.data[0, 0, 0] == 3.0
    assert np.isnan(out.data[0, 0, 1])

def test_integer_source_promoted_without_sentinel():
    r = make_raster(dtype=np.int16)
    out = _svc().reproject(r, make_grid(1, 2, x0=3.0), UTM)
    assert out.data.dtype == np.float64
    r_nd = make_raster(dtype=np.int16, nodata=-1)
    out_nd = _svc().reproject(r_nd, make_grid(1, 2, x0=3.0), UTM)
    assert out_nd.data.dtype == np.int16
    assert out_nd.data[0].tolist() == [[3, -1]]

def test_explicit_nodata_value():
    out = _svc().reproject(make_raster(), make_grid(1, 2, x0=3.0), UTM, nodata=-9999.0)
    assert out.data[0].tolist() == [[3.0, -9999.0]]
    assert out.nodata == (-9999.0,)

@pytest.mark.parametrize("nd", [float("nan"), -9999.5, 70000.0])
def test_explicit_nodata_not_representable_promotes(nd):
    r = make_raster(dtype=np.int16)
    out = _svc().reproject(r, make_grid(1, 2, x0=3.0), UTM, nodata=nd)
    assert out.data.dtype == np.float64
    assert out.data[0, 0, 0] == 3.0
    assert out.valid_mask(0).tolist() == [[True, False]]

def test_explicit_integer_nodata_keeps_dtype():
    out = _svc().reproject(make_raster(dtype=np.int16), make_grid(1, 2, x0=3.0), UTM, nodata=-9999)
    assert out.data.dtype == np.int16
    assert out.data[0].tolist() == [[3, -9999]]
    assert out.valid_mask(0).tolist() == [[True, False]]

def test_no_overlap_raises():
    with pytest.raises(EmptyIntersection):
        _svc().reproject(make_raster(), make_grid(2, 2, x0=100.0), UTM)

def test_crs_preconditions():
    with pytest.raises(CRSUndefined):
        _svc().reproject(make_raster(crs=None), make_grid(), UTM)
    with pytest.raises(CRSUndefined):
        _svc().reproject(make_raster(), make_grid(), None)
    with pytest.raises(CRSMismatch):
        _svc().reproject(make_raster(), make_grid(), OTHER)

def test_reproject_through_transformer():
    tr = ShiftTransformer(UTM, OTHER, dx=10.0, dy=-5.0)
    r = make_raster()
    target = make_grid(x0=10.0, y0=-5.0)
    out = _svc(tr).reproject(r, target, OTHER)
    np.testing.assert_array_equal(out.data, r.data)
    assert out.crs == OTHER
    assert tr.calls >= 1

def test_chunked_and_threaded_match():
    r = make_raster(23, 17, bands=3)
    target = make_grid(11, 9, x0=0.3, y0=0.7, sx=1.9, sy=2.1)
    base = _svc().reproject(r, target, UTM, "bilinear")
    chunked = _svc(reproject_chunk_rows=2, max_workers=3).reproject(r, target, UTM, "bilinear")
    assert chunked.equals(base)

def test_align_to_reference():
    ref = make_raster(2, 2, sx=2.0, sy=2.0)
    out = _svc().align_to(make_raster(), ref)
    assert out.grid == ref.grid
    np.testing.assert_array_equal(out.data[0], [[0, 2], [8, 10]])

def test_nearest_roundtrip_through_finer_grid():
    r = make_raster(6, 5, bands=2)
    fine = make_grid(12, 10, sx=0.5, sy=0.5)
    svc = _svc()
    back = svc.reproject(svc.reproject(r, fine, UTM), r.grid, UTM)
    assert back.equals(r)

@pytest.mark.parametrize("method", ["nearest", "bilinear"])
def test_validity_mask_built_once_per_band(monkeypatch, method):
    calls = []
    original = Raster.valid_mask

    def _spy(self, band):
        calls.append(band)
        return original(self, band)

    monkeypatch.setattr(Raster, "valid_mask", _spy)
    r = make_raster(12, 12, bands=2)
    _svc(reproject_chunk_rows=1).reproject(r, make_grid(12, 12), UTM, method)
    assert calls == [0, 1]
