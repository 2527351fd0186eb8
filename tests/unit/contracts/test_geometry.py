import numpy as np
import pytest
from rasterzone.contracts.geo import Bounds
from rasterzone.contracts.geometry import (
    LineString, MultiPoint, MultiPolygon, Point, Polygon,
    geometry_bounds, iter_vertices, map_coords, with_crs,
)
from tests.factories import UTM, OTHER

def test_polygon_rings_are_closed():
    p = Polygon(((0, 0), (2, 0), (2, 2)), crs=UTM)
    assert p.exterior[0] == p.exterior[-1]
    assert len(p.exterior) == 4
    # un anillo ya cerrado no se duplica
    q = Polygon(((0, 0), (2, 0), (2, 2), (0, 0)), crs=UTM)
    assert q.exterior == p.exterior

@pytest.mark.parametrize("ring", [((0, 0), (1, 1)), ((0, 0), (1, 1), (0, 0)), ((0, 0), (0, 0), (1, 1))])
def test_polygon_degenerate_ring(ring):
    with pytest.raises(ValueError):
        Polygon(ring)

def test_linestring_needs_two_points():
    with pytest.raises(ValueError):
        LineString(((0, 0),))

def test_multipolygon_parts_inherit_crs():
    mp = MultiPolygon((Polygon.from_bounds(Bounds(0, 0, 1, 1)),), crs=UTM)
    assert mp.polygons[0].crs == UTM

def test_geometry_bounds_all_variants():
    assert geometry_bounds(Point(1, 2)) == Bounds(1, 2, 1, 2)
    assert geometry_bounds(MultiPoint(((0, 5), (3, -1)))) == Bounds(0, -1, 3, 5)
    assert geometry_bounds(LineString(((0, 0), (4, 2)))) == Bounds(0, 0, 4, 2)
    poly = Polygon(((0, 0), (10, 0), (10, 10), (0, 10)), holes=(((2, 2), (4, 2), (4, 4)),))
    assert geometry_bounds(poly) == Bounds(0, 0, 10, 10)
    assert len(list(iter_vertices(poly))) == 5 + 4

def test_map_coords_keeps_type_and_sets_crs():
    poly = Polygon(((0, 0), (1, 0), (1, 1)), holes=(((0.2, 0.2), (0.4, 0.2), (0.4, 0.4)),), crs=UTM)
    out = map_coords(poly, lambda xs, ys: (xs + 10, ys * 2), OTHER)
    assert isinstance(out, Polygon)
    assert out.crs == OTHER
    assert out.exterior[1] == (11.0, 0.0)
    assert out.holes[0][2] == pytest.approx((10.4, 0.8))

def test_with_crs():
    pt = with_crs(Point(1.0, 2.0), UTM)
    assert pt == Point(1.0, 2.0, crs=UTM)
    assert np.allclose(pt.xy, (1.0, 2.0))
