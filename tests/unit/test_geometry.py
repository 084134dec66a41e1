"""
Unit tests for geometry decoding and encoding.
"""
import geopandas as gpd
import pandas as pd
import pytest
import shapely
from pgextras.exceptions import DecodeError
from pgextras.geometry import common_srid, decode_geometry, encode_geometry
from pgextras.geometry import homogenize, to_geometry, to_multi
from shapely.geometry import LineString, MultiLineString, MultiPolygon, Point
from shapely.geometry import Polygon

SQUARE = Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])


def ewkb(geom, srid):
    return shapely.to_wkb(shapely.set_srid(geom, srid), hex=True, include_srid=True)


@pytest.mark.parametrize('value', [
    SQUARE.wkt,
    f'SRID=4326;{SQUARE.wkt}',
    shapely.to_wkb(SQUARE),
    shapely.to_wkb(SQUARE, hex=True),
    ewkb(SQUARE, 4326),
    SQUARE,
])
def test_to_geometry_encodings(value):
    """Test every supported wire encoding decodes to the same polygon"""
    geom = to_geometry(value)
    assert geom.equals(SQUARE)


def test_to_geometry_keeps_srid():
    """Test the SRID of EWKB and EWKT input is kept"""
    assert shapely.get_srid(to_geometry(ewkb(SQUARE, 4326))) == 4326
    assert shapely.get_srid(to_geometry('SRID=3857;POINT(1 2)')) == 3857
    assert shapely.get_srid(to_geometry('POINT(1 2)')) == 0


@pytest.mark.parametrize('value', [None, float('nan'), pd.NA])
def test_to_geometry_missing(value):
    assert to_geometry(value) is None


@pytest.mark.parametrize('value', ['not a geometry', 'abcd', 'POLYGON((0 0', 42])
def test_to_geometry_invalid(value):
    """Test unparseable values raise DecodeError"""
    with pytest.raises(DecodeError):
        to_geometry(value)


def test_to_multi():
    """Test single-part geometries are promoted to their multi variant"""
    assert to_multi(SQUARE).geom_type == 'MultiPolygon'
    assert to_multi(Point(1, 2)).geom_type == 'MultiPoint'
    assert to_multi(LineString([(0, 0), (1, 1)])).geom_type == 'MultiLineString'
    multi = MultiPolygon([SQUARE])
    assert to_multi(multi) is multi
    assert to_multi(None) is None


def test_homogenize_promotes_same_family():
    """Test Polygon mixed with MultiPolygon becomes all MultiPolygon"""
    geoms = homogenize([SQUARE, MultiPolygon([SQUARE]), None])
    assert [g.geom_type if g is not None else None for g in geoms] == [
        'MultiPolygon', 'MultiPolygon', None]

    lines = homogenize([LineString([(0, 0), (1, 1)]),
                        MultiLineString([[(0, 0), (1, 1)]])])
    assert {g.geom_type for g in lines} == {'MultiLineString'}


def test_homogenize_rejects_mixed_families():
    """Test geometries of different families raise DecodeError"""
    with pytest.raises(DecodeError):
        homogenize([SQUARE, Point(0, 0)])
    with pytest.raises(DecodeError):
        homogenize([SQUARE, MultiPolygon([SQUARE]), Point(0, 0)])


def test_common_srid():
    assert common_srid([to_geometry(ewkb(SQUARE, 4326)), None, SQUARE]) == 4326
    assert common_srid([SQUARE]) is None
    with pytest.raises(DecodeError):
        common_srid([to_geometry(ewkb(SQUARE, 4326)), to_geometry(ewkb(SQUARE, 3857))])


def test_decode_geometry():
    """Test a column decodes to a GeoSeries with the SRID as CRS"""
    values = pd.Series([ewkb(SQUARE, 4326), None, ewkb(Point(1, 2).buffer(1), 4326)],
                       index=[5, 6, 7], name='geom')
    geoms = decode_geometry(values)
    assert isinstance(geoms, gpd.GeoSeries)
    assert geoms.crs.to_epsg() == 4326
    assert geoms.index.tolist() == [5, 6, 7]
    assert geoms.name == 'geom'
    assert geoms[6] is None
    assert geoms[5].equals(SQUARE)


def test_decode_geometry_without_srid():
    geoms = decode_geometry(pd.Series([SQUARE.wkt], name='wkt'))
    assert geoms.crs is None


def test_decode_geometry_names_bad_row():
    """Test the error names the column and the row"""
    values = pd.Series([SQUARE.wkt, 'garbage'], index=['a', 'b'], name='geom')
    with pytest.raises(DecodeError, match="'geom'.*'b'"):
        decode_geometry(values)


def test_encode_geometry_uses_crs():
    """Test encoding writes the CRS EPSG code as SRID"""
    series = gpd.GeoSeries([SQUARE, None], crs='EPSG:4326')
    encoded = encode_geometry(series)
    assert encoded[1] is None
    geom = to_geometry(encoded[0])
    assert shapely.get_srid(geom) == 4326
    assert geom.equals(SQUARE)


def test_encode_geometry_srid_fallback():
    """Test the srid argument applies when the values have no CRS"""
    encoded = encode_geometry(pd.Series([SQUARE.wkt]), srid=3857)
    assert shapely.get_srid(to_geometry(encoded[0])) == 3857

    encoded = encode_geometry(pd.Series([SQUARE.wkt]))
    assert shapely.get_srid(to_geometry(encoded[0])) == 0


def test_decode_then_encode_polygons():
    """Test N polygons decoded then re-encoded stay equivalent"""
    polygons = [Point(i, i).buffer(0.5) for i in range(5)]
    wire = pd.Series([ewkb(p, 4326) for p in polygons], name='geom')
    decoded = decode_geometry(wire)
    reencoded = encode_geometry(decoded)
    for original, value in zip(polygons, reencoded):
        geom = to_geometry(value)
        assert geom.equals(original)
        assert shapely.get_srid(geom) == 4326


if __name__ == '__main__':
    __import__('pytest').main([__file__])
