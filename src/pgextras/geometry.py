"""
PostGIS geometry decoding and encoding.

PostGIS sends geometry values as hex-encoded EWKB text (``0101000020E6...``),
which carries the SRID. Queries may also return WKT or EWKT
(``SRID=4326;POINT(1 2)``) via ST_AsText/ST_AsEWKT, or raw WKB bytes via
ST_AsBinary. All of these decode into shapely geometries; the SRID becomes
the CRS of the resulting GeoSeries.

On the way back geometries are encoded as hex EWKB, which PostGIS accepts as
input to a ``::geometry`` cast.
"""
import logging
import re
from collections.abc import Iterable
from typing import Any

import geopandas as gpd
import pandas as pd
import shapely
from pgextras.exceptions import DecodeError
from shapely.errors import ShapelyError
from shapely.geometry import MultiLineString, MultiPoint, MultiPolygon
from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

_HEX = re.compile(r'^(?:[0-9A-Fa-f]{2})+$')
_EWKT = re.compile(r'^\s*SRID=(?P<srid>\d+)\s*;\s*(?P<wkt>.*)$', re.IGNORECASE | re.DOTALL)

_MULTI = {
    'Point': ('MultiPoint', MultiPoint),
    'LineString': ('MultiLineString', MultiLineString),
    'Polygon': ('MultiPolygon', MultiPolygon),
}


def _is_missing(value: Any) -> bool:
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def to_geometry(value: Any) -> BaseGeometry | None:
    """Decode one wire value into a shapely geometry.

    Accepts hex (E)WKB text, (E)WKT text, WKB bytes, or a geometry. Missing
    values decode to None. The SRID of EWKB/EWKT input is kept on the
    geometry (see ``shapely.get_srid``).

    Raises
        DecodeError: If the value is not a recognizable geometry encoding
    """
    if _is_missing(value):
        return None
    if isinstance(value, BaseGeometry):
        return value

    try:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return shapely.from_wkb(bytes(value))
        if isinstance(value, str):
            text = value.strip()
            if _HEX.match(text):
                return shapely.from_wkb(text)
            if match := _EWKT.match(text):
                geom = shapely.from_wkt(match.group('wkt'))
                return shapely.set_srid(geom, int(match.group('srid')))
            return shapely.from_wkt(text)
    except (ShapelyError, ValueError) as e:
        raise DecodeError(f'Invalid geometry {str(value)[:40]!r}: {e}') from e

    raise DecodeError(f'Cannot decode {type(value).__name__} as geometry')


def to_multi(geom: BaseGeometry | None) -> BaseGeometry | None:
    """Promote a single-part geometry to its multi-part variant.

    Polygon → MultiPolygon([polygon]), LineString → MultiLineString,
    Point → MultiPoint; anything else is returned unchanged.
    """
    if geom is None or geom.geom_type not in _MULTI:
        return geom
    _, multi_cls = _MULTI[geom.geom_type]
    return shapely.set_srid(multi_cls([geom]), shapely.get_srid(geom))


def homogenize(geoms: list[BaseGeometry | None]) -> list[BaseGeometry | None]:
    """Bring a list of geometries to a single geometry type.

    Single-part and multi-part variants of one family are promoted to the
    multi-part type.

    Raises
        DecodeError: If geometries of different families are mixed
    """
    geom_types = {g.geom_type for g in geoms if g is not None}
    if len(geom_types) <= 1:
        return geoms

    singles = geom_types & set(_MULTI)
    if len(singles) == 1:
        single = singles.pop()
        multi_name, _ = _MULTI[single]
        if geom_types == {single, multi_name}:
            logger.debug(f'Promoting {single} geometries to {multi_name}')
            return [to_multi(g) for g in geoms]

    raise DecodeError(f'Mixed geometry types in one column: {sorted(geom_types)}')


def common_srid(geoms: Iterable[BaseGeometry | None]) -> int | None:
    """The single SRID carried by the geometries, None when they carry none.

    Raises
        DecodeError: If geometries carry different SRIDs
    """
    srids = {int(shapely.get_srid(g)) for g in geoms if g is not None}
    srids.discard(0)
    if len(srids) > 1:
        raise DecodeError(f'Mixed SRIDs in one column: {sorted(srids)}')
    return srids.pop() if srids else None


def decode_geometry(values: pd.Series) -> gpd.GeoSeries:
    """Decode a column of wire values into a GeoSeries with a CRS.

    Raises
        DecodeError: If a value cannot be parsed, geometry types are mixed
            across families, or the SRIDs disagree
    """
    geoms = []
    for label, value in values.items():
        try:
            geoms.append(to_geometry(value))
        except DecodeError as e:
            raise DecodeError(f'Column {values.name!r}, row {label!r}: {e}') from e

    geoms = homogenize(geoms)
    srid = common_srid(geoms)
    crs = f'EPSG:{srid}' if srid else None
    return gpd.GeoSeries(geoms, index=values.index, crs=crs, name=values.name)


def crs_srid(geoms: Any) -> int | None:
    """EPSG code of a GeoSeries' CRS, None when it has none or no EPSG code."""
    crs = getattr(geoms, 'crs', None)
    if crs is None:
        return None
    epsg = crs.to_epsg()
    if epsg is None:
        logger.warning(f'CRS {crs.name} has no EPSG code; writing geometries without SRID')
    return epsg


def encode_geometry(values: pd.Series, srid: int | None = None) -> list[str | None]:
    """Encode a column of geometries as hex EWKB text.

    The SRID comes from the column's CRS when it has an EPSG code, else from
    ``srid``, else from the geometries themselves. Missing values stay None.
    """
    srid = crs_srid(values) or srid
    encoded = []
    for value in values:
        geom = to_geometry(value)
        if geom is None:
            encoded.append(None)
            continue
        if srid:
            geom = shapely.set_srid(geom, srid)
        encoded.append(shapely.to_wkb(geom, hex=True, include_srid=bool(shapely.get_srid(geom))))
    return encoded
