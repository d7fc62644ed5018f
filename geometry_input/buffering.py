"""
Geometry Buffering Module

Buffers the search features by the analyst's radius. Distances are applied in
a projected CRS so that the buffer is metric: the source CRS when it is
projected in metres (e.g. British National Grid), otherwise the UTM zone of the
features' centroid. The result is returned in the source CRS.
"""

from typing import List, Optional, Sequence

import geopandas as gpd
from pyproj import CRS, Transformer
from shapely.geometry.base import BaseGeometry
from utils.logger import get_logger

logger = get_logger(__name__)

# Constants
METERS_PER_UNIT = {
    'meters': 1.0,
    'metres': 1.0,
    'kilometers': 1000.0,
    'kilometres': 1000.0,
    'feet': 0.3048,
    'yards': 0.9144,
    'miles': 1609.344,
}
ZERO_BUFFER_METERS = 0.01
WEB_MERCATOR = 'EPSG:3857'
METRE_UNIT_NAMES = ('metre', 'meter')


def distance_to_meters(distance: float, unit: str) -> float:
    """
    Convert a buffer distance in a process unit to metres.

    Args:
        distance: Buffer distance
        unit: Process unit name, e.g. 'Meters', 'Kilometers', 'Feet'

    Raises:
        ValueError: If the unit is not recognised or the distance is negative
    """
    if distance < 0:
        raise ValueError(f"Buffer distance must not be negative, got {distance}")

    factor = METERS_PER_UNIT.get(unit.strip().lower())
    if factor is None:
        raise ValueError(f"Unknown buffer unit: {unit}")

    return distance * factor


def is_metric(crs: CRS) -> bool:
    """Check whether a CRS's first axis is measured in metres."""
    axes = crs.axis_info
    return bool(axes) and axes[0].unit_name in METRE_UNIT_NAMES


def select_projected_crs(geom: BaseGeometry, original_crs: CRS) -> CRS:
    """
    Select a projected CRS suitable for metric buffering.

    Source CRSs projected in metres are used as-is. Others (geographic, or
    projected in feet) are replaced by the UTM zone containing the geometry
    centroid, falling back to Web Mercator.
    """
    if original_crs.is_projected and is_metric(original_crs):
        return original_crs

    try:
        centroid = geom.centroid
        if original_crs != CRS.from_epsg(4326):
            transformer = Transformer.from_crs(original_crs, CRS.from_epsg(4326), always_xy=True)
            lon, lat = transformer.transform(centroid.x, centroid.y)
        else:
            lon, lat = centroid.x, centroid.y

        # UTM zones are 6 degrees wide, starting at -180°
        utm_zone = int((lon + 180) / 6) + 1
        epsg_code = (32600 if lat >= 0 else 32700) + utm_zone
        logger.debug(f"  - Selected UTM Zone {utm_zone} (EPSG:{epsg_code}) for buffering")
        return CRS.from_epsg(epsg_code)

    except Exception as e:
        logger.warning(f"Failed to determine UTM zone: {e}, using Web Mercator")
        return CRS.from_string(WEB_MERCATOR)


def existing_fields(gdf: gpd.GeoDataFrame, fields: Sequence[str]) -> List[str]:
    """Return the requested field names that exist in the GeoDataFrame (case-insensitive)."""
    lookup = {c.lower(): c for c in gdf.columns if c != gdf.geometry.name}
    return [lookup[f.strip().lower()] for f in fields if f.strip() and f.strip().lower() in lookup]


def buffer_features(
    gdf: gpd.GeoDataFrame,
    distance: float,
    unit: str,
    dissolve_fields: Optional[Sequence[str]] = None
) -> gpd.GeoDataFrame:
    """
    Buffer and dissolve search features.

    Process:
    1. Convert the distance to metres (0 becomes a nominal 0.01 m)
    2. Reproject to a projected CRS if needed
    3. Buffer with round ends
    4. Dissolve everything, or by the aggregate fields that exist
    5. Reproject back to the source CRS

    Args:
        gdf: Search features
        distance: Buffer distance in ``unit``
        unit: Process unit name
        dissolve_fields: Aggregate columns to dissolve by (missing ones are ignored)

    Returns:
        Buffered GeoDataFrame in the source CRS

    Raises:
        ValueError: If the features have no CRS or cannot be buffered
    """
    if gdf.crs is None:
        raise ValueError("Search features have no Coordinate Reference System (CRS) defined")
    if gdf.empty:
        raise ValueError("No search features to buffer")

    buffer_meters = distance_to_meters(distance, unit)
    if buffer_meters == 0:
        buffer_meters = ZERO_BUFFER_METERS

    original_crs = CRS.from_user_input(gdf.crs)
    projected_crs = select_projected_crs(gdf.geometry.union_all(), original_crs)

    logger.info(f"  - Buffer distance: {distance} {unit} = {buffer_meters:.2f} m")

    projected = gdf.to_crs(projected_crs) if projected_crs != original_crs else gdf.copy()

    try:
        projected[projected.geometry.name] = projected.geometry.buffer(buffer_meters, resolution=16)
    except Exception as e:
        logger.error(f"Failed to buffer geometry: {e}")
        raise ValueError(f"Buffer operation failed: {e}")

    fields = existing_fields(projected, dissolve_fields or [])
    if fields:
        dissolved = projected[fields + [projected.geometry.name]].dissolve(by=fields, as_index=False)
    else:
        dissolved = gpd.GeoDataFrame(geometry=[projected.geometry.union_all()], crs=projected.crs)

    if projected_crs != original_crs:
        dissolved = dissolved.to_crs(original_crs)

    logger.debug(f"  - Buffered {len(gdf)} feature(s) into {len(dissolved)} polygon(s)")
    return dissolved
