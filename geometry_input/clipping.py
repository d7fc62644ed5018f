"""
Geometry Clipping Module

Spatial operations between a map layer and the search buffer: selecting
features by location and producing the map output for a layer by copying,
clipping, overlaying or intersecting its selected features with the buffer.
"""

from typing import Optional

import geopandas as gpd
import pandas as pd
from shapely.geometry import (
    LineString, MultiLineString, Polygon, MultiPolygon, GeometryCollection
)
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid
from utils.logger import get_logger

logger = get_logger(__name__)

OUTPUT_COPY = 'COPY'
OUTPUT_CLIP = 'CLIP'
OUTPUT_OVERLAY = 'OVERLAY'
OUTPUT_INTERSECT = 'INTERSECT'


def get_geometry_type(gdf: gpd.GeoDataFrame) -> Optional[str]:
    """
    Return the feature class type of a GeoDataFrame.

    Returns:
        'point', 'line' or 'polygon' based on the first non-empty geometry,
        or None if the GeoDataFrame has no geometries
    """
    geoms = gdf.geometry.dropna()
    geoms = geoms[~geoms.is_empty]
    if geoms.empty:
        return None

    geom_type = geoms.iloc[0].geom_type
    if geom_type in ('Point', 'MultiPoint'):
        return 'point'
    if geom_type in ('LineString', 'MultiLineString', 'LinearRing'):
        return 'line'
    if geom_type in ('Polygon', 'MultiPolygon'):
        return 'polygon'
    return None


def extract_geometry_type(
    geometry: BaseGeometry,
    target_type: str
) -> Optional[BaseGeometry]:
    """
    Extract geometries of a specific type from a potentially mixed result.

    When an intersection returns a GeometryCollection, this keeps only the
    parts matching the layer's type (lines or polygons).

    Args:
        geometry: Result geometry (may be GeometryCollection)
        target_type: 'line' or 'polygon'

    Returns:
        Extracted geometry of the target type, or None if no matching geometries
    """
    if geometry is None or geometry.is_empty:
        return None

    if target_type == 'line' and isinstance(geometry, (LineString, MultiLineString)):
        return geometry
    if target_type == 'polygon' and isinstance(geometry, (Polygon, MultiPolygon)):
        return geometry

    if isinstance(geometry, GeometryCollection):
        extracted = []
        for geom in geometry.geoms:
            if target_type == 'line' and isinstance(geom, (LineString, MultiLineString)):
                extracted.extend(geom.geoms if isinstance(geom, MultiLineString) else [geom])
            elif target_type == 'polygon' and isinstance(geom, (Polygon, MultiPolygon)):
                extracted.extend(geom.geoms if isinstance(geom, MultiPolygon) else [geom])

        if not extracted:
            return None
        if len(extracted) == 1:
            return extracted[0]
        return MultiLineString(extracted) if target_type == 'line' else MultiPolygon(extracted)

    return None


def _align_crs(gdf: gpd.GeoDataFrame, target: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Reproject gdf to target's CRS when they differ."""
    if gdf.crs is not None and target.crs is not None and gdf.crs != target.crs:
        return gdf.to_crs(target.crs)
    return gdf


def repair_geometries(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Repair invalid geometries with make_valid, keeping the original type where possible."""
    invalid_mask = ~gdf.is_valid & gdf.geometry.notna()
    if not invalid_mask.any():
        return gdf

    logger.debug(f"    Repairing {int(invalid_mask.sum())} invalid geometries...")
    geometry_type = get_geometry_type(gdf)
    gdf = gdf.copy()

    def safe_repair(geom):
        repaired = make_valid(geom)
        if isinstance(repaired, GeometryCollection) and geometry_type in ('line', 'polygon'):
            repaired = extract_geometry_type(repaired, geometry_type)
        return repaired if repaired is not None and not repaired.is_empty else geom

    gdf.loc[invalid_mask, gdf.geometry.name] = gdf.loc[invalid_mask, gdf.geometry.name].apply(safe_repair)
    return gdf


def select_by_location(
    target: gpd.GeoDataFrame,
    source: gpd.GeoDataFrame
) -> pd.Series:
    """
    Select target features that intersect any source feature.

    Returns:
        Boolean Series aligned with target's index
    """
    if target.empty or source.empty:
        return pd.Series(False, index=target.index)

    source = _align_crs(source, target)
    boundary = source.geometry.union_all()
    return target.geometry.intersects(boundary)


def clip_features(
    gdf: gpd.GeoDataFrame,
    clip_gdf: gpd.GeoDataFrame
) -> gpd.GeoDataFrame:
    """
    Clip features to the outline of clip_gdf.

    Collections produced by clipping are reduced to the input's geometry type
    and features left empty are dropped.
    """
    if gdf.empty:
        return gdf.copy()

    geometry_type = get_geometry_type(gdf)
    clip_gdf = _align_crs(clip_gdf, gdf)
    clipped = gpd.clip(repair_geometries(gdf), clip_gdf.geometry.union_all())

    if clipped.empty:
        return clipped

    gc_mask = clipped.geometry.apply(lambda g: isinstance(g, GeometryCollection))
    if gc_mask.any() and geometry_type in ('line', 'polygon'):
        clipped = clipped.copy()
        clipped.loc[gc_mask, clipped.geometry.name] = clipped.loc[gc_mask, clipped.geometry.name].apply(
            lambda g: extract_geometry_type(g, geometry_type)
        )

    empty_mask = clipped.geometry.isna() | clipped.geometry.is_empty
    if empty_mask.any():
        logger.debug(f"    Removed {int(empty_mask.sum())} features with empty geometries after clipping")
        clipped = clipped[~empty_mask]

    return clipped


def intersect_features(
    gdf: gpd.GeoDataFrame,
    other: gpd.GeoDataFrame
) -> gpd.GeoDataFrame:
    """Intersect two layers keeping the attributes of both."""
    other = _align_crs(other, gdf)
    return gpd.overlay(repair_geometries(gdf), repair_geometries(other), how='intersection', keep_geom_type=True)


def create_map_output(
    layer_gdf: gpd.GeoDataFrame,
    buffer_gdf: gpd.GeoDataFrame,
    output_type: str
) -> gpd.GeoDataFrame:
    """
    Produce the map output for a layer's selected features.

    Output types:
    - CLIP: clip polygon layers by a polygon buffer and line layers by a
      line or polygon buffer, otherwise copy
    - OVERLAY: clip the buffer by the layer for polygon buffer/polygon layer
      and line buffer/line or polygon layer, otherwise copy the buffer
      features that intersect the layer
    - INTERSECT: intersect polygon/polygon and line/line, otherwise copy
    - COPY: copy the selected features

    Args:
        layer_gdf: Selected features of the map layer
        buffer_gdf: Search buffer
        output_type: One of COPY, CLIP, OVERLAY, INTERSECT

    Returns:
        GeoDataFrame in the layer's CRS (may be empty)

    Raises:
        ValueError: If either input has no recognisable geometry type
    """
    layer_type = get_geometry_type(layer_gdf)
    buffer_type = get_geometry_type(buffer_gdf)
    if layer_type is None or buffer_type is None:
        raise ValueError("Cannot determine feature class type for map output")

    if output_type == OUTPUT_CLIP:
        if (layer_type == 'polygon' and buffer_type == 'polygon') or \
                (layer_type == 'line' and buffer_type in ('line', 'polygon')):
            logger.info("Clipping selected features ...")
            return clip_features(layer_gdf, buffer_gdf)

    elif output_type == OUTPUT_OVERLAY:
        if (buffer_type == 'polygon' and layer_type == 'polygon') or \
                (buffer_type == 'line' and layer_type in ('line', 'polygon')):
            logger.info("Overlaying selected features ...")
            return clip_features(_align_crs(buffer_gdf, layer_gdf), layer_gdf)

        logger.info("Selecting features  ...")
        aligned = _align_crs(buffer_gdf, layer_gdf)
        selected = aligned[select_by_location(aligned, layer_gdf)]
        if selected.empty:
            logger.info("No features selected")
        else:
            logger.info(f"{len(selected):,} feature(s) found")
            logger.info("Copying selected features ... ")
        return selected.copy()

    elif output_type == OUTPUT_INTERSECT:
        if (layer_type == 'polygon' and buffer_type == 'polygon') or \
                (layer_type == 'line' and buffer_type == 'line'):
            logger.info("Intersecting selected features ...")
            return intersect_features(layer_gdf, buffer_gdf)

    logger.info("Copying selected features ...")
    return layer_gdf.copy()
