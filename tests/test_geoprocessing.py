"""Tests for buffering, selection by location and map outputs."""

import geopandas as gpd
import pytest
from pyproj import CRS as ProjCRS
from shapely.geometry import LineString, Point, box

from geometry_input.buffering import buffer_features, distance_to_meters, select_projected_crs
from geometry_input.clipping import create_map_output, get_geometry_type, select_by_location
from geometry_input.load_input import load_layer_file
from tests.conftest import CRS, SEARCH_X, SEARCH_Y, search_sites, sssi_polygons


def test_distance_to_meters():
    assert distance_to_meters(2, 'Kilometers') == 2000
    assert distance_to_meters(1, 'miles') == pytest.approx(1609.344)
    with pytest.raises(ValueError):
        distance_to_meters(1, 'Furlongs')
    with pytest.raises(ValueError):
        distance_to_meters(-1, 'Meters')


def test_select_projected_crs_for_geographic_data():
    crs = select_projected_crs(Point(-1.5, 52.0), ProjCRS.from_epsg(4326))
    assert crs.to_epsg() == 32630


def test_select_projected_crs_keeps_metric_grid():
    crs = select_projected_crs(Point(SEARCH_X, SEARCH_Y), ProjCRS.from_user_input(CRS))
    assert crs.to_epsg() == 27700


def test_select_projected_crs_replaces_feet_grid():
    crs = select_projected_crs(Point(987000, 200000), ProjCRS.from_epsg(2263))
    assert crs.to_epsg() == 32618


def test_buffer_features_dissolves_by_aggregate_column():
    sites = search_sites()
    buffered = buffer_features(sites, 1, 'Kilometers', ['ref', 'missing'])

    assert list(buffered['ref']) == ['DS-001', 'DS-002']
    assert buffered.crs == sites.crs
    area = buffered.iloc[0].geometry.area
    assert area == pytest.approx(3.14159 * 1000 ** 2, rel=0.01)


def test_buffer_features_zero_distance():
    sites = search_sites().iloc[[0]]
    buffered = buffer_features(sites, 0, 'Meters')
    assert len(buffered) == 1
    assert buffered.iloc[0].geometry.area == pytest.approx(3.14159 * 0.01 ** 2, rel=0.05)


def test_buffer_features_geographic_input_returns_source_crs():
    sites = search_sites().iloc[[0]].to_crs('EPSG:4326')
    buffered = buffer_features(sites, 500, 'Meters')
    assert buffered.crs.to_epsg() == 4326
    assert buffered.to_crs(CRS).iloc[0].geometry.area == pytest.approx(3.14159 * 500 ** 2, rel=0.02)


def test_buffer_features_feet_crs_buffers_in_metres():
    sites = gpd.GeoDataFrame(geometry=[Point(987000, 200000)], crs='EPSG:2263')
    buffered = buffer_features(sites, 100, 'Meters')

    assert buffered.crs.to_epsg() == 2263
    minx, _, maxx, _ = buffered.total_bounds
    assert (maxx - minx) / 2 == pytest.approx(100 / 0.3048, rel=0.01)


def test_buffer_features_requires_crs():
    with pytest.raises(ValueError):
        buffer_features(gpd.GeoDataFrame(geometry=[Point(0, 0)]), 1, 'Meters')


def test_select_by_location():
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers')
    mask = select_by_location(sssi_polygons(), buffered)
    assert list(mask) == [True, True, False]


def test_clip_polygons_to_buffer():
    buffered = buffer_features(search_sites().iloc[[0]], 50, 'Meters')
    output = create_map_output(sssi_polygons().iloc[[1]], buffered, 'CLIP')

    assert get_geometry_type(output) == 'polygon'
    assert output.iloc[0].geometry.area < 200 * 200
    assert output.iloc[0]['SSSI_NAME'] == 'Alpha Meadow'


def test_clip_points_are_copied():
    points = gpd.GeoDataFrame({'name': ['a']}, geometry=[Point(SEARCH_X, SEARCH_Y)], crs=CRS)
    buffered = buffer_features(points, 10, 'Meters')
    output = create_map_output(points, buffered, 'CLIP')
    assert output.geometry.iloc[0].equals(points.geometry.iloc[0])


def test_overlay_clips_buffer_by_layer():
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers', ['ref'])
    output = create_map_output(sssi_polygons().iloc[[1]], buffered, 'OVERLAY')

    assert list(output['ref']) == ['DS-001']
    assert output.iloc[0].geometry.area == pytest.approx(200 * 200)


def test_overlay_with_point_layer_copies_buffer():
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers', ['ref'])
    points = gpd.GeoDataFrame({'name': ['a']}, geometry=[Point(SEARCH_X, SEARCH_Y)], crs=CRS)
    output = create_map_output(points, buffered, 'OVERLAY')
    assert list(output['ref']) == ['DS-001']


def test_intersect_keeps_both_attributes():
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers', ['ref'])
    output = create_map_output(sssi_polygons().iloc[[0, 1]], buffered, 'INTERSECT')
    assert set(output.columns) >= {'SSSI_NAME', 'SSSI_AREA', 'ref'}
    assert len(output) == 2


def test_intersect_lines_with_polygon_buffer_copies():
    lines = gpd.GeoDataFrame(
        {'name': ['lane']},
        geometry=[LineString([(SEARCH_X - 2000, SEARCH_Y), (SEARCH_X + 2000, SEARCH_Y)])],
        crs=CRS
    )
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers')
    output = create_map_output(lines, buffered, 'INTERSECT')
    assert output.geometry.iloc[0].length == pytest.approx(4000)

    clipped = create_map_output(lines, buffered, 'CLIP')
    assert clipped.geometry.iloc[0].length == pytest.approx(2000, rel=0.01)


def test_create_map_output_empty_input():
    buffered = buffer_features(search_sites().iloc[[0]], 1, 'Kilometers')
    with pytest.raises(ValueError):
        create_map_output(sssi_polygons().iloc[[]], buffered, 'CLIP')


def test_load_layer_file(tmp_path):
    path = tmp_path / 'sites.gpkg'
    search_sites().to_file(path, driver='GPKG')

    assert len(load_layer_file(path)) == 3
    with pytest.raises(FileNotFoundError):
        load_layer_file(tmp_path / 'missing.gpkg')


def test_load_layer_file_without_crs(tmp_path):
    shp = tmp_path / 'nocrs.shp'
    gpd.GeoDataFrame({'a': [1]}, geometry=[box(0, 0, 1, 1)]).to_file(shp)
    with pytest.raises(ValueError, match="Coordinate Reference System"):
        load_layer_file(shp)
