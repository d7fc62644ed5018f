"""Shared fixtures: a small British National Grid dataset, a profile and a map document."""

import json
import xml.etree.ElementTree as ET
from pathlib import Path

import geopandas as gpd
import pytest
from shapely.geometry import Point, box

CRS = 'EPSG:27700'
SEARCH_X, SEARCH_Y = 450000, 100000

DEFAULT_SETTINGS = {
    'DatabasePath': '',
    'RequireSiteName': 'No',
    'RequireOrganisation': 'No',
    'RepChar': '_',
    'LayerFolder': 'layers',
    'SaveRootDir': 'searches',
    'SaveFolder': '%subref%',
    'GISFolder': 'GIS',
    'LogFileName': 'DataSearch_%subref%.log',
    'PauseMap': 'No',
    'DefaultClearLogFile': 'Yes',
    'DefaultOpenLogFile': 'No',
    'DefaultBufferSize': '1',
    'BufferUnitOptions': 'Metres;Meters;m$Kilometres;Kilometers;km',
    'DefaultBufferUnit': '2',
    'UpdateTable': 'No',
    'KeepBufferArea': 'Yes',
    'BufferPrefix': 'Buffer_%subref%',
    'BufferLayerFile': 'Buffer.json',
    'SearchLayer': 'Enquiry_Sites',
    'SearchLayerExtensions': '_point;_poly',
    'SearchColumn': 'ref',
    'SiteColumn': 'sitename',
    'OrgColumn': 'organisation',
    'RadiusColumn': 'radius',
    'KeepSearchFeature': 'Yes',
    'SearchOutputName': 'Search_%subref%',
    'SearchSymbologyBase': 'Search',
    'AggregateColumns': 'ref',
    'AddSelectedLayersOptions': 'No;Yes - Without labels;Yes - With labels',
    'DefaultAddSelectedLayers': '3',
    'GroupLayerName': 'Search_%subref%',
    'OverwriteLabelOptions': 'No;Yes - Reset each layer;Yes - Reset each group;Yes - Do not reset',
    'DefaultOverwriteLabels': '4',
    'AreaMeasurementUnit': 'Ha',
    'CombinedSitesTableOptions': 'None;Append;Overwrite',
    'DefaultCombinedSitesTable': '3',
    'CombinedSitesTable': {
        'Name': '%subref%_Sites',
        'Columns': 'Site_Type,Site_Name,Site_Area,Map_Label',
        'Format': 'csv',
    },
    'MapDocument': 'map_document.json',
}

SSSI_LAYER = {
    'LayerName': 'SSSI',
    'GISOutputName': 'SSSI_%subref%',
    'TableOutputName': 'SSSI_%subref%',
    'Columns': 'SSSI_NAME,SSSI_AREA,Label',
    'GroupColumns': 'SSSI_NAME;Label',
    'StatisticsColumns': 'SSSI_AREA SUM',
    'OrderColumns': 'Label',
    'Criteria': '',
    'IncludeArea': 'Yes',
    'IncludeNearFields': 'Boundary',
    'IncludeRadius': 'Yes',
    'KeyColumn': 'SSSI_NAME',
    'Format': 'Csv',
    'KeepLayer': 'Yes',
    'OutputType': 'Clip',
    'LoadWarning': 'Yes',
    'PreselectLayer': 'Yes',
    'DisplayLabels': 'Yes',
    'LayerFileName': 'SSSI.json',
    'OverwriteLabels': 'Yes',
    'LabelColumn': 'Label',
    'LabelClause': '',
    'MacroName': '',
    'CombinedSitesColumns': '"SSSI",SSSI_NAME,Area,Label',
    'CombinedSitesGroupColumns': 'SSSI_NAME;Label',
    'CombinedSitesStatisticsColumns': 'Area SUM',
    'CombinedSitesOrderByColumns': 'Label',
}

WOODLAND_LAYER = {
    'LayerName': 'Ancient Woodland',
    'GISOutputName': 'AncientWoodland_%subref%',
    'TableOutputName': 'AncientWoodland_%subref%',
    'Columns': 'NAME,THEMNAME,Distance,Radius',
    'GroupColumns': 'NAME;THEMNAME',
    'StatisticsColumns': 'Distance MIN',
    'OrderColumns': 'Distance',
    'Criteria': "THEMNAME <> 'Replanted'",
    'IncludeArea': 'No',
    'IncludeNearFields': 'Centroid',
    'IncludeRadius': 'Yes',
    'KeyColumn': 'NAME',
    'Format': 'Csv',
    'KeepLayer': 'Yes',
    'OutputType': 'Copy',
    'LoadWarning': 'Yes',
    'PreselectLayer': 'Yes',
    'DisplayLabels': 'Yes',
    'LayerFileName': '',
    'OverwriteLabels': 'No',
    'LabelColumn': 'Label',
    'LabelClause': 'Font:Arial$Size:10$Red:0$Green:100$Blue:0$Overlap:Allow',
    'MacroName': '',
    'CombinedSitesColumns': '',
}


def _add_nodes(parent: ET.Element, values: dict) -> None:
    for name, value in values.items():
        if value is None:
            continue
        node = ET.SubElement(parent, name)
        if isinstance(value, dict):
            _add_nodes(node, value)
        else:
            node.text = value


def write_profile(folder: Path, settings: dict = None, layers: dict = None) -> Path:
    """
    Write an XML profile to folder/DataSearches.xml.

    settings override DEFAULT_SETTINGS (None removes a node); layers maps
    element names to MapLayer nodes.
    """
    values = dict(DEFAULT_SETTINGS)
    values.update(settings or {})
    if layers is None:
        layers = {'Designations_-_SSSI': SSSI_LAYER, 'Habitats_-_Ancient_Woodland': WOODLAND_LAYER}

    root = ET.Element('configuration')
    node = ET.SubElement(root, 'DataSearches')
    _add_nodes(node, values)
    map_layers = ET.SubElement(node, 'MapLayers')
    _add_nodes(map_layers, layers)

    path = Path(folder) / 'DataSearches.xml'
    ET.ElementTree(root).write(path, encoding='utf-8', xml_declaration=True)
    return path


def search_sites() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            'ref': ['DS-001', 'DS-002', 'DS-002'],
            'sitename': ['Old Farm', 'Mill Lane', 'Mill Lane'],
            'organisation': ['', '', ''],
            'radius': ['', '', ''],
        },
        geometry=[Point(SEARCH_X, SEARCH_Y), Point(SEARCH_X + 20000, SEARCH_Y),
                  Point(SEARCH_X + 20100, SEARCH_Y)],
        crs=CRS
    )


def sssi_polygons() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            'SSSI_NAME': ['Beta Marsh', 'Alpha Meadow', 'Gamma Fen'],
            'SSSI_AREA': [20, 10, 30],
        },
        geometry=[
            box(SEARCH_X + 500, SEARCH_Y, SEARCH_X + 700, SEARCH_Y + 200),
            box(SEARCH_X - 100, SEARCH_Y - 100, SEARCH_X + 100, SEARCH_Y + 100),
            box(SEARCH_X + 5000, SEARCH_Y, SEARCH_X + 5200, SEARCH_Y + 200),
        ],
        crs=CRS
    )


def woodland_polygons() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            'NAME': ['Oak Wood', 'Pine Plantation'],
            'THEMNAME': ['Ancient', 'Replanted'],
        },
        geometry=[
            box(SEARCH_X - 700, SEARCH_Y - 200, SEARCH_X - 500, SEARCH_Y),
            box(SEARCH_X, SEARCH_Y - 700, SEARCH_X + 200, SEARCH_Y - 500),
        ],
        crs=CRS
    )


@pytest.fixture
def workspace(tmp_path):
    """A profile folder with data, symbology and a map document."""
    data = tmp_path / 'data'
    data.mkdir()
    search_sites().to_file(data / 'enquiry_sites.gpkg', driver='GPKG')
    sssi_polygons().to_file(data / 'sssi.gpkg', driver='GPKG')
    woodland_polygons().to_file(data / 'woodland.gpkg', driver='GPKG')

    layers = tmp_path / 'layers'
    layers.mkdir()
    (layers / 'SSSI.json').write_text(json.dumps({'color': '#2e7d32', 'fillOpacity': 0.4}))
    (layers / 'Buffer.json').write_text(json.dumps({'color': '#ff0000', 'fillOpacity': 0}))

    document = {
        'name': 'Test Searches',
        'output': 'map.html',
        'layers': [
            {'name': 'Enquiry_Sites_point', 'path': 'data/enquiry_sites.gpkg'},
            {'name': 'SSSI', 'path': 'data/sssi.gpkg', 'group': 'Designations'},
            {'name': 'Ancient Woodland', 'path': 'data/woodland.gpkg', 'group': 'Habitats'},
        ],
    }
    (tmp_path / 'map_document.json').write_text(json.dumps(document))
    return tmp_path


@pytest.fixture
def profile(workspace):
    return write_profile(workspace)


@pytest.fixture
def config(profile):
    from config.config_loader import load_config
    return load_config(profile)


@pytest.fixture
def session(workspace):
    from core.map_session import load_map_document
    return load_map_document(workspace / 'map_document.json')
