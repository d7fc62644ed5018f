"""Tests for the XML profile loader."""

import pytest

from config.config_loader import (
    ConfigError, default_profile, find_profiles, load_config, parse_buffer_units, resolve_path
)
from tests.conftest import SSSI_LAYER, write_profile


def test_load_settings(profile):
    config = load_config(profile)
    settings = config['settings']

    assert config['profile'] == str(profile)
    assert settings['rep_char'] == '_'
    assert settings['require_site_name'] is False
    assert settings['default_buffer_size'] == 1
    assert settings['default_buffer_unit'] == 2
    assert settings['buffer_units'][1] == {'display': 'Kilometres', 'process': 'Kilometers', 'short': 'km'}
    assert settings['search_layer_extensions'] == ['_point', '_poly']
    assert settings['add_selected_layers_options'] == ['No', 'Yes - Without labels', 'Yes - With labels']
    assert settings['combined_sites_table_name'] == '%subref%_Sites'
    assert settings['map_document'] == 'map_document.json'
    assert settings['database_table'] is None


def test_load_map_layers(config):
    sssi, woodland = config['layers']

    assert sssi['node_name'] == 'Designations - SSSI'
    assert sssi['node_group'] == 'Designations'
    assert sssi['node_layer'] == 'SSSI'
    assert sssi['output_type'] == 'CLIP'
    assert sssi['include_near_fields'] == 'BOUNDARY'
    assert sssi['include_distance'] is True
    assert sssi['group_columns'] == 'SSSI_NAME;Label'
    assert sssi['combined_sites_columns'] == '"SSSI",SSSI_NAME,Area,Label'

    assert woodland['output_type'] == 'COPY'
    assert woodland['layer_file_name'] is None
    assert woodland['combined_sites_columns'] is None
    assert woodland['combined_sites_group_columns'] is None


def test_layer_without_group(tmp_path):
    layer = dict(SSSI_LAYER, OutputType='Buffer', IncludeNearFields='No')
    config = load_config(write_profile(tmp_path, layers={'Local_Sites': layer}))

    local = config['layers'][0]
    assert local['node_name'] == 'Local Sites'
    assert local['node_group'] is None
    assert local['output_type'] == 'COPY'
    assert local['include_distance'] is False


def test_missing_mandatory_node(tmp_path):
    with pytest.raises(ConfigError, match="SearchColumn"):
        load_config(write_profile(tmp_path, settings={'SearchColumn': None}))


def test_missing_layer_node_names_layer(tmp_path):
    layer = dict(SSSI_LAYER)
    del layer['KeyColumn']
    with pytest.raises(ConfigError, match="KeyColumn.*Designations - SSSI"):
        load_config(write_profile(tmp_path, layers={'Designations_-_SSSI': layer}))


def test_database_columns_required_with_database(tmp_path):
    with pytest.raises(ConfigError, match="DatabaseTable"):
        load_config(write_profile(tmp_path, settings={'DatabasePath': 'enquiries.sqlite'}))


def test_bad_number(tmp_path):
    with pytest.raises(ConfigError, match="DefaultBufferSize"):
        load_config(write_profile(tmp_path, settings={'DefaultBufferSize': 'ten'}))


def test_optional_defaults(tmp_path):
    config = load_config(write_profile(tmp_path, settings={
        'DefaultBufferUnit': None,
        'DefaultAddSelectedLayers': None,
        'PauseMap': None,
        'MapDocument': None,
    }))
    settings = config['settings']
    assert settings['default_buffer_unit'] == -1
    assert settings['default_add_selected_layers'] == -1
    assert settings['pause_map'] is False
    assert settings['map_document'] is None


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'missing.xml')


def test_invalid_xml(tmp_path):
    path = tmp_path / 'broken.xml'
    path.write_text('<configuration><DataSearches>')
    with pytest.raises(ConfigError):
        load_config(path)


def test_parse_buffer_units_malformed():
    with pytest.raises(ConfigError):
        parse_buffer_units('Metres;Meters$Kilometres;Kilometers;km')


def test_profile_discovery(tmp_path):
    write_profile(tmp_path)
    (tmp_path / 'Other.xml').write_text('<configuration/>')

    assert [p.name for p in find_profiles(tmp_path)] == ['DataSearches.xml', 'Other.xml']
    assert default_profile(tmp_path).name == 'DataSearches.xml'
    assert default_profile(tmp_path / 'nowhere') is None


def test_resolve_path(config, workspace):
    assert resolve_path(config, 'layers') == workspace / 'layers'
    assert resolve_path(config, workspace / 'data') == workspace / 'data'
    assert resolve_path(config, '') is None
