"""End-to-end tests for running a data search against the sample workspace."""

import pytest

from config.config_loader import load_config
from core.map_session import load_map_document
from core.options import AddSelectedLayersOptions, CombinedSitesTableOptions, OverwriteLabelOptions
from core.search_runner import DataSearch, SearchParameters
from tests.conftest import SSSI_LAYER, WOODLAND_LAYER, write_profile


def _params(config, search_ref='DS-001', **overrides):
    values = dict(
        search_ref=search_ref,
        selected_layers=list(config['layers']),
        buffer_size='1',
        buffer_unit_index=1,
        add_selected_layers=AddSelectedLayersOptions.WITH_LABELS,
        overwrite_labels=OverwriteLabelOptions.DO_NOT_RESET,
        combined_sites_table=CombinedSitesTableOptions.OVERWRITE,
        clear_log_file=True,
    )
    values.update(overrides)
    return SearchParameters(**values)


@pytest.fixture
def search(config, session, tmp_path):
    return DataSearch(config, session, scratch_folder=tmp_path / 'scratch')


@pytest.fixture
def output_folder(workspace):
    return workspace / 'searches' / '001' / 'GIS'


def _lines(path):
    return path.read_text().splitlines()


def test_search_completes(search, config, session, workspace, output_folder):
    assert search.run(_params(config))
    assert search.last_message == "Search 'DS-001' complete!"
    assert search.output_folder == output_folder
    assert not search.running

    assert _lines(output_folder / 'SSSI_001.csv') == [
        'SSSI_NAME,SSSI_AREA,Label',
        'Alpha Meadow,10,1',
        'Beta Marsh,20,2',
    ]
    assert _lines(output_folder / 'AncientWoodland_001.csv') == [
        'NAME,THEMNAME,Distance,Radius',
        'Oak Wood,Ancient,500,1km',
    ]
    assert _lines(output_folder / '001_Sites.csv') == [
        'Site_Type,Site_Name,Site_Area,Map_Label',
        'SSSI,Alpha Meadow,4.0,1',
        'SSSI,Beta Marsh,4.0,2',
    ]
    assert search.outputs == [output_folder / 'SSSI_001.csv', output_folder / 'AncientWoodland_001.csv']

    for name in ('Search_001', 'Buffer_001_1km', 'SSSI_001', 'AncientWoodland_001'):
        assert (output_folder / f'{name}.shp').exists()

    log = (output_folder / 'DataSearch_001.log').read_text()
    assert "Processing search 'DS-001'" in log
    assert "Search 'DS-001' complete!" in log

    assert (workspace / 'map.html').exists()


def test_search_updates_map(search, config, session):
    search.run(_params(config))

    group = [layer.name for layer in session.layers if layer.group == 'Search_001']
    assert group == ['Search_001', 'Buffer_001_1km', 'SSSI_001', 'AncientWoodland_001']
    assert session.group_layers[0] == 'Search_001'

    sssi = session.find_layer('SSSI_001')
    assert sssi.style['color'] == '#2e7d32'
    assert sorted(sssi.gdf['Label']) == [1, 2]

    woodland = session.find_layer('AncientWoodland_001')
    assert list(woodland.gdf['Label']) == [3]
    assert woodland.label_column == 'Label'
    assert woodland.label_style['color'] == '#006400'

    assert session.find_layer('Buffer_001_1km').style['color'] == '#ff0000'
    assert session.selection_count('SSSI') == 0
    assert session.find_layer('Enquiry_Sites_point').selection is None
    assert session.extent is not None


def test_search_without_adding_layers(workspace, session, output_folder, tmp_path):
    sssi = dict(SSSI_LAYER, Columns='SSSI_NAME,SSSI_AREA', GroupColumns='SSSI_NAME')
    config = load_config(write_profile(workspace, layers={'Designations_-_SSSI': sssi}))
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert search.run(_params(config, add_selected_layers=AddSelectedLayersOptions.NO,
                              combined_sites_table=CombinedSitesTableOptions.NONE))
    assert _lines(output_folder / 'SSSI_001.csv')[1:] == ['Alpha Meadow,10', 'Beta Marsh,20']

    assert session.find_layer('SSSI_001') is None
    assert session.find_layer('Buffer_001_1km') is None
    assert (output_folder / 'SSSI_001.shp').exists()
    assert not (output_folder / '001_Sites.csv').exists()


def test_search_reference_not_found(search, config):
    assert not search.run(_params(config, search_ref='DS-999'))
    assert search.last_message == "Search 'DS-999' aborted with errors!"


def test_multiple_features_need_confirmation(config, session, tmp_path):
    questions = []

    def decline(question):
        questions.append(question)
        return False

    search = DataSearch(config, session, confirm=decline, scratch_folder=tmp_path / 'scratch')
    assert not search.run(_params(config, search_ref='DS-002'))
    assert questions == ["2 features found in Enquiry_Sites_point matching those criteria. "
                         "Do you wish to continue?"]
    assert search.last_message == "Search 'DS-002' aborted with errors!"

    search = DataSearch(config, session, confirm=lambda question: True, scratch_folder=tmp_path / 'scratch')
    assert search.run(_params(config, search_ref='DS-002'))
    assert search.last_message == "Search 'DS-002' complete!"


def test_search_cancelled_between_layers(config, session, tmp_path):
    search = None

    def progress(text, step, max_steps):
        if text and text.startswith('Processing'):
            search.cancel()

    search = DataSearch(config, session, progress=progress, scratch_folder=tmp_path / 'scratch')
    assert not search.run(_params(config))
    assert search.last_message == "Search 'DS-001' cancelled!"
    assert search.outputs == [search.output_folder / 'SSSI_001.csv']


def test_progress_reports(config, session, tmp_path):
    updates = []
    search = DataSearch(config, session, progress=lambda *args: updates.append(args),
                        scratch_folder=tmp_path / 'scratch')
    search.run(_params(config))

    texts = [text for text, _, _ in updates]
    assert texts[:2] == ['Selecting feature(s)...', 'Buffering feature(s)...']
    assert "Processing 'Designations - SSSI'..." in texts
    assert texts[-1] is None


def test_zero_buffer_and_discarded_buffer(workspace, session, tmp_path):
    config = load_config(write_profile(workspace, settings={'KeepBufferArea': 'No'}))
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert search.run(_params(config, buffer_size='0', buffer_unit_index=0))
    output_folder = workspace / 'searches' / '001' / 'GIS'
    assert not (output_folder / 'Buffer_001_0m.shp').exists()
    assert session.find_layer('Buffer_001_0m') is None
    assert _lines(output_folder / 'SSSI_001.csv') == ['SSSI_NAME,SSSI_AREA,Label', 'Alpha Meadow,10,1']


def test_layer_macro_runs_after_export(workspace, session, tmp_path):
    macros = workspace / 'macros'
    macros.mkdir()
    (macros / 'mark.py').write_text(
        'import sys\n'
        'from pathlib import Path\n'
        'Path(sys.argv[1], "macro.txt").write_text(sys.argv[2])\n'
    )
    layers = {
        'Designations_-_SSSI': dict(SSSI_LAYER, MacroName='macros/mark.py'),
        'Habitats_-_Ancient_Woodland': WOODLAND_LAYER,
    }
    config = load_config(write_profile(workspace, layers=layers))
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert search.run(_params(config))
    assert (search.output_folder / 'macro.txt').read_text() == 'SSSI_001.csv'


def test_missing_map_layer_aborts(config, tmp_path, workspace):
    session = load_map_document(workspace / 'map_document.json')
    session.remove_layer('Ancient Woodland')
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert not search.run(_params(config))
    assert search.last_message == "Search 'DS-001' aborted with errors!"
    assert "Layer 'Ancient Woodland' not found in map" in search.log_file.read_text()


def test_failed_search_removes_temporary_layers(config, tmp_path, workspace):
    session = load_map_document(workspace / 'map_document.json')
    session.remove_layer('Ancient Woodland')
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert not search.run(_params(config))
    assert 'Buffer_001_1km' not in session.layer_names()
    assert 'Search_001' not in session.layer_names()
    assert session.find_layer('Enquiry_Sites_point').selection is None
    assert session.selection_count('SSSI') == 0
    assert list((tmp_path / 'scratch').iterdir()) == []
    assert session.tables == []
    assert (search.output_folder / 'Buffer_001_1km.shp').exists()


def test_failed_search_deletes_discarded_buffer(workspace, tmp_path):
    config = load_config(write_profile(workspace, settings={'KeepBufferArea': 'No'}))
    session = load_map_document(workspace / 'map_document.json')
    session.remove_layer('Ancient Woodland')
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')

    assert not search.run(_params(config))
    assert not (search.output_folder / 'Buffer_001_1km.shp').exists()
    assert (search.output_folder / 'Search_001.shp').exists()


def test_next_search_after_failure_has_no_stale_layers(config, tmp_path, workspace):
    session = load_map_document(workspace / 'map_document.json')
    woodland = session.find_layer('Ancient Woodland')
    session.remove_layer('Ancient Woodland')
    search = DataSearch(config, session, scratch_folder=tmp_path / 'scratch')
    assert not search.run(_params(config))

    session.add_layer(woodland.name, woodland.gdf, source=woodland.source, position=-1)
    assert search.run(_params(config, search_ref='DS-002'))
    assert not [name for name in session.layer_names() if name.startswith('Buffer_001')]
    assert 'Buffer_002_1km' in session.layer_names()


def test_summary_table_shown_while_searching(search, config, session):
    tables = []

    def progress(text, step, max_steps):
        if text == "Processing 'Habitats - Ancient Woodland'...":
            tables.extend((table.name, list(table.df['SSSI_NAME'])) for table in session.tables)

    search.progress = progress
    assert search.run(_params(config))
    assert tables == [(search.scratch.table_name, ['Alpha Meadow', 'Beta Marsh'])]
    assert session.tables == []
