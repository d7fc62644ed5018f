"""Tests for the scratch workspace, database lookup and macro launcher."""

import sqlite3
import sys

import pandas as pd

from config.config_loader import load_config
from core.database import lookup_search_ref
from core.scratch import SCRATCH_FOLDER_NAME, ScratchWorkspace, get_user_id
from tests.conftest import search_sites, write_profile
from utils.macro_runner import build_macro_command, run_macro

DATABASE_SETTINGS = {
    'DatabasePath': 'enquiries.sqlite',
    'DatabaseTable': 'Enquiries',
    'DatabaseRefColumn': 'EnquiryRef',
    'DatabaseSiteColumn': 'SiteName',
    'DatabaseOrgColumn': 'Organisation',
}


def test_scratch_workspace(tmp_path):
    scratch = ScratchWorkspace('tester', tmp_path / 'scratch')
    scratch.prepare()

    assert scratch.master_name == 'TempMaster_tester'
    assert scratch.table_name == 'TempOutput_testerDBF'

    scratch.write_layer(scratch.master_name, search_sites())
    scratch.write_table(scratch.table_name, pd.DataFrame({'a': [1, 2]}))
    assert len(scratch.read_layer(scratch.master_name)) == 3
    assert list(scratch.read_table(scratch.table_name)['a']) == [1, 2]

    scratch.prepare()
    assert scratch.read_layer(scratch.master_name) is None
    assert scratch.read_table(scratch.table_name) is None


def test_scratch_default_folder():
    scratch = ScratchWorkspace(get_user_id())
    assert scratch.folder.name == SCRATCH_FOLDER_NAME
    assert get_user_id()


def test_lookup_sqlite(tmp_path):
    connection = sqlite3.connect(tmp_path / 'enquiries.sqlite')
    connection.execute('CREATE TABLE Enquiries (EnquiryRef TEXT, SiteName TEXT, Organisation TEXT)')
    connection.execute("INSERT INTO Enquiries VALUES ('DS-001', 'Old Farm', 'Acme Ecology')")
    connection.commit()
    connection.close()

    config = load_config(write_profile(tmp_path, settings=DATABASE_SETTINGS))
    assert lookup_search_ref(config, 'ds-001') == ('Old Farm', 'Acme Ecology')
    assert lookup_search_ref(config, 'DS-999') is None


def test_lookup_csv_without_organisation(tmp_path):
    pd.DataFrame({'EnquiryRef': ['DS-001'], 'SiteName': ['Old Farm']}).to_csv(
        tmp_path / 'enquiries.csv', index=False)

    settings = dict(DATABASE_SETTINGS, DatabasePath='enquiries.csv', DatabaseOrgColumn='')
    config = load_config(write_profile(tmp_path, settings=settings))
    assert lookup_search_ref(config, 'DS-001') == ('Old Farm', None)


def test_lookup_without_database(tmp_path, config):
    assert lookup_search_ref(config, 'DS-001') is None

    missing = load_config(write_profile(tmp_path, settings=DATABASE_SETTINGS))
    assert lookup_search_ref(missing, 'DS-001') is None


def test_build_macro_command(tmp_path):
    command = build_macro_command('convert.py', tmp_path, 'SSSI_001', 'CSV')
    assert command == [sys.executable, 'convert.py', str(tmp_path), 'SSSI_001.csv', 'SSSI_001.xlsx']
    assert build_macro_command('convert.exe', tmp_path, 'T', 'txt')[0] == 'convert.exe'


def test_run_macro(tmp_path):
    macro = tmp_path / 'macros' / 'mark.py'
    macro.parent.mkdir()
    macro.write_text(
        'import sys\n'
        'from pathlib import Path\n'
        'Path(sys.argv[1], "done.txt").write_text(sys.argv[2])\n'
    )
    output = tmp_path / 'out'
    output.mkdir()

    assert run_macro(str(macro), output, 'SSSI_001', 'csv')
    assert (output / 'done.txt').read_text() == 'SSSI_001.csv'

    failing = tmp_path / 'macros' / 'fail.py'
    failing.write_text('raise SystemExit(3)\n')
    assert not run_macro(str(failing), output, 'SSSI_001', 'csv')
    assert not run_macro(str(tmp_path / 'missing.exe'), output, 'T', 'csv')
