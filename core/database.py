"""
Search reference lookup.

Finds the site name and organisation recorded against a search reference in
the enquiries database named by the profile. The database is an SQLite file,
or a CSV / XLSX table exported from one.
"""

import sqlite3
from pathlib import Path
from typing import Dict, Optional, Tuple

import pandas as pd

from config.config_loader import resolve_path
from utils.logger import get_logger

logger = get_logger(__name__)

SQLITE_EXTENSIONS = ('.db', '.sqlite', '.sqlite3', '.gpkg')


def _lookup_sqlite(path: Path, settings: Dict, search_ref: str) -> Optional[Tuple]:
    columns = settings['database_site_column']
    if settings.get('database_org_column'):
        columns += f", {settings['database_org_column']}"

    query = (
        f"SELECT {columns} FROM {settings['database_table']} "
        f"WHERE LOWER({settings['database_ref_column']}) = ?"
    )

    connection = sqlite3.connect(path)
    try:
        cursor = connection.cursor()
        cursor.execute(query, (search_ref.lower(),))
        return cursor.fetchone()
    finally:
        connection.close()


def _lookup_table(path: Path, settings: Dict, search_ref: str) -> Optional[Tuple]:
    if path.suffix.lower() == '.xlsx':
        df = pd.read_excel(path, sheet_name=settings['database_table'] or 0, dtype=str)
    else:
        df = pd.read_csv(path, dtype=str)

    matches = df[df[settings['database_ref_column']].str.lower() == search_ref.lower()]
    if matches.empty:
        return None

    row = matches.iloc[0]
    values = [row[settings['database_site_column']]]
    if settings.get('database_org_column'):
        values.append(row[settings['database_org_column']])
    return tuple(None if pd.isna(v) else v for v in values)


def lookup_search_ref(config: Dict, search_ref: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
    """
    Look up the site name and organisation for a search reference.

    Args:
        config: Loaded profile (database_path, database_table and the
            database column settings)
        search_ref: Search reference, matched case-insensitively

    Returns:
        Tuple of (site_name, organisation), or None when there is no
        database, the reference isn't found or the lookup fails
    """
    settings = config['settings']
    if not settings.get('database_path') or not search_ref:
        return None

    path = resolve_path(config, settings['database_path'])
    if not path.exists():
        logger.warning(f"Database not found: {path}")
        return None

    try:
        if path.suffix.lower() in SQLITE_EXTENSIONS:
            row = _lookup_sqlite(path, settings, search_ref)
        else:
            row = _lookup_table(path, settings, search_ref)
    except (sqlite3.Error, KeyError, ValueError, OSError) as e:
        logger.error(f"Failed to retrieve the required data from the database: {e}")
        return None

    if row is None:
        return None

    site_name = row[0]
    organisation = row[1] if len(row) > 1 else None
    return site_name, organisation
