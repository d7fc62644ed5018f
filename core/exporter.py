"""
Export module for Data Searches.

Turns the features a search found in one map layer into the layer's output
table: optional area, distance and radius columns are added, features are
summarised by the group columns when statistics are requested, and the
requested columns are written to a CSV, TXT or XLSX file.

Functions:
    add_area_column: Calculate polygon areas in the profile's unit
    add_distance_column: Distance from each feature to the search feature
    summary_statistics: Group-by statistics with ArcGIS-style field names
    write_table: Write selected columns to a text or Excel table
    write_empty_table: Start a table with just a header row
    export_selection: Full export of one layer's selected features
    keep_layer: Save features to a shapefile
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import geopandas as gpd
import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from pandas.api.types import is_numeric_dtype, is_object_dtype, is_string_dtype
from pyproj import CRS

from core.scratch import ScratchWorkspace
from geometry_input.buffering import select_projected_crs
from geometry_input.clipping import get_geometry_type
from utils.logger import get_logger
from utils.string_functions import split_columns

logger = get_logger(__name__)

AREA_UNITS = {
    'ha': ('HECTARES', 10_000.0),
    'm2': ('SQUARE_METERS', 1.0),
    'km2': ('SQUARE_KILOMETERS', 1_000_000.0),
}

TEXT_FORMATS = ('csv', 'txt')

STATISTIC_FUNCTIONS: Dict[str, Union[str, Callable]] = {
    'SUM': 'sum',
    'MEAN': 'mean',
    'MIN': 'min',
    'MAX': 'max',
    'RANGE': lambda s: s.max() - s.min(),
    'STD': 'std',
    'COUNT': 'count',
    'FIRST': 'first',
    'LAST': 'last',
    'MEDIAN': 'median',
    'VARIANCE': 'var',
    'UNIQUE': 'nunique',
}


def _find_column(df: pd.DataFrame, name: str) -> Optional[str]:
    for column in df.columns:
        if column.lower() == name.strip().lower():
            return column
    return None


def _as_table(df: pd.DataFrame) -> pd.DataFrame:
    """Drop the geometry column, if any."""
    if isinstance(df, gpd.GeoDataFrame):
        return pd.DataFrame(df.drop(columns=df.geometry.name))
    return df


def add_area_column(gdf: gpd.GeoDataFrame, area_unit: str) -> gpd.GeoDataFrame:
    """
    Add an 'Area' column to polygon features.

    Areas are measured in a projected CRS and converted to hectares (Ha),
    square metres (m2) or square kilometres (Km2).

    Raises:
        ValueError: If the unit is not recognised or the features have no CRS
    """
    unit = AREA_UNITS.get(area_unit.strip().lower())
    if unit is None:
        raise ValueError(f"Unknown area measurement unit: {area_unit}")
    if gdf.crs is None:
        raise ValueError("Cannot calculate areas without a Coordinate Reference System (CRS)")

    _, divisor = unit
    crs = CRS.from_user_input(gdf.crs)
    if not gdf.empty:
        crs = select_projected_crs(gdf.geometry.union_all(), crs)

    gdf = gdf.copy()
    column = _find_column(gdf, 'Area') or 'Area'
    gdf[column] = gdf.geometry.to_crs(crs).area / divisor
    return gdf


def add_distance_column(
    gdf: gpd.GeoDataFrame,
    search_gdf: gpd.GeoDataFrame,
    near_type: str = 'BOUNDARY'
) -> gpd.GeoDataFrame:
    """
    Add a 'Distance' column: the distance from each feature to the nearest search feature.

    BOUNDARY measures to the search feature itself (0 for features touching
    it); CENTROID measures to its centroid. Distances are in metres, measured
    in the same projected CRS used for buffering.

    Raises:
        ValueError: If the features have no CRS
    """
    gdf = gdf.drop(columns=[c for c in gdf.columns if c.lower() == 'distance'])
    if gdf.empty:
        gdf = gdf.copy()
        gdf['Distance'] = pd.Series(dtype='float64')
        return gdf
    if gdf.crs is None:
        raise ValueError("Cannot calculate distances without a Coordinate Reference System (CRS)")

    crs = select_projected_crs(gdf.geometry.union_all(), CRS.from_user_input(gdf.crs))
    features = gpd.GeoDataFrame(geometry=gdf.geometry.to_crs(crs), crs=crs)
    targets = search_gdf.to_crs(crs)
    if near_type == 'CENTROID':
        targets = gpd.GeoDataFrame(geometry=targets.geometry.centroid, crs=crs)
    else:
        targets = gpd.GeoDataFrame(geometry=targets.geometry, crs=crs)

    joined = gpd.sjoin_nearest(features, targets, how='left', distance_col='Distance')
    joined = joined[~joined.index.duplicated(keep='first')]

    gdf = gdf.copy()
    gdf['Distance'] = joined['Distance']
    return gdf


def parse_statistics(statistics: Optional[str]) -> List[Tuple[str, str]]:
    """
    Parse a statistics string into (column, statistic) pairs.

    Example:
        >>> parse_statistics('Count SUM;Year FIRST')
        [('Count', 'SUM'), ('Year', 'FIRST')]
    """
    pairs = []
    for entry in (statistics or '').split(';'):
        parts = entry.split()
        if len(parts) >= 2:
            pairs.append((parts[0], parts[1].upper()))
    return pairs


def summary_statistics(
    df: pd.DataFrame,
    statistics: str,
    case_fields: Optional[str] = None
) -> pd.DataFrame:
    """
    Summarise a table by case fields.

    The output has the case fields, a FREQUENCY column with the row count of
    each group, and one '<STAT>_<column>' column per statistic.

    Args:
        df: Input table or features
        statistics: 'column STAT' pairs separated by ';'
        case_fields: Group-by columns separated by ';'

    Raises:
        ValueError: If a statistic type is not supported
    """
    table = _as_table(df)
    stats = parse_statistics(statistics)
    for column, stat in stats:
        if stat not in STATISTIC_FUNCTIONS:
            raise ValueError(f"Unsupported statistic type '{stat}' for column {column}")
        if _find_column(table, column) is None:
            raise ValueError(f"Statistics column {column} not found")

    cases = [c for c in (_find_column(table, f) for f in split_columns(case_fields)) if c]

    # Without case fields everything falls in a single group
    keys = cases if cases else pd.Series(0, index=table.index, name='_all')
    grouped = table.groupby(keys, dropna=False, sort=True)
    result = grouped.size().rename('FREQUENCY').reset_index()
    if not cases:
        result = result.drop(columns='_all')

    for column, stat in stats:
        actual = _find_column(table, column)
        values = grouped[actual].agg(STATISTIC_FUNCTIONS[stat])
        result[f"{stat}_{column}"] = values.to_numpy()
    return result


def _resolve_column(df: pd.DataFrame, name: str) -> Optional[str]:
    """
    Find a requested output column, allowing for summarised names.

    'Year' matches a 'FIRST_Year' column when the table has no 'Year'.
    """
    column = _find_column(df, name)
    if column is not None:
        return column

    candidates = [
        c for c in df.columns
        if '_' in c and c.split('_', 1)[0].upper() in STATISTIC_FUNCTIONS
        and c.split('_', 1)[1].lower() == name.lower()
    ]
    return candidates[0] if len(candidates) == 1 else None


def _sort_key(series: pd.Series) -> pd.Series:
    if is_object_dtype(series) or is_string_dtype(series):
        return series.astype(str).str.lower()
    return series


def write_table(
    df: pd.DataFrame,
    output_file: Union[str, Path],
    output_format: str,
    columns: str,
    order_columns: Optional[str] = None,
    append: bool = False,
    include_header: bool = True
) -> int:
    """
    Write columns of a table to a CSV, TXT or XLSX file.

    Columns are listed comma-separated. A column in double quotes is written
    as that literal text on every row. Distance values are rounded to the
    nearest metre. Rows are sorted by the order columns (case-insensitive).

    Returns:
        Number of rows written, or -1 if a column is missing or the
        format is unsupported
    """
    output_format = output_format.lower()
    names = split_columns(columns.replace(';', ','))
    if not names:
        return -1

    table = _as_table(df)
    series = []
    headers = []
    for name in names:
        if name.startswith('"'):
            series.append(pd.Series(name.strip('"'), index=table.index, dtype=object))
            headers.append(name.strip('"'))
            continue

        column = _resolve_column(table, name)
        if column is None:
            logger.error(f"Column '{name}' not found in output")
            return -1

        values = table[column]
        if name.lower() == 'distance' and is_numeric_dtype(values):
            values = values.round().astype('Int64')
        series.append(values)
        headers.append(name)

    out = pd.concat(series, axis=1) if series else pd.DataFrame(index=table.index)
    out.columns = headers

    order = [c for c in (_resolve_column(table, n) for n in split_columns(order_columns)
                         if not n.startswith('"')) if c]
    if order:
        sorted_index = table.sort_values(by=order, key=_sort_key, kind='stable').index
        out = out.loc[sorted_index]

    output_file = Path(output_file)
    if output_format in TEXT_FORMATS:
        out.to_csv(
            output_file,
            mode='a' if append else 'w',
            header=include_header and not append,
            index=False
        )
    elif output_format == 'xlsx':
        _write_xlsx(out, output_file, append, include_header)
    else:
        logger.error(f"Unsupported output format: {output_format}")
        return -1

    return len(out)


def _write_xlsx(out: pd.DataFrame, output_file: Path, append: bool, include_header: bool) -> None:
    if append and output_file.exists():
        wb = load_workbook(output_file)
        ws = wb.active
    else:
        wb = Workbook()
        ws = wb.active
        ws.title = output_file.stem[:31]
        if include_header:
            ws.append(list(out.columns))
            for cell in ws[1]:
                cell.font = Font(bold=True)

    for row in out.astype(object).where(out.notna(), None).itertuples(index=False):
        ws.append(list(row))

    wb.save(output_file)


def write_empty_table(output_file: Union[str, Path], columns: str, output_format: str = 'csv') -> bool:
    """Start a table file holding only the header row."""
    headers = [c.strip('"') for c in split_columns(columns.replace(';', ','))]
    try:
        if output_format.lower() == 'xlsx':
            _write_xlsx(pd.DataFrame(columns=headers), Path(output_file), False, True)
        else:
            pd.DataFrame(columns=headers).to_csv(output_file, index=False)
    except OSError as e:
        logger.error(f"Error writing to {output_file}: {e}")
        return False
    return True


def export_selection(
    master_gdf: gpd.GeoDataFrame,
    output_file: Union[str, Path],
    output_format: str,
    columns: str,
    group_columns: Optional[str],
    statistics_columns: Optional[str],
    order_columns: Optional[str],
    include_headers: bool,
    append: bool,
    area_unit: Optional[str],
    include_distance: bool,
    radius_text: str,
    search_gdf: Optional[gpd.GeoDataFrame] = None,
    near_type: str = 'BOUNDARY',
    scratch: Optional[ScratchWorkspace] = None
) -> int:
    """
    Export a layer's selected features to its output table.

    Process:
    1. Add an Area column to polygon features if an area unit is given
    2. Add a Distance column to the search feature if requested
    3. Add a Radius column unless radius_text is 'none'
    4. Keep only group and statistics columns that exist; with group columns
       and no statistics, use FIRST of the first group column
    5. Summarise (renaming FIRST_Radius back to Radius) or copy the features
    6. Write the requested columns

    Args:
        master_gdf: The layer's selected (and clipped) features
        output_file: Table file to write
        output_format: 'csv', 'txt' or 'xlsx'
        columns: Output columns, comma-separated
        group_columns: Group-by columns, ';'-separated
        statistics_columns: 'column STAT' pairs, ';'-separated
        order_columns: Sort columns, comma-separated
        include_headers: Write a header row
        append: Append to an existing file
        area_unit: 'Ha', 'm2', 'Km2' or empty for no area
        include_distance: Add the distance to the search feature
        radius_text: Radius label, e.g. '500m', or 'none'
        search_gdf: Search feature(s), needed for distance
        near_type: 'BOUNDARY' or 'CENTROID'
        scratch: Workspace the intermediate output is saved to and exported
            from; the summary table is kept there too

    Returns:
        Number of rows written, or -1 on error
    """
    if not columns:
        return -1

    if get_geometry_type(master_gdf) is None and not master_gdf.empty:
        return -1

    try:
        output = master_gdf
        if area_unit and get_geometry_type(master_gdf) == 'polygon':
            output = add_area_column(output, area_unit)

        if include_distance:
            if search_gdf is None:
                raise ValueError("Search features are needed to calculate distances")
            output = add_distance_column(output, search_gdf, near_type)
        else:
            output = output.copy()

        if radius_text != 'none':
            logger.info("Including radius column ...")
            output[_find_column(output, 'Radius') or 'Radius'] = radius_text

        if scratch is not None:
            scratch.write_layer(scratch.output_name, output)
            scratch.delete(scratch.table_name)
            output = scratch.read_layer(scratch.output_name)

        groups = [c for c in split_columns(group_columns) if _find_column(output, c)]
        stats = [s for s in (statistics_columns or '').split(';')
                 if s.strip() and _find_column(output, s.split()[0])]

        if not stats and groups:
            stats = [f"{groups[0]} FIRST"]

        output_format = output_format.lower()
        if stats:
            logger.info("Calculating summary statistics ...")
            if radius_text != 'none' and not any('radius' in s.lower() for s in stats):
                stats.append('Radius FIRST')

            table = summary_statistics(output, ';'.join(stats), ';'.join(groups))
            if radius_text != 'none':
                table = table.rename(columns={'FIRST_Radius': 'Radius'})

            if scratch is not None:
                scratch.write_table(scratch.table_name, table)

            logger.info(f"Exporting to {output_format.upper()} ...")
            return write_table(table, output_file, output_format, columns, order_columns,
                               append, include_headers)

        logger.info(f"Exporting to {output_format.upper()} ...")
        return write_table(output, output_file, output_format, columns, order_columns,
                           append, include_headers)

    except Exception as e:
        logger.error(f"Error exporting to {output_file}: {e}")
        logger.debug("Export failure", exc_info=True)
        return -1


def keep_layer(gdf: gpd.GeoDataFrame, output_file: Union[str, Path]) -> Path:
    """Save features to a shapefile (or any format implied by the extension)."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(output_file)
    return output_file
