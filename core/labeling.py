"""
Map label numbering for Data Searches.

Output features can be given sequential label numbers so that the analyst's
map and the exported tables can be cross-referenced. Features sharing a key
value share a number. Numbering either restarts for each layer, restarts for
each group of layers, or continues across the whole search.

Functions:
    add_incremental_numbers: Number features by distinct key value
    parse_label_clause: Parse a label style clause from the profile

Classes:
    LabelCounters: Track label numbers across layers for one search
"""

from typing import Dict, Iterable, Optional, Tuple

import geopandas as gpd
import pandas as pd
from pandas.api.types import is_numeric_dtype

from core.options import OverwriteLabelOptions
from utils.logger import get_logger

logger = get_logger(__name__)


def _find_column(gdf: gpd.GeoDataFrame, name: str) -> Optional[str]:
    for column in gdf.columns:
        if column.lower() == name.lower():
            return column
    return None


def add_incremental_numbers(
    gdf: gpd.GeoDataFrame,
    label_column: str,
    key_column: str,
    start_number: int = 1
) -> Tuple[gpd.GeoDataFrame, int]:
    """
    Number features by distinct key value, in key order.

    Rows are sorted by the key (case-insensitive); every change of key value
    takes the next number, starting at ``start_number``.

    Args:
        gdf: Features to label
        label_column: Numeric column receiving the numbers (created if missing)
        key_column: Column whose distinct values get distinct numbers
        start_number: First number to use

    Returns:
        Tuple of (labelled copy of gdf, last number used). The last number is
        start_number - 1 when there are no features.

    Raises:
        ValueError: If the key column is missing or the label column is not numeric
    """
    key = _find_column(gdf, key_column)
    if key is None:
        raise ValueError(f"The key field {key_column} doesn't exist")

    label = _find_column(gdf, label_column)
    gdf = gdf.copy()
    if label is None:
        label = label_column
        gdf[label] = pd.Series(0, index=gdf.index, dtype='int64')
    elif not is_numeric_dtype(gdf[label]):
        raise ValueError(f"The label field {label_column} is not numeric")

    label_max = max(start_number, 1) - 1
    if gdf.empty:
        return gdf, label_max

    sort_keys = gdf[key].astype(str).str.lower()
    numbers = {}
    last_key = None
    for idx in sort_keys.sort_values(kind='stable').index:
        key_value = sort_keys.at[idx]
        if key_value != last_key:
            label_max += 1
        numbers[idx] = label_max
        last_key = key_value

    gdf[label] = pd.Series(numbers).reindex(gdf.index).astype('int64')
    return gdf, label_max


def parse_label_clause(label_clause: str) -> Dict:
    """
    Parse a label style clause.

    Format: ``Font:Arial$Size:10$Red:0$Green:0$Blue:0$Overlap:allow``

    Raises:
        ValueError: If the clause does not have all six parts
    """
    parts = label_clause.split('$')
    if len(parts) < 6:
        raise ValueError(f"Label clause has {len(parts)} parts, expected 6: {label_clause}")

    values = [part.split(':', 1)[1].strip() for part in parts[:6]]
    return {
        'font': values[0],
        'size': float(values[1]),
        'red': int(values[2]),
        'green': int(values[3]),
        'blue': int(values[4]),
        'allow_overlap': values[5].lower() == 'allow',
    }


class LabelCounters:
    """
    Label numbering state for one search.

    Holds a counter per layer group (used when resetting by group) and a
    running counter for the whole search (used otherwise).
    """

    def __init__(self, option: OverwriteLabelOptions, groups: Iterable[Optional[str]] = ()):
        self.option = option
        self.group_labels: Dict[Optional[str], int] = {}
        if option in (OverwriteLabelOptions.RESET_BY_LAYER, OverwriteLabelOptions.RESET_BY_GROUP):
            for group in groups:
                self.group_labels.setdefault(group, 1)
        self.max_label = 1

    def number_features(
        self,
        gdf: gpd.GeoDataFrame,
        label_column: str,
        key_column: str,
        group: Optional[str]
    ) -> gpd.GeoDataFrame:
        """Number a layer's features, advancing the relevant counter."""
        if self.option == OverwriteLabelOptions.RESET_BY_LAYER:
            logger.info("Resetting label counter ...")
            labelled, _ = add_incremental_numbers(gdf, label_column, key_column, 1)
            return labelled

        if self.option == OverwriteLabelOptions.RESET_BY_GROUP and group:
            start = self.group_labels.get(group, 1)
            labelled, last = add_incremental_numbers(gdf, label_column, key_column, start)
            self.group_labels[group] = last + 1
            return labelled

        labelled, last = add_incremental_numbers(gdf, label_column, key_column, self.max_label)
        self.max_label = last + 1
        return labelled
