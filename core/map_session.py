"""
Map session module for Data Searches.

A MapSession is the working map of a search: an ordered set of named feature
layers (GeoDataFrames) and standalone tables, each layer with an optional
selection, a place in a group layer, a style and label settings. Searches
select features, add and remove layers and tables, and finally render the
session to an interactive HTML map via core.map_builder.

Classes:
    MapLayer: A feature layer in the session
    MapTable: A standalone table in the session
    MapSession: The working map

Functions:
    load_map_document: Open a JSON map document as a MapSession
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import geopandas as gpd
import pandas as pd
from pandas.api.types import is_numeric_dtype

from geometry_input.clipping import get_geometry_type, select_by_location
from geometry_input.load_input import load_layer_file
from utils.logger import get_logger
from utils.string_functions import where_to_query

logger = get_logger(__name__)

SELECTION_METHODS = ('NEW', 'AND', 'ADD', 'SUBTRACT')

DEFAULT_STYLE = {
    'color': '#3388ff',
    'weight': 2,
    'fillColor': '#3388ff',
    'fillOpacity': 0.2,
}


@dataclass
class MapLayer:
    name: str
    gdf: gpd.GeoDataFrame
    source: Optional[Path] = None
    source_layer: Optional[str] = None
    group: Optional[str] = None
    selection: Optional[pd.Series] = None
    style: Dict = field(default_factory=lambda: dict(DEFAULT_STYLE))
    label_column: Optional[str] = None
    label_style: Dict = field(default_factory=dict)
    labels_visible: bool = False
    visible: bool = True


@dataclass
class MapTable:
    name: str
    df: pd.DataFrame
    source: Optional[Path] = None


class MapSession:
    """
    The working map of a search.

    Layers are kept top-first, the order in which they are drawn in the
    legend. A layer's selection is a boolean mask over its rows, or None when
    nothing is selected, in which case tools use every feature.
    """

    def __init__(self, name: str = 'Map', path: Optional[Path] = None):
        self.name = name
        self.path = path
        self.layers: List[MapLayer] = []
        self.tables: List[MapTable] = []
        self.group_layers: List[str] = []
        self.extent: Optional[Tuple[float, float, float, float]] = None
        self.extent_crs = None
        self.scale: Optional[float] = None
        self.drawing_paused = False

    # ------------------------------------------------------------------
    # Layers and tables
    # ------------------------------------------------------------------

    def find_layer(self, name: str) -> Optional[MapLayer]:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None

    def layer_names(self) -> List[str]:
        return [layer.name for layer in self.layers]

    def add_layer(
        self,
        name: str,
        gdf: gpd.GeoDataFrame,
        source: Optional[Path] = None,
        source_layer: Optional[str] = None,
        position: int = 0
    ) -> MapLayer:
        """
        Add a layer, replacing any layer of the same name.

        Position 0 puts the layer at the top of the map; -1 at the bottom.
        """
        existing = self.find_layer(name)
        if existing is not None:
            self.layers.remove(existing)

        layer = MapLayer(name=name, gdf=gdf, source=Path(source) if source else None,
                         source_layer=source_layer)
        if existing is not None:
            layer.group = existing.group
            layer.style = existing.style

        if position < 0 or position >= len(self.layers):
            self.layers.append(layer)
        else:
            self.layers.insert(position, layer)
        return layer

    def add_layer_from_file(
        self,
        path: Union[str, Path],
        name: Optional[str] = None,
        layer: Optional[str] = None,
        position: int = 0
    ) -> MapLayer:
        """
        Read a vector file (shapefile, GeoPackage layer, GeoJSON, zipped
        shapefile) into the session.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file cannot be read or has no CRS
        """
        path = Path(path)
        gdf = load_layer_file(path, layer)
        return self.add_layer(name or path.stem, gdf, source=path, source_layer=layer, position=position)

    def remove_layer(self, name: str) -> bool:
        """Remove a layer. Returns True whether or not it was present."""
        layer = self.find_layer(name)
        if layer is not None:
            self.layers.remove(layer)
        return True

    def find_table(self, name: str) -> Optional[MapTable]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def add_table(self, name: str, df: pd.DataFrame, source: Optional[Path] = None) -> MapTable:
        self.remove_table(name)
        table = MapTable(name=name, df=df, source=Path(source) if source else None)
        self.tables.append(table)
        return table

    def remove_table(self, name: str) -> bool:
        table = self.find_table(name)
        if table is not None:
            self.tables.remove(table)
        return True

    def get_layer_path(self, name: str) -> Optional[str]:
        """Return the layer's path in the legend, e.g. 'Designations/SSSI'."""
        layer = self.find_layer(name)
        if layer is None:
            return None
        if layer.group:
            return f"{layer.group}/{layer.name}"
        return layer.name

    def get_feature_class_type(self, name: str) -> Optional[str]:
        layer = self.find_layer(name)
        if layer is None:
            return None
        return get_geometry_type(layer.gdf)

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def get_fields(self, name: str) -> List[str]:
        layer = self.find_layer(name)
        if layer is None:
            return []
        return [c for c in layer.gdf.columns if c != layer.gdf.geometry.name]

    def _field_name(self, name: str, field_name: str) -> Optional[str]:
        for column in self.get_fields(name):
            if column.lower() == field_name.strip().lower():
                return column
        return None

    def field_exists(self, name: str, field_name: str) -> bool:
        """Check whether a layer has a field (field names are case-insensitive)."""
        return self._field_name(name, field_name) is not None

    def field_is_numeric(self, name: str, field_name: str) -> bool:
        column = self._field_name(name, field_name)
        if column is None:
            return False
        return is_numeric_dtype(self.find_layer(name).gdf[column])

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _combine_selection(self, layer: MapLayer, mask: pd.Series, method: str) -> None:
        method = method.upper()
        if method not in SELECTION_METHODS:
            raise ValueError(f"Unknown selection method: {method}")

        current = layer.selection
        if method == 'NEW' or current is None:
            if method == 'SUBTRACT':
                layer.selection = pd.Series(False, index=layer.gdf.index)
            else:
                layer.selection = mask
        elif method == 'AND':
            layer.selection = current & mask
        elif method == 'ADD':
            layer.selection = current | mask
        else:
            layer.selection = current & ~mask

    def select_layer_by_attributes(self, name: str, where_clause: str, method: str = 'NEW') -> bool:
        """
        Select features matching an SQL where clause.

        Returns:
            True on success, False if the layer is missing or the clause is invalid
        """
        layer = self.find_layer(name)
        if layer is None:
            logger.error(f"Layer '{name}' not found in map")
            return False

        try:
            if where_clause and where_clause.strip():
                matched = layer.gdf.query(where_to_query(where_clause), engine='python').index
                mask = pd.Series(layer.gdf.index.isin(matched), index=layer.gdf.index)
            else:
                mask = pd.Series(True, index=layer.gdf.index)
            self._combine_selection(layer, mask, method)
        except Exception as e:
            logger.error(f"Error selecting features in '{name}' with '{where_clause}': {e}")
            return False

        return True

    def select_layer_by_location(
        self,
        target_name: str,
        source_name: str,
        overlap_type: str = 'INTERSECT',
        method: str = 'NEW'
    ) -> bool:
        """Select target features that intersect the (selected) source features."""
        target = self.find_layer(target_name)
        source = self.find_layer(source_name)
        if target is None or source is None:
            logger.error(f"Layer '{target_name if target is None else source_name}' not found in map")
            return False
        if overlap_type.upper() != 'INTERSECT':
            logger.error(f"Unsupported overlap type: {overlap_type}")
            return False

        try:
            mask = select_by_location(target.gdf, self.selected_features(source_name))
            self._combine_selection(target, mask, method)
        except Exception as e:
            logger.error(f"Error selecting '{target_name}' by location: {e}")
            return False

        return True

    def count_features(self, name: str, where_clause: Optional[str] = None) -> int:
        """
        Count a layer's features matching a where clause, without selecting them.

        Raises:
            KeyError: If the layer is not in the map
            ValueError: If the clause can't be translated
        """
        layer = self.find_layer(name)
        if layer is None:
            raise KeyError(f"Layer '{name}' not found in map")
        if not where_clause or not where_clause.strip():
            return len(layer.gdf)
        return len(layer.gdf.query(where_to_query(where_clause), engine='python'))

    def clear_layer_selection(self, name: str) -> bool:
        layer = self.find_layer(name)
        if layer is None:
            return False
        layer.selection = None
        return True

    def selection_count(self, name: str) -> int:
        layer = self.find_layer(name)
        if layer is None or layer.selection is None:
            return 0
        return int(layer.selection.sum())

    def selected_features(self, name: str) -> gpd.GeoDataFrame:
        """Return the selected features, or all features when there is no selection."""
        layer = self.find_layer(name)
        if layer is None:
            raise KeyError(f"Layer '{name}' not found in map")
        if layer.selection is None:
            return layer.gdf.copy()
        return layer.gdf[layer.selection].copy()

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def update_features(
        self,
        name: str,
        site_column: Optional[str],
        site_name: Optional[str],
        org_column: Optional[str],
        organisation: Optional[str],
        radius_column: Optional[str],
        radius: Optional[str]
    ) -> bool:
        """
        Write site name, organisation and radius into the selected features.

        Only columns that exist in the layer and have a value are updated.
        When the layer was read from a file the file is rewritten.
        """
        layer = self.find_layer(name)
        if layer is None:
            logger.error(f"Layer '{name}' not found in map")
            return False

        rows = layer.selection if layer.selection is not None else pd.Series(True, index=layer.gdf.index)
        updated = False
        for column, value in ((site_column, site_name), (org_column, organisation), (radius_column, radius)):
            if not column or not value:
                continue
            actual = self._field_name(name, column)
            if actual is None:
                continue
            layer.gdf.loc[rows, actual] = value
            updated = True

        if updated and layer.source is not None:
            try:
                if layer.source_layer:
                    layer.gdf.to_file(layer.source, layer=layer.source_layer)
                else:
                    layer.gdf.to_file(layer.source)
            except Exception as e:
                logger.error(f"Error saving edits to '{name}': {e}")
                return False

        return True

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def apply_symbology_from_layer_file(self, name: str, layer_file: Union[str, Path]) -> bool:
        """
        Apply a JSON style document to a layer.

        The document holds Leaflet path options, e.g.
        ``{"color": "#ff0000", "weight": 2, "fillOpacity": 0.3}``.
        """
        layer = self.find_layer(name)
        if layer is None:
            return False

        try:
            with open(layer_file, 'r', encoding='utf-8') as f:
                style = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error applying symbology from '{layer_file}': {e}")
            return False

        layer.style = {**DEFAULT_STYLE, **style}
        return True

    def move_to_group_layer(self, name: str, group_name: str, position: int = 0) -> bool:
        """
        Move a layer into a group layer, creating the group when needed.

        Position 0 is the top of the group; -1 the bottom.
        """
        layer = self.find_layer(name)
        if layer is None:
            return False

        if group_name not in self.group_layers:
            self.group_layers.insert(0, group_name)

        self.layers.remove(layer)
        layer.group = group_name
        members = [i for i, other in enumerate(self.layers) if other.group == group_name]

        if not members:
            self.layers.insert(0, layer)
        elif position < 0 or position >= len(members):
            self.layers.insert(members[-1] + 1, layer)
        else:
            self.layers.insert(members[position], layer)
        return True

    def remove_group_layer(self, group_name: str) -> bool:
        """Remove a group layer if it has no layers left in it."""
        if group_name not in self.group_layers:
            return False
        if any(layer.group == group_name for layer in self.layers):
            return False
        self.group_layers.remove(group_name)
        return True

    def label_layer(
        self,
        name: str,
        label_column: str,
        font: str = 'Arial',
        size: float = 10,
        font_style: str = 'Normal',
        red: int = 0,
        green: int = 0,
        blue: int = 0,
        allow_overlap: bool = True,
        display_labels: bool = True
    ) -> bool:
        """Set a layer's label column and text style. Fails if the column is missing."""
        layer = self.find_layer(name)
        if layer is None:
            return False

        column = self._field_name(name, label_column)
        if column is None:
            logger.error(f"Label column '{label_column}' not found in layer '{name}'")
            return False

        layer.label_column = column
        layer.label_style = {
            'font': font,
            'size': size,
            'style': font_style,
            'color': f'#{red:02x}{green:02x}{blue:02x}',
            'allow_overlap': allow_overlap,
        }
        layer.labels_visible = display_labels
        return True

    def switch_labels(self, name: str, display_labels: bool) -> bool:
        layer = self.find_layer(name)
        if layer is None:
            return False
        layer.labels_visible = display_labels
        return True

    def zoom_to_layer(self, name: str, ratio: float = 1, scale: Optional[float] = None) -> bool:
        """
        Zoom the map to a layer's selected features, or all features.

        The extent is expanded by ``ratio`` around its centre. ``scale`` is a
        minimum map scale; when set the extent is widened so it covers at least
        ``scale`` metres at 1:1 (roughly 1 m per unit of scale).
        """
        layer = self.find_layer(name)
        if layer is None:
            return False

        gdf = self.selected_features(name)
        if gdf.empty:
            gdf = layer.gdf
        if gdf.empty:
            return False

        minx, miny, maxx, maxy = gdf.total_bounds
        cx, cy = (minx + maxx) / 2, (miny + maxy) / 2
        half_w = (maxx - minx) * ratio / 2
        half_h = (maxy - miny) * ratio / 2
        if scale and gdf.crs is not None and gdf.crs.is_projected:
            half_w = max(half_w, scale / 20)
            half_h = max(half_h, scale / 20)

        self.extent = (cx - half_w, cy - half_h, cx + half_w, cy + half_h)
        self.extent_crs = gdf.crs
        self.scale = scale
        return True

    def pause_drawing(self, pause: bool) -> None:
        self.drawing_paused = pause

    def save_map(self, path: Union[str, Path, None] = None) -> Optional[Path]:
        """Render the session to an HTML map. Returns the file written."""
        from core.map_builder import create_web_map

        target = Path(path) if path else self.path
        if target is None:
            logger.debug("Map has no output path, not saving")
            return None

        target.parent.mkdir(parents=True, exist_ok=True)
        map_obj = create_web_map(self)
        map_obj.save(str(target))
        self.path = target
        logger.debug(f"Map saved to {target}")
        return target


def load_map_document(path: Union[str, Path]) -> MapSession:
    """
    Open a JSON map document.

    Format::

        {
          "name": "Data Searches",
          "output": "map.html",
          "layers": [
            {"name": "SSSI", "path": "layers/sssi.shp", "group": "Designations"},
            {"name": "Sites", "path": "layers/sites.gpkg", "layer": "sites"}
          ]
        }

    Relative paths are resolved from the document's folder. Layers whose
    files cannot be read are logged and skipped.

    Raises:
        FileNotFoundError: If the document doesn't exist
        ValueError: If the document is not valid JSON
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Map document not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid map document {path}: {e}")

    base = path.parent
    output = document.get('output')
    session = MapSession(
        name=document.get('name', path.stem),
        path=(base / output) if output else path.with_suffix('.html')
    )

    for entry in document.get('layers', []):
        layer_path = Path(entry['path'])
        if not layer_path.is_absolute():
            layer_path = base / layer_path
        try:
            layer = session.add_layer_from_file(layer_path, name=entry.get('name'),
                                                layer=entry.get('layer'), position=-1)
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"Could not open layer '{entry.get('name', layer_path)}': {e}")
            continue
        if entry.get('group'):
            layer.group = entry['group']
            if entry['group'] not in session.group_layers:
                session.group_layers.append(entry['group'])
        if entry.get('style'):
            layer.style = {**DEFAULT_STYLE, **entry['style']}

    logger.debug(f"Opened map document {path.name}: {len(session.layers)} layers")
    return session
