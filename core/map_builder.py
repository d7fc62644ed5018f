"""
Map rendering module for Data Searches.

Renders a MapSession as an interactive Leaflet map with Folium. Each visible
layer becomes a feature group, named after its group layer, styled from the
layer's symbology and labelled with its label column. A legend panel listing
the layers by group is rendered from a Jinja2 template.

Functions:
    create_web_map: Generate an interactive map of a session
"""

from pathlib import Path
from typing import Dict, List

import folium
from folium import Element, plugins
from jinja2 import Environment, FileSystemLoader
from pyproj import Transformer

from utils.logger import get_logger
from utils.popup_formatters import build_popup_html

logger = get_logger(__name__)

# Template directory path
TEMPLATES_DIR = Path(__file__).parent.parent / 'templates'

WEB_CRS = 'EPSG:4326'
DEFAULT_LOCATION = [54.0, -2.0]
DEFAULT_ZOOM = 6


def _layer_title(layer) -> str:
    return f"{layer.group} / {layer.name}" if layer.group else layer.name


def _legend_entries(session) -> List[Dict]:
    """Visible layers grouped for the legend, in drawing order."""
    groups: List[Dict] = []
    for layer in session.layers:
        if not layer.visible:
            continue
        title = layer.group or ''
        if not groups or groups[-1]['title'] != title:
            groups.append({'title': title, 'layers': []})
        groups[-1]['layers'].append({
            'name': layer.name,
            'color': layer.style.get('color', '#3388ff'),
            'fill_color': layer.style.get('fillColor', layer.style.get('color', '#3388ff')),
            'count': len(layer.gdf),
        })
    return groups


def _extent_bounds(session):
    """Session extent as [[south, west], [north, east]] in WGS84, or None."""
    if session.extent is None:
        return None

    minx, miny, maxx, maxy = session.extent
    if session.extent_crs is not None:
        transformer = Transformer.from_crs(session.extent_crs, WEB_CRS, always_xy=True)
        minx, miny, maxx, maxy = transformer.transform_bounds(minx, miny, maxx, maxy)
    return [[miny, minx], [maxy, maxx]]


def _add_layer(m: folium.Map, layer) -> None:
    gdf = layer.gdf
    if gdf.empty or gdf.crs is None:
        logger.debug(f"Skipping layer '{layer.name}' (no features or no CRS)")
        return

    gdf = gdf.to_crs(WEB_CRS)

    # Only the geometry and popup text go to the page
    popup_gdf = gdf[[gdf.geometry.name]].copy()
    attributes = gdf.drop(columns=gdf.geometry.name)
    popup_gdf['popup_html'] = [
        build_popup_html(layer.name, row, layer.label_column)
        for row in attributes.to_dict('records')
    ]
    if layer.label_column and layer.labels_visible and layer.label_column in attributes.columns:
        popup_gdf['label'] = attributes[layer.label_column].astype(str).values

    feature_group = folium.FeatureGroup(name=_layer_title(layer), show=layer.visible)
    style = dict(layer.style)

    geojson = folium.GeoJson(
        popup_gdf,
        style_function=lambda feature, style=style: style,
        highlight_function=lambda feature, style=style: {'color': style.get('color'), 'weight': 4},
    )
    geojson.add_child(folium.GeoJsonPopup(fields=['popup_html'], labels=False, style="max-width: 400px;"))

    if 'label' in popup_gdf.columns:
        label_style = layer.label_style
        geojson.add_child(folium.GeoJsonTooltip(
            fields=['label'],
            labels=False,
            permanent=True,
            style=(
                f"font-family: {label_style.get('font', 'Arial')}; "
                f"font-size: {label_style.get('size', 10)}pt; "
                f"color: {label_style.get('color', '#000000')};"
            ),
        ))

    geojson.add_to(feature_group)
    feature_group.add_to(m)
    logger.info(f"  - Added {len(gdf)} features from '{layer.name}'")


def create_web_map(session) -> folium.Map:
    """
    Create an interactive Leaflet map of a session.

    Layers are drawn bottom-first so the top layer in the session is on top
    of the map. The map opens on the session's current extent when one has
    been set, otherwise on the extent of all layers.

    Args:
        session: MapSession to render

    Returns:
        Folium map object ready to be saved

    Example:
        >>> m = create_web_map(session)
        >>> m.save('search.html')
    """
    logger.info("=" * 80)
    logger.info(f"Rendering map '{session.name}'")
    logger.info("=" * 80)

    m = folium.Map(location=DEFAULT_LOCATION, zoom_start=DEFAULT_ZOOM, tiles=None)
    folium.TileLayer('OpenStreetMap', name='Street Map').add_to(m)
    folium.TileLayer('CartoDB positron', name='Light Theme').add_to(m)

    for layer in reversed(session.layers):
        if layer.visible:
            _add_layer(m, layer)

    bounds = _extent_bounds(session)
    if bounds is None:
        web_layers = [layer.gdf.to_crs(WEB_CRS) for layer in session.layers
                      if layer.visible and not layer.gdf.empty and layer.gdf.crs is not None]
        if web_layers:
            minx = min(g.total_bounds[0] for g in web_layers)
            miny = min(g.total_bounds[1] for g in web_layers)
            maxx = max(g.total_bounds[2] for g in web_layers)
            maxy = max(g.total_bounds[3] for g in web_layers)
            bounds = [[miny, minx], [maxy, maxx]]
    if bounds is not None:
        m.fit_bounds(bounds)

    folium.LayerControl(collapsed=False).add_to(m)
    plugins.Fullscreen(position='topleft').add_to(m)
    plugins.MeasureControl(position='bottomleft', primary_length_unit='meters',
                           primary_area_unit='hectares').add_to(m)

    env = Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)))
    legend_template = env.get_template('legend_panel.html')
    legend_html = legend_template.render(
        title=session.name,
        groups=_legend_entries(session),
        tables=[table.name for table in session.tables],
    )
    m.get_root().html.add_child(Element(legend_html))

    return m
