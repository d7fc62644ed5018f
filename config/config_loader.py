"""
Configuration loading for Data Searches.

This module handles loading and validation of the XML search profile. The
profile's root element holds a single settings element whose children are the
tool settings, including a MapLayers element with one child per searchable
map layer.

Constants:
    PROJECT_ROOT: Root directory of the project
    CONFIG_DIR: Configuration files directory
    DEFAULT_PROFILE: File name of the default profile in a profile folder

Functions:
    load_config: Load and validate a search profile
    find_profiles: List the XML profiles in a folder
    default_profile: Locate the default profile in a folder
    resolve_path: Resolve a path named in a profile
"""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Union

from utils.logger import get_logger
from utils.string_functions import format_group_columns

logger = get_logger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / 'config'
DEFAULT_PROFILE = 'DataSearches.xml'

OUTPUT_TYPES = ('COPY', 'CLIP', 'OVERLAY', 'INTERSECT')
NEAR_FIELD_TYPES = ('CENTROID', 'BOUNDARY')


class ConfigError(Exception):
    """Raised when a search profile is missing or malformed."""


def _is_yes(text: Optional[str]) -> bool:
    return (text or '').strip().lower() in ('yes', 'y')


def _text(element: ET.Element, name: str, owner: Optional[str] = None) -> str:
    """Get the text of a mandatory child node."""
    node = element.find(name)
    if node is None:
        if owner:
            raise ConfigError(f"Could not locate '{name}' for map layer '{owner}'.")
        raise ConfigError(f"Could not locate '{name}' in the XML profile.")
    return (node.text or '').strip()


def _optional_text(element: ET.Element, name: str) -> Optional[str]:
    node = element.find(name)
    if node is None:
        return None
    return (node.text or '').strip()


def _number(element: ET.Element, name: str, default: int) -> int:
    """Get an optional whole number node, truncating decimals."""
    raw = _optional_text(element, name)
    if raw is None or raw == '':
        return default
    try:
        return int(float(raw))
    except ValueError:
        raise ConfigError(f"The entry for '{name}' in the XML profile is not a number.")


def _split_list(raw: str, name: str) -> List[str]:
    if raw is None:
        raise ConfigError(f"Error parsing '{name}' string. Check for correct format.")
    return [item.strip() for item in raw.split(';')]


def parse_buffer_units(raw: str) -> List[Dict[str, str]]:
    """
    Parse the BufferUnitOptions string.

    Entries are separated by '$', each holding display, process and short
    names separated by ';'.

    Example:
        >>> parse_buffer_units('Metres;Meters;m$Kilometres;Kilometers;km')
        [{'display': 'Metres', 'process': 'Meters', 'short': 'm'},
         {'display': 'Kilometres', 'process': 'Kilometers', 'short': 'km'}]
    """
    units = []
    for entry in raw.split('$'):
        parts = entry.split(';')
        if len(parts) < 3:
            raise ConfigError("Error parsing 'BufferUnitOptions' string. Check for correct format.")
        units.append({
            'display': parts[0].strip(),
            'process': parts[1].strip(),
            'short': parts[2].strip(),
        })
    return units


def _load_settings(root: ET.Element) -> Dict:
    settings: Dict = {}

    # Search reference database (optional lookup of site name/organisation)
    settings['database_path'] = _text(root, 'DatabasePath')
    if settings['database_path']:
        settings['database_table'] = _text(root, 'DatabaseTable')
        settings['database_ref_column'] = _text(root, 'DatabaseRefColumn')
        settings['database_site_column'] = _text(root, 'DatabaseSiteColumn')
        settings['database_org_column'] = _text(root, 'DatabaseOrgColumn')
    else:
        settings['database_table'] = None
        settings['database_ref_column'] = None
        settings['database_site_column'] = None
        settings['database_org_column'] = None

    settings['require_site_name'] = _is_yes(_text(root, 'RequireSiteName'))
    settings['require_organisation'] = _is_yes(_text(root, 'RequireOrganisation'))

    # Spaces are allowed as the replacement character
    rep_node = root.find('RepChar')
    if rep_node is None:
        raise ConfigError("Could not locate 'RepChar' in the XML profile.")
    settings['rep_char'] = rep_node.text or ''

    settings['layer_folder'] = _text(root, 'LayerFolder')
    settings['save_root_dir'] = _text(root, 'SaveRootDir')
    settings['save_folder'] = _text(root, 'SaveFolder')
    settings['gis_folder'] = _text(root, 'GISFolder')
    settings['log_file_name'] = _text(root, 'LogFileName')

    settings['pause_map'] = _is_yes(_optional_text(root, 'PauseMap'))
    settings['default_clear_log_file'] = _is_yes(_optional_text(root, 'DefaultClearLogFile'))
    settings['default_open_log_file'] = _is_yes(_optional_text(root, 'DefaultOpenLogFile'))

    settings['default_buffer_size'] = _number(root, 'DefaultBufferSize', 0)
    settings['buffer_units'] = parse_buffer_units(_text(root, 'BufferUnitOptions'))
    settings['default_buffer_unit'] = _number(root, 'DefaultBufferUnit', -1)

    settings['update_table'] = _is_yes(_text(root, 'UpdateTable'))
    settings['keep_buffer_area'] = _is_yes(_text(root, 'KeepBufferArea'))
    settings['buffer_prefix'] = _text(root, 'BufferPrefix')
    settings['buffer_layer_file'] = _text(root, 'BufferLayerFile')

    settings['search_layer'] = _text(root, 'SearchLayer')
    settings['search_layer_extensions'] = _split_list(
        _text(root, 'SearchLayerExtensions'), 'SearchLayerExtensions'
    )
    settings['search_column'] = _text(root, 'SearchColumn')
    settings['site_column'] = _text(root, 'SiteColumn')
    settings['org_column'] = _text(root, 'OrgColumn')
    settings['radius_column'] = _text(root, 'RadiusColumn')
    settings['keep_search_feature'] = _is_yes(_text(root, 'KeepSearchFeature'))
    settings['search_output_name'] = _text(root, 'SearchOutputName')
    settings['search_symbology_base'] = _text(root, 'SearchSymbologyBase')
    settings['aggregate_columns'] = _text(root, 'AggregateColumns')

    settings['add_selected_layers_options'] = _split_list(
        _text(root, 'AddSelectedLayersOptions'), 'AddSelectedLayersOptions'
    )
    keep_raw = _optional_text(root, 'DefaultKeepSelectedLayers')
    settings['default_keep_selected_layers'] = None if keep_raw == '' else _is_yes(keep_raw)
    settings['default_add_selected_layers'] = _number(root, 'DefaultAddSelectedLayers', -1)

    settings['group_layer_name'] = _text(root, 'GroupLayerName')
    settings['overwrite_label_options'] = _split_list(
        _text(root, 'OverwriteLabelOptions'), 'OverwriteLabelOptions'
    )
    settings['default_overwrite_labels'] = _number(root, 'DefaultOverwriteLabels', -1)

    settings['area_measurement_unit'] = _text(root, 'AreaMeasurementUnit')

    settings['combined_sites_table_options'] = _split_list(
        _text(root, 'CombinedSitesTableOptions'), 'CombinedSitesTableOptions'
    )
    settings['default_combined_sites_table'] = _number(root, 'DefaultCombinedSitesTable', -1)

    combined = root.find('CombinedSitesTable')
    if combined is None:
        raise ConfigError("Could not locate 'CombinedSitesTable' in the XML profile.")
    for key, node_name in (('combined_sites_table_name', 'Name'),
                           ('combined_sites_table_columns', 'Columns'),
                           ('combined_sites_table_format', 'Format')):
        node = combined.find(node_name)
        if node is None:
            raise ConfigError(
                f"Could not locate '{node_name}' for entry 'CombinedSitesTable' in the XML profile."
            )
        settings[key] = (node.text or '').strip()

    settings['map_document'] = _optional_text(root, 'MapDocument') or None

    return settings


def _load_map_layer(node: ET.Element) -> Dict:
    """Build a map layer descriptor from one MapLayers child node."""
    node_name = node.tag.replace('_', ' ')

    if '-' in node_name:
        node_group = node_name[:node_name.index('-')].strip()
        node_layer = node_name[node_name.index('-') + 1:].strip()
    else:
        node_group = None
        node_layer = node_name

    layer: Dict = {
        'node_name': node_name,
        'node_group': node_group,
        'node_layer': node_layer,
        'layer_name': _text(node, 'LayerName', node_name),
        'gis_output_name': _text(node, 'GISOutputName', node_name),
        'table_output_name': _text(node, 'TableOutputName', node_name),
        'columns': _text(node, 'Columns', node_name),
        'group_columns': format_group_columns(_text(node, 'GroupColumns', node_name)),
        'statistics_columns': _text(node, 'StatisticsColumns', node_name),
        'order_columns': _text(node, 'OrderColumns', node_name),
        'criteria': _text(node, 'Criteria', node_name),
        'include_area': _is_yes(_optional_text(node, 'IncludeArea')),
        'include_radius': _is_yes(_optional_text(node, 'IncludeRadius')),
        'key_column': _text(node, 'KeyColumn', node_name),
        'format': _text(node, 'Format', node_name),
        'keep_layer': _is_yes(_optional_text(node, 'KeepLayer')),
        'load_warning': _is_yes(_optional_text(node, 'LoadWarning')),
        'preselect_layer': _is_yes(_optional_text(node, 'PreselectLayer')),
        'display_labels': _is_yes(_optional_text(node, 'DisplayLabels')),
        'layer_file_name': _optional_text(node, 'LayerFileName') or None,
        'overwrite_labels': _is_yes(_optional_text(node, 'OverwriteLabels')),
        'label_column': _optional_text(node, 'LabelColumn') or None,
        'label_clause': _optional_text(node, 'LabelClause') or None,
        'macro_name': _optional_text(node, 'MacroName') or None,
        'layer_source': _optional_text(node, 'LayerSource') or None,
    }

    near = _text(node, 'IncludeNearFields', node_name).upper()
    layer['include_near_fields'] = near if near in NEAR_FIELD_TYPES else ''
    layer['include_distance'] = bool(layer['include_near_fields'])

    output_type = _text(node, 'OutputType', node_name).upper()
    layer['output_type'] = output_type if output_type in OUTPUT_TYPES else 'COPY'

    sites_columns = _optional_text(node, 'CombinedSitesColumns')
    if sites_columns:
        layer['combined_sites_columns'] = sites_columns
        layer['combined_sites_group_columns'] = format_group_columns(
            _text(node, 'CombinedSitesGroupColumns', node_name)
        )
        layer['combined_sites_statistics_columns'] = _text(node, 'CombinedSitesStatisticsColumns', node_name)
        layer['combined_sites_order_columns'] = _text(node, 'CombinedSitesOrderByColumns', node_name)
    else:
        layer['combined_sites_columns'] = None
        layer['combined_sites_group_columns'] = None
        layer['combined_sites_statistics_columns'] = None
        layer['combined_sites_order_columns'] = None

    return layer


def load_config(xml_file: Union[str, Path, None] = None) -> Dict:
    """
    Load a search profile from XML.

    Parameters:
    -----------
    xml_file : Union[str, Path, None]
        Path to the profile. Defaults to CONFIG_DIR/DataSearches.xml

    Returns:
    --------
    Dict
        Configuration dictionary with 'settings', 'layers' and 'profile' keys

    Raises:
    -------
    FileNotFoundError
        If the profile doesn't exist
    ConfigError
        If the XML cannot be parsed or mandatory nodes are missing
    """
    config_path = Path(xml_file) if xml_file else CONFIG_DIR / DEFAULT_PROFILE

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        tree = ET.parse(config_path)
    except ET.ParseError as e:
        raise ConfigError(f"Error loading XML file. {e}")

    # Comments are dropped by the default parser, so the first child is the settings node
    root = tree.getroot()
    settings_node = next(iter(root), None)
    if settings_node is None:
        raise ConfigError("Error loading XML file.")

    settings = _load_settings(settings_node)

    map_layers = settings_node.find('MapLayers')
    if map_layers is None:
        raise ConfigError("Could not locate 'MapLayers' in the XML profile")

    layers = [_load_map_layer(node) for node in map_layers if isinstance(node.tag, str)]

    logger.debug(f"Loaded profile {config_path.name}: {len(layers)} map layers")

    return {
        'profile': str(config_path),
        'settings': settings,
        'layers': layers,
    }


def find_profiles(folder: Union[str, Path]) -> List[Path]:
    """List the XML profiles in a folder, sorted by name."""
    folder = Path(folder)
    if not folder.is_dir():
        return []
    return sorted(p for p in folder.iterdir() if p.suffix.lower() == '.xml')


def default_profile(folder: Union[str, Path]) -> Optional[Path]:
    """Return the default profile in a folder if it exists."""
    for profile in find_profiles(folder):
        if profile.name.lower() == DEFAULT_PROFILE.lower():
            return profile
    return None


def resolve_path(config: Dict, path: Union[str, Path, None]) -> Optional[Path]:
    """Resolve a profile path, relative paths being taken from the profile's folder."""
    if not path:
        return None
    path = Path(path)
    if path.is_absolute():
        return path
    return Path(config['profile']).parent / path
