#!/usr/bin/env python
"""
Data Searches
=============
Runs data searches for a search reference: selects the features within a
buffer of the search site in each chosen map layer, exports the results to
tables, adds them to the map, and records everything in a search log.

Usage:
    python data_searches.py --profile config/DataSearches.xml --ref ABC123 \\
        --buffer-size 2 --buffer-unit Kilometres --layers "SSSI,Ancient Woodland"
"""

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional
import warnings

# Import logging first
from utils.logger import setup_logging, get_logger

from config.config_loader import ConfigError, CONFIG_DIR, default_profile, load_config, resolve_path
from core.controller import SearchController
from core.map_session import MapSession, load_map_document

# Suppress warnings for cleaner output
warnings.filterwarnings('ignore')


def _resolve_profile(profile: Optional[str]) -> Path:
    """A profile file, or the default profile in a profile folder."""
    if profile is None:
        found = default_profile(CONFIG_DIR)
        if found is None:
            raise FileNotFoundError(f"No default profile found in {CONFIG_DIR}")
        return found

    path = Path(profile)
    if path.is_dir():
        found = default_profile(path)
        if found is None:
            raise FileNotFoundError(f"No default profile found in {path}")
        return found
    return path


def _console_confirm(assume_yes: bool):
    def confirm(message: str) -> bool:
        if assume_yes:
            return True
        answer = input(f"{message} [y/N] ")
        return answer.strip().lower() in ('y', 'yes')
    return confirm


def _buffer_unit_index(controller: SearchController, unit: Optional[str]) -> int:
    """Accept a unit by display name, short name or 1-based position."""
    if unit is None:
        return controller.buffer_unit_index
    if unit.isdigit():
        return int(unit) - 1
    for i, option in enumerate(controller.settings['buffer_units']):
        if unit.lower() in (option['display'].lower(), option['process'].lower(), option['short'].lower()):
            return i
    return -1


def main(
    profile: Optional[str] = None,
    map_document: Optional[str] = None,
    search_ref: Optional[str] = None,
    layers: Optional[List[str]] = None,
    buffer_size: Optional[str] = None,
    buffer_unit: Optional[str] = None,
    site_name: Optional[str] = None,
    organisation: Optional[str] = None,
    add_to_map: Optional[str] = None,
    overwrite_labels: Optional[str] = None,
    combined_sites: Optional[str] = None,
    clear_log: Optional[bool] = None,
    assume_yes: bool = False,
    list_layers: bool = False
) -> bool:
    """
    Main execution workflow for Data Searches.

    Workflow Steps:
    1. Setup logging to console and file
    2. Load the search profile
    3. Open the map document holding the search and map layers
    4. Fill the search form from the profile defaults and the arguments
    5. Run the search

    Parameters:
    -----------
    profile : Optional[str]
        Profile XML file, or a folder holding DataSearches.xml
    map_document : Optional[str]
        JSON map document (defaults to the profile's MapDocument)
    search_ref : Optional[str]
        Search reference to run
    layers : Optional[List[str]]
        Map layers to search (defaults to the preselected layers)

    Returns:
    --------
    bool
        True if the search completed
    """
    workflow_start_time = time.time()

    log_file = setup_logging()
    logger = get_logger(__name__)

    logger.info("=" * 80)
    logger.info("DATA SEARCHES")
    logger.info("=" * 80)
    logger.debug(f"Debug log file: {log_file}")

    try:
        profile_path = _resolve_profile(profile)
        config = load_config(profile_path)
        logger.info(f"Profile loaded: {profile_path.name} ({len(config['layers'])} map layers)")

        document = map_document or resolve_path(config, config['settings']['map_document'])
        if document:
            session = load_map_document(document)
        else:
            logger.warning("No map document given, starting with an empty map")
            session = MapSession()

        controller = SearchController(config, session, confirm=_console_confirm(assume_yes))

        if list_layers:
            for layer in controller.open_layers:
                marker = '*' if layer['node_name'] in controller.selected_layer_names else ' '
                logger.info(f" {marker} {layer['node_name']}")
            return True

        if layers:
            unknown = controller.select_layers(layers)
            for name in unknown:
                logger.warning(f"Layer '{name}' is not in the map or the profile")

        if site_name is not None:
            controller.site_name = site_name
        if organisation is not None:
            controller.organisation = organisation
        controller.set_search_ref(search_ref)

        if buffer_size is not None:
            controller.buffer_size = buffer_size
        controller.buffer_unit_index = _buffer_unit_index(controller, buffer_unit)

        if add_to_map is not None:
            controller.selected_add_to_map = add_to_map
        if overwrite_labels is not None:
            controller.selected_overwrite_labels = overwrite_labels
        if combined_sites is not None:
            controller.selected_combined_sites = combined_sites
        if clear_log is not None:
            controller.clear_log_file = clear_log

        success = controller.run()
        if controller.message and not success:
            logger.error(controller.message)

        elapsed_time = time.time() - workflow_start_time
        logger.info(f"Total execution time: {elapsed_time:.2f} seconds")
        return success

    except (FileNotFoundError, ConfigError, ValueError) as e:
        logger.error("")
        logger.error("=" * 80)
        logger.error("DATA SEARCH FAILED")
        logger.error("=" * 80)
        logger.error(f"Error: {str(e)}")
        logger.error(f"See log file for details: {log_file}")
        return False


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Data Searches - select, export and map the data around a search site")

    parser.add_argument("--profile", type=str, default=None, help="Profile XML file, or a folder holding DataSearches.xml.")
    parser.add_argument("--map", type=str, default=None, dest="map_document", help="JSON map document (defaults to the profile's MapDocument).")
    parser.add_argument("--ref", type=str, default=None, dest="search_ref", help="Search reference.")
    parser.add_argument("--site-name", type=str, default=None, help="Site name (when the profile requires one).")
    parser.add_argument("--organisation", type=str, default=None, help="Organisation (when the profile requires one).")
    parser.add_argument("--buffer-size", type=str, default=None, help="Buffer size (defaults to the profile's DefaultBufferSize).")
    parser.add_argument("--buffer-unit", type=str, default=None, help="Buffer unit name or 1-based position.")
    parser.add_argument("--layers", type=str, default=None, help="Comma-separated map layers to search (defaults to the preselected layers).")
    parser.add_argument("--add-to-map", type=str, default=None, help="Add selected layers option, e.g. 'Yes - With labels'.")
    parser.add_argument("--overwrite-labels", type=str, default=None, help="Overwrite labels option, e.g. 'Yes - Reset each layer'.")
    parser.add_argument("--combined-sites", type=str, default=None, help="Combined sites table option, e.g. 'Overwrite'.")
    parser.add_argument("--clear-log", action="store_true", default=None, help="Clear the search log before writing to it.")
    parser.add_argument("--yes", action="store_true", dest="assume_yes", help="Answer yes to any confirmation prompt.")
    parser.add_argument("--list-layers", action="store_true", help="List the map layers that can be searched and exit.")

    return parser.parse_args(argv)


def cli(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    layer_names = [name.strip() for name in args.layers.split(',')] if args.layers else None

    ok = main(
        profile=args.profile,
        map_document=args.map_document,
        search_ref=args.search_ref,
        layers=layer_names,
        buffer_size=args.buffer_size,
        buffer_unit=args.buffer_unit,
        site_name=args.site_name,
        organisation=args.organisation,
        add_to_map=args.add_to_map,
        overwrite_labels=args.overwrite_labels,
        combined_sites=args.combined_sites,
        clear_log=args.clear_log,
        assume_yes=args.assume_yes,
        list_layers=args.list_layers,
    )

    if ok:
        print("\nSearch complete.")
    else:
        print("\nSearch failed. Check the log file for details.")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    cli()
