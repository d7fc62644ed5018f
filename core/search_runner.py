"""
Search orchestration module for Data Searches.

Runs one data search end to end: finds and buffers the search feature(s),
then for every selected map layer selects the features within the buffer,
creates the layer's map output, numbers its labels, exports its summary
table, keeps it as a shapefile and appends it to the combined sites table.

Every step reports failure by returning False after logging what went
wrong; the search then stops, its temporary layers, selections and scratch
data are removed, and the outcome is written to the search log.

Classes:
    SearchParameters: The analyst's choices for one search
    DataSearch: Runs searches against a map session
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import geopandas as gpd

from config.config_loader import resolve_path
from core.exporter import export_selection, keep_layer, write_empty_table
from core.labeling import LabelCounters, parse_label_clause
from core.map_session import MapSession
from core.options import AddSelectedLayersOptions, CombinedSitesTableOptions, OverwriteLabelOptions
from core.scratch import ScratchWorkspace, get_user_id
from geometry_input.buffering import buffer_features
from geometry_input.clipping import create_map_output
from utils.logger import attach_search_log, detach_search_log, get_logger
from utils.macro_runner import run_macro
from utils.string_functions import (
    align_stats_columns, build_search_clause, get_subref, keep_numbers_and_spaces,
    replace_search_strings, split_columns, strip_illegals
)

logger = get_logger(__name__)

SHAPEFILE_EXTENSIONS = ('.shp', '.shx', '.dbf', '.prj', '.cpg', '.sbn', '.sbx', '.qix')
SYMBOLOGY_EXTENSION = '.json'
LOG_RULE = '-' * 75

MESSAGE_COMPLETE = "Search '{0}' complete!"
MESSAGE_ERRORS = "Search '{0}' aborted with errors!"
MESSAGE_CANCELLED = "Search '{0}' cancelled!"
MESSAGE_UNEXPECTED = "Search '{0}' ended unexpectedly!"


@dataclass
class SearchParameters:
    search_ref: str
    selected_layers: List[Dict]
    buffer_size: str = '0'
    buffer_unit_index: int = 0
    site_name: Optional[str] = None
    organisation: Optional[str] = None
    add_selected_layers: AddSelectedLayersOptions = AddSelectedLayersOptions.NO
    overwrite_labels: OverwriteLabelOptions = OverwriteLabelOptions.NO
    combined_sites_table: CombinedSitesTableOptions = CombinedSitesTableOptions.NONE
    clear_log_file: bool = False
    open_log_file: bool = False
    pause_map: bool = False


def delete_shapefile(path: Path) -> None:
    """Delete a shapefile and its sidecar files."""
    for extension in SHAPEFILE_EXTENSIONS:
        sidecar = path.with_suffix(extension)
        if sidecar.exists():
            sidecar.unlink()


class DataSearch:
    """
    Runs data searches against a map session.

    Args:
        config: Loaded search profile
        session: Map holding the search layers and map layers
        confirm: Called with a question when the search needs the analyst's
            go-ahead (several matching search features); returns True to continue
        progress: Called with (text, step, max_steps) as the search advances
        scratch_folder: Folder for intermediate outputs (system temp by default)
    """

    def __init__(
        self,
        config: Dict,
        session: MapSession,
        confirm: Optional[Callable[[str], bool]] = None,
        progress: Optional[Callable[[Optional[str], int, int], None]] = None,
        scratch_folder: Optional[Path] = None
    ):
        self.config = config
        self.settings = config['settings']
        self.session = session
        self.confirm = confirm
        self.progress = progress
        self.scratch_folder = scratch_folder

        self.running = False
        self.cancelled = False
        self.errors = False
        self.last_message: Optional[str] = None
        self.log_file: Optional[Path] = None
        self.output_folder: Optional[Path] = None
        self.outputs: List[Path] = []

        self._log_handler = None
        self.scratch: Optional[ScratchWorkspace] = None
        self._reset_search_state()

    def cancel(self) -> None:
        """Ask the running search to stop before its next layer."""
        self.cancelled = True

    def _report(self, text: Optional[str], step: int = -1, max_steps: int = -1) -> None:
        if self.progress is not None:
            self.progress(text, step, max_steps)

    def _substitute(self, text: str, is_file: bool = False) -> str:
        text = replace_search_strings(text, self.reference, self.site_name,
                                      self.short_ref, self.subref, self.radius)
        return strip_illegals(text, self.settings['rep_char'], is_file)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, params: SearchParameters) -> bool:
        """
        Run a search and report its outcome.

        Returns:
            True if the search completed without errors
        """
        self.cancelled = False
        self.errors = False
        self.running = True
        self.outputs = []
        self._reset_search_state()

        try:
            success = self._run_search(params)
        except Exception as e:
            logger.error(f"Search ended unexpectedly: {e}")
            logger.debug("Unexpected search failure", exc_info=True)
            success = False

        if not success and not self.cleaned_up:
            self.abandon_search(params)

        self.stop_search(params.search_ref, success, params.open_log_file)
        return success

    def _reset_search_state(self) -> None:
        self.cleaned_up = False
        self.scratch = None
        self.input_layer_name = None
        self.search_layer_name = None
        self.buffer_layer_name = None
        self.group_layer_name = None
        self.search_output_file = None
        self.buffer_output_file = None

    def _run_search(self, params: SearchParameters) -> bool:
        settings = self.settings
        rep_char = settings['rep_char']
        unit = settings['buffer_units'][params.buffer_unit_index]

        self.site_name = strip_illegals(params.site_name, rep_char)
        self.reference = params.search_ref.replace('/', rep_char)
        self.short_ref = keep_numbers_and_spaces(self.reference, rep_char)
        self.subref = get_subref(self.short_ref, rep_char)
        self.radius = f"{params.buffer_size}{unit['short']}"

        save_folder = self._substitute(settings['save_folder']).strip()
        gis_folder = self._substitute(settings['gis_folder'])
        log_file_name = self._substitute(settings['log_file_name'], is_file=True)
        self.combined_sites_table_name = self._substitute(settings['combined_sites_table_name'])
        self.buffer_prefix = self._substitute(settings['buffer_prefix'])
        self.search_layer_name = self._substitute(settings['search_output_name'])
        self.group_layer_name = self._substitute(settings['group_layer_name'])

        # Output folders
        save_root = resolve_path(self.config, settings['save_root_dir'])
        self.output_folder = self._create_output_folders(save_root, save_folder, gis_folder)
        if self.output_folder is None:
            return False

        # Search log
        self.log_file = self.output_folder / log_file_name
        try:
            self._log_handler = attach_search_log(self.log_file, params.clear_log_file)
        except OSError as e:
            logger.error(f"Cannot clear log file {self.log_file}. Please make sure this file "
                         f"is not open in another window. System error: {e}")
            self.errors = True
            return False

        user_id = strip_illegals(get_user_id(), '_')
        if not user_id:
            user_id = 'Temp'
            logger.info("User ID not found. User ID used will be 'Temp'")

        steps_max = len(params.selected_layers) + 3
        step = 0

        if self.cancelled:
            return False

        logger.info(LOG_RULE)
        logger.info(f"Processing search '{params.search_ref}'")
        logger.info(LOG_RULE)
        logger.info("Parameters are as follows:")
        logger.info(f"Buffer distance: {self.radius}")
        logger.info(f"Output location: {save_root / save_folder}")
        logger.info(f"Layers to process: {len(params.selected_layers)}")
        logger.info(f"Area measurement unit: {settings['area_measurement_unit']}")

        search_clause = build_search_clause(settings['search_column'], self.reference)

        self._report("Selecting feature(s)...", step, steps_max)
        step += 1

        if self._count_search_features(search_clause) == 0:
            self.errors = True
            return False

        if not self._prepare_scratch(user_id):
            self.errors = True
            return False

        if params.pause_map:
            self.session.pause_drawing(True)

        if not self.session.select_layer_by_attributes(self.input_layer_name, search_clause, 'NEW'):
            self.errors = True
            return False

        if settings['update_table'] and (settings['site_column'] or settings['org_column']
                                         or settings['radius_column']):
            logger.info("Updating attributes in search layer ...")
            if not self.session.update_features(
                self.input_layer_name,
                settings['site_column'], self.site_name,
                settings['org_column'], params.organisation,
                settings['radius_column'], self.radius
            ):
                self.errors = True
                return False

        self.search_output_file = self.output_folder / f"{self.search_layer_name}.shp"
        self.session.remove_layer(self.search_layer_name)

        if not self._save_search_features():
            self.errors = True
            return False

        if self.cancelled:
            return False

        self._report("Buffering feature(s)...", step, steps_max)
        step += 1

        self.buffer_layer_name = f"{self.buffer_prefix}_{self.radius}".replace('.', '_')
        self.buffer_output_file = self.output_folder / f"{self.buffer_layer_name}.shp"
        self.session.remove_layer(self.buffer_layer_name)

        if not self._buffer_search_features(params.buffer_size, unit):
            self.errors = True
            return False

        zero_buffer = float(params.buffer_size) == 0
        if not params.pause_map:
            if zero_buffer:
                self.session.zoom_to_layer(self.search_layer_name, 1, 10000)
            else:
                self.session.zoom_to_layer(self.buffer_layer_name, 1.05)

        fmt = settings['combined_sites_table_format'].lower()
        self.combined_sites_output_file = self.output_folder / f"{self.combined_sites_table_name}.{fmt}"
        if not self._create_combined_sites_table(params.combined_sites_table):
            self.errors = True
            return False

        self.label_counters = LabelCounters(
            params.overwrite_labels,
            [layer['node_group'] for layer in params.selected_layers]
        )

        for layer in params.selected_layers:
            if self.cancelled:
                break

            self._report(f"Processing '{layer['node_group']} - {layer['node_layer']}'...", step, 0)
            step += 1

            try:
                success = self.process_map_layer(layer, params)
            except Exception as e:
                logger.error(f"Error processing {layer['node_name']}: {e}")
                logger.debug("Layer processing failure", exc_info=True)
                success = False

            if not success:
                self.errors = True

        self._report("Cleaning up...", step, 0)

        if self.errors:
            return False

        self.clean_up_search(params.add_selected_layers)

        if self.cancelled:
            return False

        if not zero_buffer and self.settings['keep_buffer_area']:
            self.session.zoom_to_layer(self.buffer_layer_name, 1.05)

        self._save_map()
        return not self.errors

    def stop_search(self, search_ref: str, success: bool, open_log_file: bool = False) -> str:
        """Write the outcome of a search to its log and reset the run state."""
        if success:
            message = MESSAGE_COMPLETE
        elif self.errors:
            message = MESSAGE_ERRORS
        elif self.cancelled:
            message = MESSAGE_CANCELLED
        else:
            message = MESSAGE_UNEXPECTED

        self.last_message = message.format(search_ref)
        logger.info(LOG_RULE)
        logger.info(self.last_message)
        logger.info(LOG_RULE)

        self.session.pause_drawing(False)
        self.running = False
        self._report(None)

        detach_search_log(self._log_handler)
        self._log_handler = None

        if self.log_file is not None and (open_log_file or self.errors):
            logger.info(f"Search log: {self.log_file}")

        return self.last_message

    # ------------------------------------------------------------------
    # Search steps
    # ------------------------------------------------------------------

    def _create_output_folders(self, save_root: Path, save_folder: str, gis_folder: str) -> Optional[Path]:
        folder = save_root
        for part in (save_folder, gis_folder):
            if part:
                folder = folder / part
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create directory '{folder}'. System error: {e}")
            self.errors = True
            return None
        return folder

    def _count_search_features(self, search_clause: str) -> int:
        """
        Count the search features across the search layers.

        Returns 0 (stopping the search) when there are none, when they are
        spread over more than one layer, or when the analyst declines to
        continue with several features.
        """
        settings = self.settings
        layer_count = 0
        total = 0
        self.input_layer_name = None
        self.search_layer_extension = None

        for extension in settings['search_layer_extensions']:
            search_layer = settings['search_layer'] + extension
            if self.session.find_layer(search_layer) is None:
                continue

            try:
                count = self.session.count_features(search_layer, search_clause)
            except (KeyError, ValueError) as e:
                logger.error(f"Error counting features in {search_layer}: {e}")
                return 0

            if count == 0:
                logger.info(f"No features found in {search_layer}")
                continue

            logger.info(f"{count} feature(s) found in {search_layer}")
            if layer_count == 0:
                self.input_layer_name = search_layer
                self.search_layer_extension = extension
            total += count
            layer_count += 1

        if layer_count == 0:
            logger.info("No features found in any of the search layers")
            return 0

        if layer_count > 1:
            logger.info(f"{total} features found in different search layers")
            return 0

        if total > 1 and self.confirm is not None:
            question = (f"{total} features found in {self.input_layer_name} matching those "
                        f"criteria. Do you wish to continue?")
            if not self.confirm(question):
                logger.info(f"{total} features found in the search layers")
                return 0

        return total

    def _prepare_scratch(self, user_id: str) -> bool:
        self.scratch = ScratchWorkspace(user_id, self.scratch_folder)
        try:
            self.scratch.prepare()
        except OSError as e:
            logger.error(f"Error creating temporary workspace {self.scratch.folder}: {e}")
            return False

        self.session.remove_layer(self.scratch.master_name)
        self.session.remove_layer(self.scratch.output_name)
        self.session.remove_table(self.scratch.table_name)
        return True

    def _save_search_features(self) -> bool:
        logger.info("Saving search feature(s)")
        try:
            features = self.session.selected_features(self.input_layer_name)
            keep_layer(features, self.search_output_file)
        except Exception as e:
            logger.error(f"Error saving search feature(s): {e}")
            return False

        self.session.add_layer(self.search_layer_name, features, source=self.search_output_file)
        return True

    def _buffer_search_features(self, buffer_size: str, unit: Dict) -> bool:
        aggregate_columns = split_columns(self.settings['aggregate_columns'])
        logger.info(f"Buffering feature(s) with a distance of {buffer_size}{unit['short']}")

        try:
            search_features = self.session.selected_features(self.search_layer_name)
            buffered = buffer_features(search_features, float(buffer_size), unit['process'],
                                       aggregate_columns)
            keep_layer(buffered, self.buffer_output_file)
        except Exception as e:
            logger.error(f"Error during feature buffering: {e}")
            logger.debug("Buffer failure", exc_info=True)
            return False

        self.session.add_layer(self.buffer_layer_name, buffered, source=self.buffer_output_file)
        return True

    def _create_combined_sites_table(self, option: CombinedSitesTableOptions) -> bool:
        """Start the combined sites table when overwriting, or appending to a missing file."""
        output_file = self.combined_sites_output_file
        if option == CombinedSitesTableOptions.OVERWRITE or \
                (option == CombinedSitesTableOptions.APPEND and not output_file.exists()):
            if not write_empty_table(output_file, self.settings['combined_sites_table_columns'],
                                     self.settings['combined_sites_table_format']):
                logger.error("Error writing to combined sites table")
                return False
            logger.info("Combined sites table started")
        return True

    def _set_layer_in_map(self, layer_name: str, symbology_file: Optional[Path], position: int = -1) -> bool:
        """Apply a layer's symbology and move it into the search's group layer."""
        if symbology_file is not None and symbology_file.suffix.lower() == SYMBOLOGY_EXTENSION \
                and symbology_file.exists():
            if not self.session.apply_symbology_from_layer_file(layer_name, symbology_file):
                logger.error(f"Error applying symbology to '{layer_name}'")
                return False

        if self.group_layer_name:
            if not self.session.move_to_group_layer(layer_name, self.group_layer_name, position):
                logger.error(f"Error moving layer to '{layer_name}'")
                return False

        return True

    # ------------------------------------------------------------------
    # Map layers
    # ------------------------------------------------------------------

    def process_map_layer(self, layer: Dict, params: SearchParameters) -> bool:
        """
        Search one map layer.

        Returns:
            True if the layer was processed (including when nothing was found)
        """
        settings = self.settings
        map_layer_name = layer['layer_name']
        output_name = self._substitute(layer['gis_output_name'])
        table_output_name = self._substitute(layer['table_output_name'])
        table_format = layer['format'].lower()

        stats_columns = align_stats_columns(layer['columns'], layer['statistics_columns'],
                                            layer['group_columns'])
        sites_stats_columns = align_stats_columns(layer['combined_sites_columns'],
                                                  layer['combined_sites_statistics_columns'],
                                                  layer['combined_sites_group_columns'])

        logger.info("")
        logger.info(f"Starting analysis for {layer['node_name']}")

        if self.session.find_layer(map_layer_name) is None:
            logger.error(f"Layer '{map_layer_name}' not found in map")
            return False

        logger.info(f"Selecting features using selected feature(s) from layer {self.buffer_layer_name} ...")
        if not self.session.select_layer_by_location(map_layer_name, self.buffer_layer_name, 'INTERSECT', 'NEW'):
            logger.error(f"Error selecting layer {map_layer_name} by location")
            return False

        criteria = layer['criteria']
        if self.session.selection_count(map_layer_name) > 0 and criteria:
            logger.info(f"Refining selection with criteria {criteria} ...")
            if not self.session.select_layer_by_attributes(map_layer_name, criteria, 'AND'):
                logger.error(f"Error refining selection on layer {map_layer_name} with criteria "
                             f"{criteria}. Please check syntax and column names (case sensitive)")
                return False

        feature_count = self.session.selection_count(map_layer_name)
        if feature_count > 0:
            logger.info(f"{feature_count:,} feature(s) found")

            try:
                master = create_map_output(
                    self.session.selected_features(map_layer_name),
                    self.session.selected_features(self.buffer_layer_name),
                    layer['output_type']
                )
            except Exception as e:
                logger.error(f"Cannot output selection from {map_layer_name} to {self.scratch.master_name}: {e}")
                return False

            if master.empty:
                self.session.clear_layer_selection(map_layer_name)
                logger.info("No features found")
                return self._run_layer_macro(layer, table_output_name, table_format)

            if params.add_selected_layers == AddSelectedLayersOptions.WITH_LABELS and layer['label_column']:
                master = self._add_map_labels(master, params.overwrite_labels, layer)
                if master is None:
                    return False

            self.scratch.write_layer(self.scratch.master_name, master)
            master = self.scratch.read_layer(self.scratch.master_name)

            output_file = self.output_folder / output_name
            table_output_file = self.output_folder / f"{table_output_name}.{table_format}"
            include_headers = table_format == 'csv'
            radius_text = self.radius if layer['include_radius'] else 'none'
            area_unit = settings['area_measurement_unit'] if layer['include_area'] else ''
            search_features = self.session.selected_features(self.search_layer_name)

            if table_format and layer['columns']:
                logger.info("Extracting summary information ...")
                line_count = export_selection(
                    master, table_output_file, table_format, layer['columns'],
                    layer['group_columns'], stats_columns, layer['order_columns'],
                    include_headers, False, area_unit, layer['include_distance'], radius_text,
                    search_gdf=search_features, near_type=layer['include_near_fields'],
                    scratch=self.scratch
                )
                if line_count < 0:
                    logger.error(f"Error extracting summary from {self.scratch.master_name}")
                    return False
                logger.info(f"{line_count:,} record(s) exported")
                self.outputs.append(table_output_file)
                self._show_summary_table()

            if layer['keep_layer']:
                if not self.keep_layer(output_name, output_file, master, layer, params.add_selected_layers):
                    return False

            if layer['combined_sites_columns'] and params.combined_sites_table != CombinedSitesTableOptions.NONE:
                logger.info("Extracting summary output for combined sites table ...")
                line_count = export_selection(
                    master, self.combined_sites_output_file,
                    settings['combined_sites_table_format'], layer['combined_sites_columns'],
                    layer['combined_sites_group_columns'], sites_stats_columns,
                    layer['combined_sites_order_columns'],
                    False, True, area_unit, layer['include_distance'], radius_text,
                    search_gdf=search_features, near_type=layer['include_near_fields'],
                    scratch=self.scratch
                )
                if line_count < 0:
                    logger.error(f"Error extracting summary for combined sites table from {self.scratch.master_name}")
                    return False
                logger.info(f"{line_count:,} row(s) added to combined sites table")

            self.session.clear_layer_selection(map_layer_name)
            logger.info("Analysis complete")
        else:
            logger.info("No features found")

        return self._run_layer_macro(layer, table_output_name, table_format)

    def _show_summary_table(self) -> None:
        """Add the layer's summary statistics table, if one was made, to the map."""
        table = self.scratch.read_table(self.scratch.table_name)
        if table is not None:
            self.session.add_table(self.scratch.table_name, table,
                                   source=self.scratch.table_path(self.scratch.table_name))

    def _run_layer_macro(self, layer: Dict, table_output_name: str, table_format: str) -> bool:
        macro_name = layer['macro_name']
        if not macro_name:
            return True

        logger.info("Executing macro ...")
        macro_path = resolve_path(self.config, macro_name)
        if not run_macro(str(macro_path), self.output_folder, table_output_name, table_format):
            logger.error(f"Error executing macro {macro_name}")
            return False
        return True

    def _add_map_labels(
        self,
        master: gpd.GeoDataFrame,
        overwrite_option: OverwriteLabelOptions,
        layer: Dict
    ) -> Optional[gpd.GeoDataFrame]:
        """
        Number the map output's label column.

        A new label column is always numbered; an existing one only when
        overwriting is chosen for the search and allowed for the layer.
        """
        label_column = layer['label_column']
        new_label_field = not any(c.lower() == label_column.lower() for c in master.columns)

        if not (new_label_field or
                (overwrite_option != OverwriteLabelOptions.NO and layer['overwrite_labels'])):
            return master

        logger.info("Adding map labels ...")
        try:
            return self.label_counters.number_features(master, label_column, layer['key_column'],
                                                       layer['node_group'])
        except ValueError as e:
            logger.error(f"Error setting map labels to {label_column} in {self.scratch.master_name}: {e}")
            return None

    def keep_layer(
        self,
        layer_name: str,
        output_file: Path,
        master: gpd.GeoDataFrame,
        layer: Dict,
        add_option: AddSelectedLayersOptions
    ) -> bool:
        """Save a layer's map output as a shapefile and add it to the map if required."""
        add_to_map = add_option != AddSelectedLayersOptions.NO

        logger.info(f"Copying selected GIS features to {layer_name}.shp ...")
        try:
            shapefile = keep_layer(master, Path(f"{output_file}.shp"))
        except Exception as e:
            logger.error(f"Error copying selected GIS features to {layer_name}.shp: {e}")
            return False

        if not add_to_map:
            self.session.remove_layer(layer_name)
            return True

        self.session.add_layer(layer_name, master, source=shapefile)
        logger.info(f"Output {layer_name} added to display")

        layer_file_name = layer['layer_file_name']
        symbology_file = None
        if layer_file_name:
            symbology_file = resolve_path(self.config, self.settings['layer_folder']) / layer_file_name

        if not self._set_layer_in_map(layer_name, symbology_file, -1):
            return False

        label_column = layer['label_column']
        if add_option == AddSelectedLayersOptions.WITH_LABELS and layer['display_labels']:
            if layer['label_clause'] and not layer_file_name:
                try:
                    style = parse_label_clause(layer['label_clause'])
                except (ValueError, IndexError):
                    logger.error(f"Error adding labels to '{layer_name}'")
                    return False
                if self.session.label_layer(layer_name, label_column or '', style['font'], style['size'],
                                            'Normal', style['red'], style['green'], style['blue'],
                                            style['allow_overlap']):
                    logger.info(f"Labels added to output {layer_name}")
            elif label_column and not layer_file_name:
                if self.session.label_layer(layer_name, label_column):
                    logger.info(f"Labels added to output {layer_name}")
        else:
            self.session.switch_labels(layer_name, layer['display_labels'])

        return True

    # ------------------------------------------------------------------
    # Clean up
    # ------------------------------------------------------------------

    def clean_up_search(self, add_option: AddSelectedLayersOptions) -> None:
        """Keep or delete the buffer and search feature outputs and remove temporary data."""
        settings = self.settings
        layer_folder = resolve_path(self.config, settings['layer_folder'])
        logger.info("")

        if settings['keep_buffer_area']:
            if add_option != AddSelectedLayersOptions.NO:
                symbology_file = layer_folder / settings['buffer_layer_file']
                if not self._set_layer_in_map(self.buffer_layer_name, symbology_file, 0):
                    logger.error("Error setting buffer layer in the map")
                    self.errors = True
                logger.info("Buffer layer added to display")
            else:
                self.session.remove_layer(self.buffer_layer_name)
        else:
            self.session.remove_layer(self.buffer_layer_name)
            try:
                delete_shapefile(self.buffer_output_file)
                logger.info("Buffer layer deleted")
            except OSError:
                logger.error("Error deleting the buffer layer")
                self.errors = True

        if settings['keep_search_feature']:
            if add_option != AddSelectedLayersOptions.NO:
                symbology_name = f"{settings['search_symbology_base']}{self.search_layer_extension}{SYMBOLOGY_EXTENSION}"
                if not self._set_layer_in_map(self.search_layer_name, layer_folder / symbology_name, 0):
                    logger.error("Error setting search feature layer in the map")
                    self.errors = True
                logger.info("Search feature layer added to display")
            else:
                self.session.remove_layer(self.search_layer_name)
        else:
            self.session.remove_layer(self.search_layer_name)
            try:
                delete_shapefile(self.search_output_file)
                logger.info("Search feature layer deleted")
            except OSError:
                logger.error("Error deleting the search feature layer")
                self.errors = True

        self.session.remove_layer(self.scratch.master_name)
        self.session.remove_layer(self.scratch.output_name)
        self.session.remove_table(self.scratch.table_name)
        self.scratch.cleanup()

        self.session.clear_layer_selection(self.input_layer_name)
        self.session.remove_group_layer(self.group_layer_name)
        self.cleaned_up = True

    def abandon_search(self, params: SearchParameters) -> None:
        """
        Undo what a failed search left behind.

        The buffer and search feature layers come out of the map (their
        shapefiles are deleted unless the profile keeps them), selections are
        cleared and the scratch data is removed.
        """
        settings = self.settings
        logger.info("Removing temporary search layers ...")

        for layer in params.selected_layers:
            self.session.clear_layer_selection(layer['layer_name'])
        if self.input_layer_name:
            self.session.clear_layer_selection(self.input_layer_name)

        outputs = ((self.buffer_layer_name, self.buffer_output_file, settings['keep_buffer_area']),
                   (self.search_layer_name, self.search_output_file, settings['keep_search_feature']))
        for layer_name, output_file, keep in outputs:
            # Layers from an earlier search are left alone until this search replaces them
            if output_file is None:
                continue
            self.session.remove_layer(layer_name)
            if not keep:
                try:
                    delete_shapefile(output_file)
                except OSError as e:
                    logger.error(f"Error deleting {output_file}: {e}")

        if self.scratch is not None:
            self.session.remove_layer(self.scratch.master_name)
            self.session.remove_layer(self.scratch.output_name)
            self.session.remove_table(self.scratch.table_name)
            try:
                self.scratch.cleanup()
            except OSError as e:
                logger.error(f"Error removing temporary workspace {self.scratch.folder}: {e}")

        if self.group_layer_name:
            self.session.remove_group_layer(self.group_layer_name)
        self.cleaned_up = True

    def _save_map(self) -> None:
        target = self.session.path or self.output_folder / f"{self.search_layer_name}.html"
        try:
            self.session.save_map(target)
        except Exception as e:
            logger.error(f"Error saving map to {target}: {e}")
            logger.debug("Map save failure", exc_info=True)
            self.errors = True
