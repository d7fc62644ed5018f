"""
Search form state for Data Searches.

SearchController holds what the analyst has entered for the next search
(reference, site name, buffer, layers and options), fills it with the
profile's defaults, validates it and runs the search. It is the model behind
the command line and any other front end.
"""

import math
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.database import lookup_search_ref
from core.map_session import MapSession
from core.options import AddSelectedLayersOptions, CombinedSitesTableOptions, OverwriteLabelOptions
from core.search_runner import DataSearch, SearchParameters
from utils.logger import get_logger
from utils.string_functions import build_search_clause

logger = get_logger(__name__)


class MessageType(Enum):
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'


class SearchController:
    """
    Form state and commands for running data searches.

    Args:
        config: Loaded search profile
        session: Map holding the search layers and map layers
        confirm: Asked when the analyst's go-ahead is needed; returns True to continue
        progress: Receives (text, step, max_steps) progress updates
    """

    def __init__(
        self,
        config: Dict,
        session: MapSession,
        confirm: Optional[Callable[[str], bool]] = None,
        progress: Optional[Callable[[Optional[str], int, int], None]] = None,
        scratch_folder=None
    ):
        self.config = config
        self.settings = config['settings']
        self.session = session
        self.search = DataSearch(config, session, confirm=confirm, progress=progress,
                                 scratch_folder=scratch_folder)

        self.open_layers: List[Dict] = []
        self.selected_layer_names: List[str] = []
        self.closed_layers: List[str] = []
        self.message: Optional[str] = None
        self.message_type: Optional[MessageType] = None

        self.reset()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def show_message(self, message: str, message_type: MessageType = MessageType.INFO) -> None:
        self.message = message
        self.message_type = message_type
        if message_type == MessageType.INFO:
            logger.info(message)
        else:
            logger.warning(message)

    def clear_message(self) -> None:
        self.message = None
        self.message_type = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.search.running

    @property
    def cancelled(self) -> bool:
        return self.search.cancelled

    @property
    def last_message(self) -> Optional[str]:
        return self.search.last_message

    @property
    def completed(self) -> bool:
        return bool(self.last_message) and self.last_message.endswith('complete!')

    @property
    def buffer_units_list(self) -> List[str]:
        return [unit['display'] for unit in self.settings['buffer_units']]

    @property
    def site_name_visible(self) -> bool:
        return self.settings['require_site_name']

    @property
    def organisation_visible(self) -> bool:
        return self.settings['require_organisation']

    @property
    def add_to_map_visible(self) -> bool:
        return self.settings['default_add_selected_layers'] != -1

    @property
    def overwrite_labels_visible(self) -> bool:
        """Shown when layers are being added to the map (any choice but the first)."""
        if not self.add_to_map_visible:
            return False
        options = self.settings['add_selected_layers_options']
        return self.selected_add_to_map in options and options.index(self.selected_add_to_map) > 0

    @property
    def combined_sites_visible(self) -> bool:
        return self.settings['default_combined_sites_table'] != -1

    @property
    def selected_layers(self) -> List[Dict]:
        return [layer for layer in self.open_layers if layer['node_name'] in self.selected_layer_names]

    @property
    def run_enabled(self) -> bool:
        settings = self.settings
        return (not self.running
                and bool(self.selected_layers)
                and bool(self.search_ref)
                and (not settings['require_site_name'] or bool(self.site_name))
                and (not settings['require_organisation'] or bool(self.organisation))
                and bool(self.buffer_size)
                and self.buffer_unit_index >= 0
                and (settings['default_add_selected_layers'] == -1 or self.selected_add_to_map is not None)
                and (settings['default_overwrite_labels'] == -1 or self.selected_overwrite_labels is not None)
                and (settings['default_combined_sites_table'] == -1 or self.selected_combined_sites is not None))

    @property
    def cancel_enabled(self) -> bool:
        return self.running and not self.cancelled

    # ------------------------------------------------------------------
    # Form
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Set every form field to the profile's default and reload the layers."""
        settings = self.settings
        self.selected_layer_names = []

        self.search_ref: Optional[str] = None
        self.site_name: Optional[str] = None
        self.organisation: Optional[str] = None

        self.buffer_size = str(settings['default_buffer_size'])
        self.buffer_unit_index = settings['default_buffer_unit'] - 1 if settings['default_buffer_unit'] > 0 else -1

        self.selected_add_to_map = self._default_option(
            settings['add_selected_layers_options'], settings['default_add_selected_layers'])
        self.selected_overwrite_labels = self._default_option(
            settings['overwrite_label_options'], settings['default_overwrite_labels'])
        self.selected_combined_sites = self._default_option(
            settings['combined_sites_table_options'], settings['default_combined_sites_table'])

        self.clear_log_file = settings['default_clear_log_file']
        self.open_log_file = settings['default_open_log_file']
        self.pause_map = settings['pause_map']

        self.load_layers()

    @staticmethod
    def _default_option(options: List[str], default: int) -> Optional[str]:
        if 0 < default <= len(options):
            return options[default - 1]
        return None

    def load_layers(self) -> List[Dict]:
        """
        List the profile's map layers that are open in the map.

        Layers flagged for preselection are selected. Missing layers flagged
        with a load warning are reported.
        """
        self.clear_message()
        self.open_layers = []
        self.closed_layers = []

        for layer in self.config['layers']:
            if self.session.find_layer(layer['layer_name']) is not None:
                self.open_layers.append(layer)
                if layer['preselect_layer'] and layer['node_name'] not in self.selected_layer_names:
                    self.selected_layer_names.append(layer['node_name'])
            elif layer['load_warning']:
                self.closed_layers.append(layer['layer_name'])

        if not self.open_layers:
            self.show_message("No search layers in active map.", MessageType.WARNING)

        if len(self.closed_layers) == 1:
            self.show_message(f"Layer '{self.closed_layers[0]}' is not loaded.", MessageType.WARNING)
        elif self.closed_layers:
            self.show_message(f"{len(self.closed_layers)} layers are not loaded.", MessageType.WARNING)

        return self.open_layers

    def select_layers(self, node_names: List[str]) -> List[str]:
        """
        Select layers by node name (case-insensitive).

        Returns:
            Names that don't match any open layer
        """
        lookup = {layer['node_name'].lower(): layer['node_name'] for layer in self.open_layers}
        unknown = []
        self.selected_layer_names = []
        for name in node_names:
            match = lookup.get(name.strip().lower())
            if match is None:
                unknown.append(name)
            elif match not in self.selected_layer_names:
                self.selected_layer_names.append(match)
        return unknown

    def set_search_ref(self, search_ref: Optional[str]) -> None:
        """
        Set the search reference.

        References longer than two characters are looked up in the search
        layers, and in the enquiries database to fill in a blank site name or
        organisation.
        """
        self.search_ref = search_ref
        if not search_ref or len(search_ref) <= 2:
            return

        if not self.find_search_features(search_ref):
            self.show_message("Search ref not found in the search layers.", MessageType.WARNING)
        else:
            self.clear_message()

        if self.settings['database_path'] and (self.settings['require_site_name']
                                               or self.settings['require_organisation']):
            found = lookup_search_ref(self.config, search_ref)
            if found is None:
                self.show_message("Search ref not found in database", MessageType.WARNING)
                return
            site_name, organisation = found
            if not self.site_name:
                self.site_name = site_name
            if not self.organisation:
                self.organisation = organisation

    def find_search_features(self, search_ref: str) -> bool:
        """Check whether any search layer has a feature with the reference."""
        reference = search_ref.replace('/', self.settings['rep_char'])
        clause = build_search_clause(self.settings['search_column'], reference)
        for extension in self.settings['search_layer_extensions']:
            search_layer = self.settings['search_layer'] + extension
            if self.session.find_layer(search_layer) is None:
                continue
            try:
                if self.session.count_features(search_layer, clause) > 0:
                    return True
            except (KeyError, ValueError) as e:
                logger.debug(f"Could not search {search_layer}: {e}")
        return False

    def validate(self) -> bool:
        """Check the form is complete, showing a warning for the first problem."""
        settings = self.settings

        if not self.search_ref:
            self.show_message("Please enter a search reference.", MessageType.WARNING)
            return False

        if settings['require_site_name'] and not self.site_name:
            self.show_message("Please enter a site name.", MessageType.WARNING)
            return False

        if settings['require_organisation'] and not self.organisation:
            self.show_message("Please enter an organisation.", MessageType.WARNING)
            return False

        if not self.selected_layers:
            self.show_message("Please select at least one layer to search.", MessageType.WARNING)
            return False

        if not self.buffer_size:
            self.show_message("Please enter a buffer size.", MessageType.WARNING)
            return False

        try:
            buffer_number = float(self.buffer_size)
        except ValueError:
            buffer_number = -1
        if not math.isfinite(buffer_number) or buffer_number < 0:
            self.show_message("Please enter a positive number for the buffer size.", MessageType.WARNING)
            return False

        if self.buffer_unit_index < 0 or self.buffer_unit_index >= len(settings['buffer_units']):
            self.show_message("Please select a buffer unit.", MessageType.WARNING)
            return False

        if settings['default_add_selected_layers'] != -1 and not self.selected_add_to_map:
            self.show_message("Please select whether layers should be added to the map.", MessageType.WARNING)
            return False

        if settings['default_overwrite_labels'] != -1 and \
                (self.selected_add_to_map or '').lower() != 'no' and not self.selected_overwrite_labels:
            self.show_message("Please select whether to overwrite labels for map layers.", MessageType.WARNING)
            return False

        if settings['default_combined_sites_table'] != -1 and not self.selected_combined_sites:
            self.show_message("Please select whether the combined sites table should be created.",
                              MessageType.WARNING)
            return False

        self.clear_message()
        return True

    def build_parameters(self) -> SearchParameters:
        """Turn the form into the parameters of a search."""
        settings = self.settings

        add_option = AddSelectedLayersOptions.NO
        if settings['default_add_selected_layers'] != -1:
            add_option = AddSelectedLayersOptions.from_text(self.selected_add_to_map)

        overwrite_option = OverwriteLabelOptions.NO
        if settings['default_overwrite_labels'] != -1:
            overwrite_option = OverwriteLabelOptions.from_text(self.selected_overwrite_labels)

        combined_option = CombinedSitesTableOptions.NONE
        if settings['default_combined_sites_table'] != -1:
            combined_option = CombinedSitesTableOptions.from_text(self.selected_combined_sites)

        return SearchParameters(
            search_ref=self.search_ref,
            selected_layers=self.selected_layers,
            buffer_size=self.buffer_size.strip(),
            buffer_unit_index=self.buffer_unit_index,
            site_name=self.site_name,
            organisation=self.organisation,
            add_selected_layers=add_option,
            overwrite_labels=overwrite_option,
            combined_sites_table=combined_option,
            clear_log_file=self.clear_log_file,
            open_log_file=self.open_log_file,
            pause_map=self.pause_map,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def run(self) -> bool:
        """Validate the form and run the search."""
        if self.running:
            return False

        if not self.validate():
            return False

        if not self.find_search_features(self.search_ref):
            self.show_message("Search ref not found in any of the search layers.", MessageType.WARNING)
            return False

        self.clear_message()
        success = self.search.run(self.build_parameters())

        message_type = MessageType.INFO if success else MessageType.ERROR
        self.show_message(self.search.last_message, message_type)
        return success

    def cancel(self) -> None:
        if self.running:
            self.search.cancel()
