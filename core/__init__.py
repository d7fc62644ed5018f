"""
Core modules for Data Searches.

This package contains the search workflow and the map session it runs
against.

Modules:
    options: Choices offered on the search form
    map_session: In-memory map of layers, tables, selections and labels
    map_builder: Render a map session as an interactive Leaflet map
    scratch: Per-user temporary workspace
    exporter: Summary statistics and table export
    labeling: Incremental map label numbering
    database: Search reference lookup
    search_runner: Run one search end to end
    controller: Search form state and commands
"""

__version__ = '1.0.0'
