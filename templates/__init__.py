"""
HTML templates for Data Searches.

This package contains Jinja2 templates for the interactive map.

Templates:
    legend_panel.html: Legend listing the map's layers by group
"""

__version__ = '1.0.0'
