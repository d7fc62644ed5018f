"""
Configuration package for Data Searches.

This package contains search profile loading and validation.

Modules:
    config_loader: Load and validate the XML search profile
"""

__version__ = '1.0.0'
