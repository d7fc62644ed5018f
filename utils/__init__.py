"""
Utility modules for Data Searches.

This package contains helpers used throughout the application.

Modules:
    logger: Logging configuration and the per-search log file
    string_functions: Name substitution, column lists and where clauses
    macro_runner: Run a layer's post-processing macro
    popup_formatters: Map popup formatting
"""

__version__ = '1.0.0'
