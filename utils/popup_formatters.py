"""
Popup formatting utilities for Data Searches maps.

Functions:
    format_popup_value: Format a single attribute value for popup HTML
    build_popup_html: Build the popup for one feature
"""

from html import escape
from typing import Any, Dict, Optional


def format_popup_value(col: str, value: Any) -> str:
    """
    Format an attribute value for display, linking URLs.

    Parameters:
    -----------
    col : str
        Column name (columns named like 'url' are treated as links)
    value : Any
        Value to format

    Returns:
    --------
    str
        HTML-safe text

    Examples:
        >>> format_popup_value('SiteName', 'Ashdown Forest')
        'Ashdown Forest'

        >>> format_popup_value('Area_ha', 12.3456)
        '12.35'

        >>> format_popup_value('Grade', None)
        ''
    """
    if value is None or (isinstance(value, float) and value != value):
        return ''

    if isinstance(value, float):
        return f"{value:.2f}"

    value_str = str(value)
    if 'url' in col.lower() or value_str.startswith(('http://', 'https://')):
        display_text = value_str if len(value_str) <= 60 else f"{value_str[:57]}..."
        return f'<a href="{escape(value_str)}" target="_blank">{escape(display_text)}</a>'

    return escape(value_str)


def build_popup_html(layer_name: str, properties: Dict[str, Any], label_column: Optional[str] = None) -> str:
    """Popup with the layer name, the feature's label and its attributes."""
    html = f"<div style='font-size: 10px;'><i>{escape(layer_name)}</i></div>"

    if label_column and label_column in properties:
        label = format_popup_value(label_column, properties[label_column])
        html += f"<div style='font-size: 14px; font-weight: bold; margin: 5px 0;'>{label}</div>"

    html += "<hr style='margin: 5px 0;'>"
    for key, value in properties.items():
        html += f"<b>{escape(str(key))}:</b> {format_popup_value(key, value)}<br>"
    return html
