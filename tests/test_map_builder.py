"""Tests for HTML map rendering and popups."""

import folium

from core.map_builder import create_web_map
from utils.popup_formatters import build_popup_html, format_popup_value


def test_format_popup_value():
    assert format_popup_value('Area', 12.3456) == '12.35'
    assert format_popup_value('Area', float('nan')) == ''
    assert format_popup_value('Name', None) == ''
    assert format_popup_value('Name', '<b>') == '&lt;b&gt;'
    assert format_popup_value('Link', 'https://example.org').startswith('<a href="https://example.org"')


def test_build_popup_html_shows_label():
    html = build_popup_html('SSSI', {'SSSI_NAME': 'Alpha Meadow', 'Label': 1}, 'Label')
    assert '<i>SSSI</i>' in html
    assert 'font-weight: bold; margin: 5px 0;\'>1</div>' in html
    assert '<b>SSSI_NAME:</b> Alpha Meadow<br>' in html


def test_create_web_map(session):
    session.label_layer('SSSI', 'SSSI_NAME')
    session.zoom_to_layer('SSSI')

    m = create_web_map(session)
    assert isinstance(m, folium.Map)

    html = m.get_root().render()
    assert 'Designations / SSSI' in html
    assert 'Habitats / Ancient Woodland' in html
    assert 'Test Searches' in html
    assert 'Alpha Meadow' in html


def test_create_web_map_skips_hidden_layers(session):
    session.find_layer('Ancient Woodland').visible = False
    html = create_web_map(session).get_root().render()
    assert 'Habitats / Ancient Woodland' not in html
