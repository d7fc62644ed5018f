"""
Geometry Processing Package

This package provides the geoprocessing used by a data search: reading
layer files, buffering search features in a projected CRS and cutting map
layers to the buffer.

Modules:
    load_input: Read layer files into GeoDataFrames
    buffering: Buffer and dissolve search features
    clipping: Select by location and create the map output of a layer

Usage:
    from geometry_input.buffering import buffer_features
    from geometry_input.clipping import create_map_output

    buffer_gdf = buffer_features(search_gdf, 2, 'Kilometers', ['ref'])
    output_gdf = create_map_output(layer_gdf, buffer_gdf, 'CLIP')
"""

from geometry_input.load_input import load_layer_file
from geometry_input.buffering import buffer_features
from geometry_input.clipping import create_map_output, select_by_location

__all__ = [
    'load_layer_file',
    'buffer_features',
    'create_map_output',
    'select_by_location'
]
