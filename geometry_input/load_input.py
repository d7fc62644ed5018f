"""
Layer file loading module.

Reads the vector files that make up a map document's layers. Supports any
format GeoPandas reads (Shapefile, GeoPackage, GeoJSON, FileGeodatabase)
plus zipped shapefiles.
"""

import zipfile
import tempfile
from pathlib import Path
from typing import Optional, Union

import geopandas as gpd

from utils.logger import get_logger

logger = get_logger(__name__)


def load_layer_file(file_path: Union[str, Path], layer: Optional[str] = None) -> gpd.GeoDataFrame:
    """
    Load a map layer from a vector file.

    Args:
        file_path: Path to the file
        layer: Layer within a multi-layer source (GeoPackage, FileGeodatabase)

    Returns:
        GeoDataFrame in the file's CRS (may have no features)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file cannot be read or has no CRS
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Layer file not found: {file_path}")

    try:
        if file_path.suffix.lower() == '.zip':
            with tempfile.TemporaryDirectory() as tmpdir:
                with zipfile.ZipFile(file_path, 'r') as zip_ref:
                    zip_ref.extractall(tmpdir)
                shp_files = sorted(Path(tmpdir).rglob('*.shp'))
                if not shp_files:
                    raise ValueError("No shapefile (.shp) found in ZIP archive")
                if len(shp_files) > 1:
                    logger.warning(f"Multiple shapefiles in {file_path.name}, using {shp_files[0].name}")
                gdf = gpd.read_file(shp_files[0])
        elif layer:
            gdf = gpd.read_file(file_path, layer=layer)
        else:
            gdf = gpd.read_file(file_path)
    except zipfile.BadZipFile:
        raise ValueError(f"Invalid ZIP file: {file_path}")
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"Failed to read layer file {file_path}: {e}")

    if gdf.crs is None:
        raise ValueError(f"Layer file has no Coordinate Reference System (CRS) defined: {file_path}")

    logger.debug(f"Loaded {len(gdf)} feature(s) from {file_path.name} ({gdf.crs})")
    return gdf
