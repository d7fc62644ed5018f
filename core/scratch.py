"""
Scratch workspace for intermediate search outputs.

Each search writes its intermediate layers to a scratch folder in the system
temp directory: one GeoPackage per feature layer and one CSV per table, named
per user so that analysts sharing a machine don't overwrite each other's
outputs.
"""

import getpass
import tempfile
from pathlib import Path
from typing import Optional, Union

import geopandas as gpd
import pandas as pd

from utils.logger import get_logger

logger = get_logger(__name__)

SCRATCH_FOLDER_NAME = 'DataSearchesTemp'


def get_user_id() -> str:
    """Return the login name of the current user, or 'Temp' if it can't be found."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = ''
    return user or 'Temp'


class ScratchWorkspace:
    """
    Per-user intermediate layers and tables for one search.

    Attributes:
        folder: Scratch folder path
        master_name: Name of the layer holding a map layer's selected features
        output_name: Name of the layer holding a map layer's map output
        table_name: Name of the summary statistics table
    """

    def __init__(self, user_id: str, folder: Union[str, Path, None] = None):
        self.user_id = user_id
        self.folder = Path(folder) if folder else Path(tempfile.gettempdir()) / SCRATCH_FOLDER_NAME
        self.master_name = f"TempMaster_{user_id}"
        self.output_name = f"TempOutput_{user_id}"
        self.table_name = f"TempOutput_{user_id}DBF"

    def prepare(self) -> None:
        """Create the scratch folder and remove stale outputs from a previous run."""
        self.folder.mkdir(parents=True, exist_ok=True)
        self.cleanup()
        logger.debug(f"Scratch workspace ready: {self.folder}")

    def layer_path(self, name: str) -> Path:
        return self.folder / f"{name}.gpkg"

    def table_path(self, name: str) -> Path:
        return self.folder / f"{name}.csv"

    def write_layer(self, name: str, gdf: gpd.GeoDataFrame) -> Path:
        path = self.layer_path(name)
        if path.exists():
            path.unlink()
        gdf.to_file(path, layer=name, driver='GPKG')
        return path

    def read_layer(self, name: str) -> Optional[gpd.GeoDataFrame]:
        path = self.layer_path(name)
        if not path.exists():
            return None
        return gpd.read_file(path, layer=name)

    def write_table(self, name: str, df: pd.DataFrame) -> Path:
        path = self.table_path(name)
        df.to_csv(path, index=False)
        return path

    def read_table(self, name: str) -> Optional[pd.DataFrame]:
        path = self.table_path(name)
        if not path.exists():
            return None
        return pd.read_csv(path)

    def delete(self, name: str) -> None:
        for path in (self.layer_path(name), self.table_path(name)):
            if path.exists():
                path.unlink()

    def cleanup(self) -> None:
        """Delete this user's scratch layers and tables."""
        for name in (self.master_name, self.output_name, self.table_name):
            self.delete(name)
