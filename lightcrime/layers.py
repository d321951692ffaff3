"""
Loaders for layers produced by earlier pipeline stages.
"""

from pathlib import Path
import geopandas as gpd

from .config import PipelineConfig


def load_stage_layer(path: Path, stage: str, crs: str) -> gpd.GeoDataFrame:
    """
    Read a layer written by ``stage`` and return it in ``crs``.

    Layers are written in the analysis CRS; a file that lost its CRS on the
    way through GeoJSON is tagged with it rather than reprojected.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} not found (run the '{stage}' stage first)")

    gdf = gpd.read_file(path)
    if gdf.crs is None:
        return gdf.set_crs(crs)
    if gdf.crs != crs:
        return gdf.to_crs(crs)
    return gdf


def load_crimes(config: PipelineConfig) -> gpd.GeoDataFrame:
    """Cleaned crime points."""
    return load_stage_layer(config.get_clean_crimes_path(), "preprocessing", config.crs.analysis)


def load_streetlights(config: PipelineConfig) -> gpd.GeoDataFrame:
    """Cleaned streetlights from every configured city."""
    return load_stage_layer(config.get_clean_streetlights_path(), "preprocessing", config.crs.analysis)


def load_polygon_counts(config: PipelineConfig) -> gpd.GeoDataFrame:
    """Polygons with crime and streetlight counts."""
    return load_stage_layer(config.get_polygon_counts_path(), "spatial_join", config.crs.analysis)
