#!/usr/bin/env python3
"""
Coordinate Cleaning Module
==========================
Loads per-city streetlight inventories and brings them onto one grid.

Each council publishes its own format: CSV with lat/long, Excel sheets with
Irish Grid eastings/northings, GeoJSON, KML or Shapefile exports.

This module:
1. Reads each configured source (CSV/XLSX/GeoJSON/KML/Shapefile)
2. Renames columns and drops missing or placeholder coordinates
3. Builds point geometries in the declared source CRS
4. Reprojects to the British National Grid (EPSG:27700)
5. Removes points outside the study bounds and exact duplicates
6. Saves one GeoJSON per city plus a combined layer
"""

from pathlib import Path
from typing import List, Optional, Sequence
import numpy as np
import pandas as pd
import geopandas as gpd
import shapely

from ..config import CityConfig, PipelineConfig, TABULAR_FORMATS, infer_format, load_config
from ..reporting import print_header, tee_output


def read_point_table(path: Path, fmt: Optional[str] = None,
                     sheet: Optional[str] = None, layer: Optional[str] = None):
    """
    Read a point source into a DataFrame (CSV/XLSX) or GeoDataFrame (vector formats).

    Args:
        path: File to read
        fmt: Reader format; inferred from the extension when None
        sheet: Excel sheet name (xlsx only)
        layer: Layer name for multi-layer vector files

    Returns:
        DataFrame or GeoDataFrame
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    fmt = (fmt or infer_format(path)).lower()

    if fmt == "csv":
        return pd.read_csv(path, low_memory=False)
    if fmt == "xlsx":
        return pd.read_excel(path, sheet_name=sheet if sheet is not None else 0)
    if fmt in ("geojson", "kml", "shp", "gpkg"):
        if layer is not None:
            return gpd.read_file(path, layer=layer)
        return gpd.read_file(path)

    raise ValueError(f"Unsupported format '{fmt}' for {path}")


def clean_coordinates(df: pd.DataFrame, x_col: str, y_col: str) -> pd.DataFrame:
    """
    Drop rows whose coordinates are missing, non-numeric, non-finite or (0, 0).

    Coordinates are coerced to float in place of the original columns.
    """
    missing = [col for col in (x_col, y_col) if col not in df.columns]
    if missing:
        raise ValueError(
            f"Missing coordinate columns {missing}. Available: {list(df.columns)}"
        )

    df = df.copy()
    n_raw = len(df)

    df[x_col] = pd.to_numeric(df[x_col], errors='coerce')
    df[y_col] = pd.to_numeric(df[y_col], errors='coerce')

    finite = np.isfinite(df[x_col]) & np.isfinite(df[y_col])
    placeholder = (df[x_col] == 0) & (df[y_col] == 0)
    df = df[finite & ~placeholder]

    print(f"    Coordinates: {n_raw:,} raw → {len(df):,} valid "
          f"({int((~finite).sum()):,} missing/non-numeric, {int(placeholder.sum()):,} at (0, 0))")

    return df


def to_points(df: pd.DataFrame, x_col: str, y_col: str, crs: str) -> gpd.GeoDataFrame:
    """Build a point GeoDataFrame from coordinate columns."""
    geometry = gpd.points_from_xy(df[x_col], df[y_col])
    return gpd.GeoDataFrame(df, geometry=geometry, crs=crs)


def reproject(gdf: gpd.GeoDataFrame, target_crs: str) -> gpd.GeoDataFrame:
    """Reproject to ``target_crs``; layers without a CRS are rejected."""
    if gdf.crs is None:
        raise ValueError("Layer has no CRS; declare 'source_crs' in the configuration")
    return gdf.to_crs(target_crs)


def clip_to_bounds(gdf: gpd.GeoDataFrame, bounds: Sequence[float]) -> gpd.GeoDataFrame:
    """Keep points whose coordinates fall inside [minx, miny, maxx, maxy]."""
    minx, miny, maxx, maxy = bounds
    x = gdf.geometry.x
    y = gdf.geometry.y
    inside = (x >= minx) & (x <= maxx) & (y >= miny) & (y <= maxy)
    return gdf[inside]


def drop_duplicate_points(gdf: gpd.GeoDataFrame, precision: int = 2) -> gpd.GeoDataFrame:
    """Drop points sharing the same location (rounded to ``precision`` decimals)."""
    coords = pd.DataFrame({
        'x': gdf.geometry.x.round(precision).values,
        'y': gdf.geometry.y.round(precision).values,
    })
    return gdf[~coords.duplicated().values]


def _vector_to_points(gdf: gpd.GeoDataFrame, source_crs: str) -> gpd.GeoDataFrame:
    """Reduce a vector layer to valid 2D point geometries."""
    gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty]
    gdf = gdf.explode(index_parts=False)
    gdf = gdf[gdf.geometry.geom_type == 'Point'].copy()
    # KML placemarks carry a Z coordinate
    flat = gpd.GeoSeries(shapely.force_2d(np.asarray(gdf.geometry.values)),
                         index=gdf.index, crs=gdf.crs)
    gdf = gdf.set_geometry(flat)
    if gdf.crs is None:
        gdf = gdf.set_crs(source_crs)
    return gdf


def load_city_streetlights(city: CityConfig, config: PipelineConfig) -> gpd.GeoDataFrame:
    """
    Load and clean one city's streetlight inventory.

    Returns:
        Point GeoDataFrame in the analysis CRS with ``light_id`` and ``city`` columns
    """
    print_header(f"{city.name}", level=2)

    path = config.get_city_source_path(city)
    print(f"    Loading: {path}")
    raw = read_point_table(path, city.resolved_format, sheet=city.sheet, layer=city.layer)
    print(f"    ✓ Rows: {len(raw):,}")

    if city.rename:
        raw = raw.rename(columns=city.rename)

    if city.resolved_format in TABULAR_FORMATS:
        df = clean_coordinates(raw, city.x_column, city.y_column)
        gdf = to_points(df, city.x_column, city.y_column, city.source_crs)
    else:
        gdf = _vector_to_points(raw, city.source_crs)
        print(f"    Point geometries: {len(gdf):,}")

    gdf = reproject(gdf, config.crs.analysis)

    n_before = len(gdf)
    gdf = clip_to_bounds(gdf, config.cleaning.bounds)
    print(f"    Outside study bounds: {n_before - len(gdf):,}")

    if config.cleaning.drop_duplicates:
        n_before = len(gdf)
        gdf = drop_duplicate_points(gdf)
        print(f"    Duplicate locations: {n_before - len(gdf):,}")

    gdf = gdf.reset_index(drop=True)
    gdf['city'] = city.name
    gdf['light_id'] = [f"{city.slug}_{i}" for i in range(len(gdf))]
    gdf.attrs['n_raw'] = len(raw)

    print(f"    ✓ Clean streetlights: {len(gdf):,}")
    return gdf


def combine_streetlights(layers: List[gpd.GeoDataFrame], crs: str) -> gpd.GeoDataFrame:
    """Stack per-city layers into one layer with the shared columns only."""
    frames = [layer[['light_id', 'city', 'geometry']] for layer in layers]
    return gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), geometry='geometry', crs=crs)


def run_coordinate_cleaning(config: Optional[PipelineConfig] = None) -> gpd.GeoDataFrame:
    """
    Clean every configured city and save per-city and combined layers.

    Args:
        config: PipelineConfig instance. If None, loads from default.

    Returns:
        Combined streetlight GeoDataFrame in the analysis CRS
    """
    if config is None:
        config = load_config()

    if not config.cities:
        raise ValueError("No cities configured; add entries under 'cities' in the config")

    config.paths.ensure_dirs()
    results_dir = config.get_results_subdir("preprocessing")

    with tee_output(results_dir / 'streetlight_cleaning_log.txt'):
        print_header("STREETLIGHT COORDINATE CLEANING")
        print(f"Target CRS: {config.crs.analysis}")
        print(f"Cities: {', '.join(c.name for c in config.cities)}")

        layers = []
        summary = []
        for city in config.cities:
            gdf = load_city_streetlights(city, config)
            if gdf.empty:
                raise ValueError(f"No valid streetlights left for {city.name} after cleaning")

            out_path = config.get_clean_streetlights_path(city)
            gdf.to_file(out_path, driver='GeoJSON')
            print(f"    ✓ Saved: {out_path}")

            n_raw = gdf.attrs.get('n_raw', len(gdf))
            summary.append({
                'city': city.name,
                'source_crs': city.source_crs,
                'raw': n_raw,
                'kept': len(gdf),
                'dropped': n_raw - len(gdf),
            })
            layers.append(gdf)

        combined = combine_streetlights(layers, config.crs.analysis)
        combined_path = config.get_clean_streetlights_path()
        combined.to_file(combined_path, driver='GeoJSON')

        summary_df = pd.DataFrame(summary)
        summary_df.to_csv(results_dir / 'streetlight_cleaning_summary.csv', index=False)

        print_header("CLEANING SUMMARY")
        print(summary_df.to_string(index=False))
        print(f"\n✓ Combined layer ({len(combined):,} lights): {combined_path}")

    return combined


if __name__ == "__main__":
    run_coordinate_cleaning()
