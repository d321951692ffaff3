#!/usr/bin/env python3
"""
Spatial Join Module
===================
Counts crimes and streetlights per administrative polygon.

Analysis steps:
1. Load the polygon layer and bring it onto the analysis grid
2. Join crime points and streetlight points to polygons
3. Derive densities (per km²) and crimes per 1,000 streetlights
4. Save the polygon table and draw choropleth maps
"""

from pathlib import Path
from typing import Optional
import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from ..config import PipelineConfig, load_config
from ..layers import load_crimes, load_streetlights
from ..reporting import print_header, tee_output


CHOROPLETH_VARIABLES = {
    'crime_count': 'Crimes',
    'crime_density': 'Crimes per km²',
    'light_density': 'Streetlights per km²',
    'crimes_per_1000_lights': 'Crimes per 1,000 streetlights',
}


def load_boundaries(config: PipelineConfig) -> gpd.GeoDataFrame:
    """Load the administrative polygons in the analysis CRS"""
    path = config.get_boundaries_path()
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    id_col = config.boundaries.id_column
    name_col = config.boundaries.name_column

    if config.boundaries.layer:
        gdf = gpd.read_file(path, layer=config.boundaries.layer)
    else:
        gdf = gpd.read_file(path)

    if gdf.crs is None:
        raise ValueError(f"Boundary layer has no CRS: {path}")
    if id_col not in gdf.columns:
        raise ValueError(f"Boundary id column '{id_col}' not found. Available: {list(gdf.columns)}")

    keep = [id_col] + ([name_col] if name_col and name_col in gdf.columns else []) + ['geometry']
    gdf = gdf[keep].to_crs(config.crs.analysis)

    invalid = ~gdf.geometry.is_valid
    if invalid.any():
        print(f"    Repairing {int(invalid.sum())} invalid polygons")
        gdf.loc[invalid, 'geometry'] = gdf.loc[invalid, 'geometry'].make_valid()

    return gdf.reset_index(drop=True)


def assign_polygon(points: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame, id_col: str) -> pd.Series:
    """
    Polygon id for every point (NaN where the point lies in no polygon).

    Points on a shared boundary are not strictly within either polygon and stay
    unassigned; a point inside overlapping polygons keeps the first match.
    """
    if points.crs != polygons.crs:
        raise ValueError(f"CRS mismatch: points {points.crs} vs polygons {polygons.crs}")

    joined = gpd.sjoin(
        points[['geometry']],
        polygons[[id_col, 'geometry']],
        how='inner',
        predicate='within',
    )
    joined = joined[~joined.index.duplicated(keep='first')]

    return joined[id_col].reindex(points.index)


def count_points_in_polygons(points: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame,
                             id_col: str, count_col: str = 'count') -> gpd.GeoDataFrame:
    """
    Count points per polygon.

    Returns:
        Copy of ``polygons`` with ``count_col``; polygons without points get 0
    """
    assigned = assign_polygon(points, polygons, id_col)
    counts = assigned.dropna().value_counts()

    result = polygons.copy()
    result[count_col] = result[id_col].map(counts).fillna(0).astype(int)
    return result


def compute_density(gdf: gpd.GeoDataFrame, count_col: str, density_col: str) -> gpd.GeoDataFrame:
    """Add ``density_col`` = count per km² (areas from the projected grid)."""
    gdf = gdf.copy()
    area_km2 = gdf.geometry.area / 1e6
    gdf[density_col] = np.where(area_km2 > 0, gdf[count_col] / area_km2, np.nan)
    return gdf


def build_polygon_counts(crimes: gpd.GeoDataFrame, streetlights: gpd.GeoDataFrame,
                         polygons: gpd.GeoDataFrame, id_col: str) -> gpd.GeoDataFrame:
    """Crime and streetlight counts, densities and ratio per polygon"""
    gdf = count_points_in_polygons(crimes, polygons, id_col, 'crime_count')
    gdf = count_points_in_polygons(streetlights, gdf, id_col, 'light_count')
    gdf = compute_density(gdf, 'crime_count', 'crime_density')
    gdf = compute_density(gdf, 'light_count', 'light_density')
    gdf['area_km2'] = gdf.geometry.area / 1e6

    lights = gdf['light_count'].where(gdf['light_count'] > 0)
    gdf['crimes_per_1000_lights'] = gdf['crime_count'] / lights * 1000

    return gdf


def plot_choropleths(gdf: gpd.GeoDataFrame, config: PipelineConfig, assets_dir: Path):
    """Static choropleth per variable"""
    print_header("Choropleth maps", level=2)

    cmap = config.visualization.get('choropleth_cmap', 'OrRd')
    dpi = config.visualization.get('dpi', 300)

    for col, label in CHOROPLETH_VARIABLES.items():
        try:
            fig, ax = plt.subplots(figsize=(10, 10))
            gdf.plot(
                column=col, cmap=cmap, legend=True, ax=ax,
                edgecolor='white', linewidth=0.2,
                missing_kwds={'color': 'lightgrey', 'label': 'No data'},
                legend_kwds={'label': label, 'shrink': 0.6},
            )
            ax.set_title(f"{label} by area", fontsize=14, fontweight='bold')
            ax.set_axis_off()

            plt.tight_layout()
            out = assets_dir / f'choropleth_{col}.png'
            plt.savefig(out, dpi=dpi, bbox_inches='tight')
            plt.close()
            print(f"    ✓ Saved: {out}")
        except Exception as e:
            plt.close('all')
            print(f"    ⚠ Choropleth for {col} failed: {e}")


def run_spatial_join(config: Optional[PipelineConfig] = None) -> gpd.GeoDataFrame:
    """
    Main execution function for the polygon counts.

    Args:
        config: PipelineConfig instance. If None, loads from default.
    """
    if config is None:
        config = load_config()

    results_dir = config.get_results_subdir("spatial_join")
    assets_dir = config.get_assets_subdir("spatial_join")
    id_col = config.boundaries.id_column

    with tee_output(results_dir / 'spatial_join_results.txt'):
        print_header("SPATIAL JOIN - POLYGON COUNTS")

        print_header("1. Loading layers", level=2)
        crimes = load_crimes(config)
        streetlights = load_streetlights(config)
        polygons = load_boundaries(config)
        print(f"    ✓ Crimes: {len(crimes):,}")
        print(f"    ✓ Streetlights: {len(streetlights):,}")
        print(f"    ✓ Polygons: {len(polygons):,}")

        print_header("2. Joining points to polygons", level=2)
        gdf = build_polygon_counts(crimes, streetlights, polygons, id_col)

        n_crimes_in = int(gdf['crime_count'].sum())
        n_lights_in = int(gdf['light_count'].sum())
        print(f"    Crimes inside polygons: {n_crimes_in:,} of {len(crimes):,}")
        print(f"    Streetlights inside polygons: {n_lights_in:,} of {len(streetlights):,}")
        print(f"    Polygons with no crimes: {int((gdf['crime_count'] == 0).sum()):,}")
        print(f"    Polygons with no streetlights: {int((gdf['light_count'] == 0).sum()):,}")

        print_header("3. Summary statistics", level=2)
        print(gdf[list(CHOROPLETH_VARIABLES)].describe().round(2).to_string())

        table_path = results_dir / 'polygon_counts.csv'
        pd.DataFrame(gdf.drop(columns='geometry')).to_csv(table_path, index=False)
        print(f"\n    ✓ Saved table to: {table_path}")

        layer_path = config.get_polygon_counts_path()
        gdf.to_file(layer_path, driver='GeoJSON')
        print(f"    ✓ Saved layer to: {layer_path}")

        plot_choropleths(gdf, config, assets_dir)

    return gdf


if __name__ == "__main__":
    run_spatial_join()
