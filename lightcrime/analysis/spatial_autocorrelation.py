#!/usr/bin/env python3
"""
Spatial Autocorrelation Module
==============================
Global and local Moran's I on the polygon counts.

Analysis steps:
1. Load polygon counts from the spatial join stage
2. Build contiguity (Queen) or KNN spatial weights, row-standardised
3. Calculate global Moran's I for crime and streetlight variables
4. Calculate LISA (Local Moran's I) and classify HH/LH/LL/HL clusters
5. Save results and a LISA cluster map
"""

from pathlib import Path
from typing import Dict, Optional, Tuple
import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.patches import Patch

from libpysal.weights import KNN, Queen, W
from esda.moran import Moran, Moran_Local

from ..config import PipelineConfig, load_config
from ..layers import load_polygon_counts
from ..reporting import print_header, significance_stars, tee_output


ANALYSIS_VARIABLES = ['crime_count', 'crime_density', 'light_density', 'crimes_per_1000_lights']
LISA_VARIABLE = 'crime_density'

QUADRANT_LABELS = {1: 'HH', 2: 'LH', 3: 'LL', 4: 'HL'}

LISA_COLORS = {
    'HH': '#d7191c',  # High-High (red)
    'LL': '#2c7bb6',  # Low-Low (blue)
    'HL': '#fdae61',  # High-Low (orange)
    'LH': '#abd9e9',  # Low-High (light blue)
    'NS': '#cccccc',  # Not significant
}


def build_weights(polygons: gpd.GeoDataFrame, kind: str = 'queen',
                  k: int = 6) -> Tuple[W, gpd.GeoDataFrame]:
    """
    Row-standardised spatial weights.

    Queen contiguity drops islands (polygons with no neighbours) and rebuilds.
    KNN uses polygon centroids.

    Returns:
        (weights, polygons the weights refer to)
    """
    polygons = polygons.reset_index(drop=True)

    if kind == 'queen':
        w = Queen.from_dataframe(polygons, silence_warnings=True)
        if w.islands:
            print(f"    {len(w.islands)} isolated areas removed")
            polygons = polygons.drop(index=w.islands).reset_index(drop=True)
            w = Queen.from_dataframe(polygons, silence_warnings=True)
    elif kind == 'knn':
        if len(polygons) <= k:
            raise ValueError(f"KNN weights need more than k={k} polygons, got {len(polygons)}")
        centroids = polygons.geometry.centroid
        coords = np.column_stack([centroids.x, centroids.y])
        w = KNN.from_array(coords, k=k)
    else:
        raise ValueError(f"Unknown weights type '{kind}'")

    w.transform = 'r'  # Row-standardize
    return w, polygons


def global_morans_i(y, w: W, permutations: int = 999) -> Dict[str, float]:
    """Global Moran's I with permutation inference"""
    moran = Moran(np.asarray(y, dtype=float), w, permutations=permutations)
    return {
        'morans_I': float(moran.I),
        'expected_I': float(moran.EI),
        'p_value': float(moran.p_sim) if permutations else float(moran.p_norm),
        'z_score': float(moran.z_sim) if permutations else float(moran.z_norm),
    }


def local_morans_i(y, w: W, permutations: int = 999, significance: float = 0.05,
                   seed: Optional[int] = None) -> pd.DataFrame:
    """
    LISA for one variable.

    Returns:
        DataFrame (one row per observation in weights order) with
        local_I, p_value, quadrant, cluster, significant and label
        (cluster when significant, otherwise 'NS')
    """
    if permutations < 1:
        raise ValueError(f"LISA needs at least one permutation, got {permutations}")

    y = np.asarray(y, dtype=float)
    lisa = Moran_Local(y, w, permutations=permutations, seed=seed)

    lisa_df = pd.DataFrame({
        'value': y,
        'local_I': lisa.Is,
        'p_value': lisa.p_sim,
        'quadrant': lisa.q,
    })
    lisa_df['cluster'] = lisa_df['quadrant'].map(QUADRANT_LABELS)
    lisa_df['significant'] = lisa_df['p_value'] < significance
    lisa_df['label'] = lisa_df['cluster'].where(lisa_df['significant'], 'NS')

    return lisa_df


def calculate_global_morans(gdf: gpd.GeoDataFrame, w: W, config: PipelineConfig,
                            results_dir: Path) -> pd.DataFrame:
    """Calculate Moran's I for all variables"""
    print_header("GLOBAL MORAN'S I ANALYSIS")

    np.random.seed(config.spatial.random_state)
    results = []

    for col in ANALYSIS_VARIABLES:
        if col not in gdf.columns:
            print(f"    {col:30s}: missing")
            continue

        y = gdf[col]
        if y.isna().any():
            # Ratio is undefined where a polygon has no streetlights
            print(f"    {col:30s}: skipped ({int(y.isna().sum())} undefined values)")
            continue

        res = global_morans_i(y.values, w, config.spatial.lisa_permutations)
        results.append({'variable': col, **res})
        print(f"    {col:30s}: I={res['morans_I']:7.4f}, p={res['p_value']:.4f} "
              f"{significance_stars(res['p_value'])}")

    results_df = pd.DataFrame(results)
    results_path = results_dir / 'global_morans_I_by_variable.csv'
    results_df.to_csv(results_path, index=False)
    print(f"\n    ✓ Saved results to: {results_path}")

    return results_df


def calculate_lisa(gdf: gpd.GeoDataFrame, w: W, config: PipelineConfig,
                   results_dir: Path) -> gpd.GeoDataFrame:
    """Calculate LISA (Local Moran's I) for crime density"""
    print_header(f"LISA ANALYSIS ({LISA_VARIABLE})")

    id_col = config.boundaries.id_column
    lisa_df = local_morans_i(
        gdf[LISA_VARIABLE].values, w,
        permutations=config.spatial.lisa_permutations,
        significance=config.spatial.lisa_significance,
        seed=config.spatial.random_state,
    )
    lisa_df.insert(0, id_col, gdf[id_col].values)

    print(f"\n    Cluster distribution:")
    print(lisa_df.groupby(['cluster', 'significant']).size().unstack(fill_value=0))

    lisa_path = results_dir / f'lisa_results_{LISA_VARIABLE}.csv'
    lisa_df.to_csv(lisa_path, index=False)
    print(f"\n    ✓ Saved LISA results to: {lisa_path}")

    return gpd.GeoDataFrame(lisa_df, geometry=gdf.geometry.values, crs=gdf.crs)


def plot_lisa_clusters(lisa_gdf: gpd.GeoDataFrame, config: PipelineConfig, assets_dir: Path):
    """Static LISA cluster map"""
    print("    Creating LISA cluster map...")
    try:
        fig, ax = plt.subplots(figsize=(10, 10))
        colors = lisa_gdf['label'].map(LISA_COLORS)
        lisa_gdf.plot(color=colors, edgecolor='white', linewidth=0.2, ax=ax)

        handles = [Patch(facecolor=LISA_COLORS[label], edgecolor='grey',
                         label=f"{label} (n={int((lisa_gdf['label'] == label).sum())})")
                   for label in ['HH', 'LL', 'HL', 'LH', 'NS']]
        ax.legend(handles=handles, loc='lower right', fontsize=10)
        ax.set_title('LISA Cluster Map: Crime Density', fontsize=14, fontweight='bold')
        ax.set_axis_off()

        plt.tight_layout()
        out = assets_dir / f'lisa_cluster_map_{LISA_VARIABLE}.png'
        plt.savefig(out, dpi=config.visualization.get('dpi', 300), bbox_inches='tight')
        plt.close()
        print(f"    ✓ Saved: {out}")
    except Exception as e:
        plt.close('all')
        print(f"    ⚠ LISA map failed: {e}")


def run_spatial_autocorrelation(config: Optional[PipelineConfig] = None):
    """
    Main execution function for spatial autocorrelation.

    Args:
        config: PipelineConfig instance. If None, loads from default.
    """
    if config is None:
        config = load_config()

    results_dir = config.get_results_subdir("spatial_autocorrelation")
    assets_dir = config.get_assets_subdir("spatial_autocorrelation")

    with tee_output(results_dir / 'spatial_autocorrelation_results.txt'):
        print_header("SPATIAL AUTOCORRELATION - POLYGON COUNTS")
        print(f"Weights: {config.spatial.weights}")
        print(f"Permutations: {config.spatial.lisa_permutations}")

        gdf = load_polygon_counts(config)
        print(f"    ✓ Polygons: {len(gdf):,}")

        print_header("BUILDING SPATIAL WEIGHTS")
        w, gdf = build_weights(gdf, config.spatial.weights, config.spatial.knn_neighbors)
        print(f"    ✓ Weights created for {w.n} areas")
        print(f"    ✓ Mean neighbors: {w.mean_neighbors:.2f}")

        morans_df = calculate_global_morans(gdf, w, config, results_dir)
        lisa_gdf = calculate_lisa(gdf, w, config, results_dir)
        plot_lisa_clusters(lisa_gdf, config, assets_dir)

        print_header("ANALYSIS COMPLETED")
        print(f"✓ Results saved to: {results_dir}")
        print(f"✓ Assets saved to: {assets_dir}")

    return morans_df, lisa_gdf


if __name__ == "__main__":
    run_spatial_autocorrelation()
