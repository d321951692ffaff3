#!/usr/bin/env python3
"""
Distance Analysis Module
========================
Are crimes closer to (or further from) streetlights than chance would put them?

Analysis steps:
1. Assign crimes to administrative polygons
2. Draw stratified random control points: per polygon, as many points
   (times a multiplier) as the polygon has crimes, uniform over its area
3. Subsample crimes and controls to a common sample size
4. Measure each point's distance to its nearest streetlight
5. Compare the two distance distributions with the two-sample
   Kolmogorov-Smirnov test and the Mann-Whitney U test, overall and per city
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, Optional, Union
import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from scipy import stats
from sklearn.neighbors import NearestNeighbors
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns

from ..config import PipelineConfig, load_config
from ..layers import load_crimes, load_streetlights
from ..reporting import print_header, significance_stars, tee_output
from .spatial_join import assign_polygon, load_boundaries


SAMPLE_COLORS = {'crime': '#d7191c', 'random': '#2c7bb6'}

# Rejection sampling gives up on a polygon after this many rounds
MAX_SAMPLING_ROUNDS = 1000


@dataclass
class DistanceTestResult:
    """Outcome of comparing crime and random nearest-streetlight distances."""
    n_crime: int
    n_random: int
    crime_median: float
    random_median: float
    crime_mean: float
    random_mean: float
    ks_statistic: float
    ks_pvalue: float
    mw_statistic: float
    mw_pvalue: float
    rank_biserial: float
    alpha: float = 0.05

    @property
    def ks_significant(self) -> bool:
        return self.ks_pvalue < self.alpha

    @property
    def mw_significant(self) -> bool:
        return self.mw_pvalue < self.alpha

    @property
    def crimes_closer(self) -> bool:
        """Crimes sit nearer to streetlights than random points (by median)."""
        return self.crime_median < self.random_median

    def to_dict(self) -> Dict[str, Any]:
        row = asdict(self)
        row.update({
            'ks_significant': self.ks_significant,
            'mw_significant': self.mw_significant,
            'crimes_closer': self.crimes_closer,
        })
        return row


def _sample_in_polygon(geom, n: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform points strictly inside ``geom`` by rejection sampling on its bounds."""
    if geom is None or geom.is_empty or geom.area <= 0:
        raise ValueError("Cannot sample points inside an empty or zero-area polygon")

    minx, miny, maxx, maxy = geom.bounds
    bbox_area = (maxx - minx) * (maxy - miny)
    # Draw enough candidates per round that most polygons finish in one pass
    oversample = min(bbox_area / geom.area, 100.0) * 1.2

    shapely.prepare(geom)
    accepted = []
    n_left = n
    for _ in range(MAX_SAMPLING_ROUNDS):
        batch = max(int(np.ceil(n_left * oversample)), 16)
        x = rng.uniform(minx, maxx, batch)
        y = rng.uniform(miny, maxy, batch)
        inside = shapely.contains_xy(geom, x, y)
        xy = np.column_stack([x[inside], y[inside]])[:n_left]
        accepted.append(xy)
        n_left -= len(xy)
        if n_left == 0:
            return np.vstack(accepted)

    raise RuntimeError(f"Rejection sampling did not place {n} points after {MAX_SAMPLING_ROUNDS} rounds")


def generate_stratified_random_points(polygons: gpd.GeoDataFrame, counts: Union[pd.Series, Dict],
                                      id_col: str,
                                      rng: Union[int, np.random.Generator, None] = None) -> gpd.GeoDataFrame:
    """
    Draw ``counts[polygon_id]`` uniform random points inside each polygon.

    Args:
        polygons: Polygon layer in a projected CRS
        counts: Number of points per polygon id; missing ids and zeros draw nothing
        id_col: Polygon id column
        rng: Seed or numpy Generator

    Returns:
        Point GeoDataFrame with ``id_col`` and the polygons' CRS
    """
    rng = np.random.default_rng(rng)
    counts = pd.Series(counts)

    blocks = []
    ids = []
    for pid, geom in zip(polygons[id_col], polygons.geometry):
        n = int(counts.get(pid, 0))
        if n <= 0:
            continue
        blocks.append(_sample_in_polygon(geom, n, rng))
        ids.extend([pid] * n)

    xy = np.vstack(blocks) if blocks else np.empty((0, 2))
    return gpd.GeoDataFrame(
        {id_col: ids},
        geometry=gpd.points_from_xy(xy[:, 0], xy[:, 1]),
        crs=polygons.crs,
    )


def subsample(gdf: gpd.GeoDataFrame, n: int, random_state: Optional[int] = None) -> gpd.GeoDataFrame:
    """At most ``n`` rows drawn without replacement; smaller frames come back whole."""
    if len(gdf) <= n:
        return gdf
    return gdf.sample(n=n, random_state=random_state)


def nearest_neighbor_distances(sources: gpd.GeoDataFrame, targets: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Distance from each source point to its nearest target point.

    Both layers must share a projected CRS; distances are in CRS units (metres on BNG).

    Returns:
        DataFrame indexed like ``sources`` with ``distance_m`` and ``nearest``
        (index label of the nearest target)
    """
    if len(targets) == 0:
        raise ValueError("No target points to measure distances to")
    if sources.crs != targets.crs:
        raise ValueError(f"CRS mismatch: sources {sources.crs} vs targets {targets.crs}")
    if sources.crs is not None and sources.crs.is_geographic:
        raise ValueError(f"Distances need a projected CRS, got {sources.crs}")

    if len(sources) == 0:
        return pd.DataFrame({'distance_m': pd.Series(dtype=float),
                             'nearest': pd.Series(dtype=targets.index.dtype)})

    target_xy = np.column_stack([targets.geometry.x, targets.geometry.y])
    source_xy = np.column_stack([sources.geometry.x, sources.geometry.y])

    nn = NearestNeighbors(n_neighbors=1).fit(target_xy)
    distances, indices = nn.kneighbors(source_xy)

    return pd.DataFrame({
        'distance_m': distances[:, 0],
        'nearest': targets.index.values[indices[:, 0]],
    }, index=sources.index)


def compare_distributions(crime_distances, random_distances, alpha: float = 0.05) -> DistanceTestResult:
    """
    Two-sample KS and two-sided Mann-Whitney U on nearest-streetlight distances.

    NaNs are dropped. Each sample needs at least two values.
    """
    crime = np.asarray(crime_distances, dtype=float)
    random = np.asarray(random_distances, dtype=float)
    crime = crime[~np.isnan(crime)]
    random = random[~np.isnan(random)]

    if len(crime) < 2 or len(random) < 2:
        raise ValueError(
            f"Need at least 2 distances per sample (crime={len(crime)}, random={len(random)})"
        )

    ks = stats.ks_2samp(crime, random)
    mw = stats.mannwhitneyu(crime, random, alternative='two-sided')

    # Positive when crime distances tend to exceed random ones
    rank_biserial = 2.0 * mw.statistic / (len(crime) * len(random)) - 1.0

    return DistanceTestResult(
        n_crime=len(crime),
        n_random=len(random),
        crime_median=float(np.median(crime)),
        random_median=float(np.median(random)),
        crime_mean=float(np.mean(crime)),
        random_mean=float(np.mean(random)),
        ks_statistic=float(ks.statistic),
        ks_pvalue=float(ks.pvalue),
        mw_statistic=float(mw.statistic),
        mw_pvalue=float(mw.pvalue),
        rank_biserial=float(rank_biserial),
        alpha=alpha,
    )


def print_test_result(scope: str, result: DistanceTestResult):
    """Console summary for one comparison"""
    print(f"\n    {scope}")
    print(f"      n (crime / random):      {result.n_crime:,} / {result.n_random:,}")
    print(f"      median distance (m):     {result.crime_median:8.1f} / {result.random_median:8.1f}")
    print(f"      KS D = {result.ks_statistic:.4f}, p = {result.ks_pvalue:.4g} "
          f"{significance_stars(result.ks_pvalue)}")
    print(f"      Mann-Whitney U = {result.mw_statistic:,.0f}, p = {result.mw_pvalue:.4g} "
          f"{significance_stars(result.mw_pvalue)}")
    print(f"      Rank-biserial r = {result.rank_biserial:+.3f} "
          f"({'crimes closer' if result.crimes_closer else 'crimes further'} than random)")


def build_samples(crimes: gpd.GeoDataFrame, polygons: gpd.GeoDataFrame,
                  config: PipelineConfig) -> gpd.GeoDataFrame:
    """Crime points and stratified random controls, subsampled, in one layer"""
    id_col = config.boundaries.id_column
    dc = config.distance

    print_header("Stratified random points", level=2)
    crimes = crimes.copy()
    crimes[id_col] = assign_polygon(crimes, polygons, id_col)
    crimes = crimes[crimes[id_col].notna()]
    print(f"    Crimes inside polygons: {len(crimes):,}")
    if crimes.empty:
        raise ValueError("No crimes fall inside the boundary polygons")

    counts = crimes[id_col].value_counts() * dc.random_multiplier
    random_points = generate_stratified_random_points(polygons, counts, id_col, dc.random_state)
    print(f"    ✓ Random points: {len(random_points):,} "
          f"({dc.random_multiplier} per crime across {int((counts > 0).sum()):,} polygons)")

    print_header("Subsampling", level=2)
    crime_sample = subsample(crimes, dc.sample_size, dc.random_state)
    random_sample = subsample(random_points, dc.sample_size, dc.random_state)
    print(f"    Crime sample:  {len(crime_sample):,}")
    print(f"    Random sample: {len(random_sample):,}")

    crime_part = gpd.GeoDataFrame({
        'sample': 'crime',
        'point_id': crime_sample['uid'].astype(str).values,
        id_col: crime_sample[id_col].values,
    }, geometry=crime_sample.geometry.values, crs=crimes.crs)
    random_part = gpd.GeoDataFrame({
        'sample': 'random',
        'point_id': [f"r{i}" for i in range(len(random_sample))],
        id_col: random_sample[id_col].values,
    }, geometry=random_sample.geometry.values, crs=crimes.crs)

    return gpd.GeoDataFrame(pd.concat([crime_part, random_part], ignore_index=True), crs=crimes.crs)


def run_tests(samples: pd.DataFrame, alpha: float) -> pd.DataFrame:
    """KS and Mann-Whitney tests overall and for each city"""
    print_header("Hypothesis tests", level=2)

    rows = []
    scopes = [('All cities', samples)]
    scopes += [(city, group) for city, group in samples.groupby('city', sort=True)]

    for scope, group in scopes:
        crime_d = group.loc[group['sample'] == 'crime', 'distance_m']
        random_d = group.loc[group['sample'] == 'random', 'distance_m']
        try:
            result = compare_distributions(crime_d, random_d, alpha)
        except ValueError as e:
            print(f"\n    {scope}: skipped ({e})")
            continue
        print_test_result(scope, result)
        rows.append({'scope': scope, **result.to_dict()})

    return pd.DataFrame(rows)


def plot_distance_distributions(samples: pd.DataFrame, config: PipelineConfig, assets_dir: Path):
    """ECDF and histogram of nearest-streetlight distances"""
    print_header("Figures", level=2)
    dpi = config.visualization.get('dpi', 300)
    sns.set_style('whitegrid')

    try:
        fig, ax = plt.subplots(figsize=(9, 6))
        sns.ecdfplot(data=samples, x='distance_m', hue='sample', palette=SAMPLE_COLORS, ax=ax)
        ax.set_xscale('symlog', linthresh=1)
        ax.set_xlabel('Distance to nearest streetlight (m)', fontsize=12)
        ax.set_ylabel('Cumulative proportion', fontsize=12)
        ax.set_title('Nearest Streetlight Distance: Crimes vs Random Points',
                     fontsize=13, fontweight='bold')
        plt.tight_layout()
        plt.savefig(assets_dir / 'distance_ecdf.png', dpi=dpi, bbox_inches='tight')
        plt.close()
        print(f"    ✓ Saved: {assets_dir / 'distance_ecdf.png'}")
    except Exception as e:
        plt.close('all')
        print(f"    ⚠ ECDF plot failed: {e}")

    try:
        clip_at = samples['distance_m'].quantile(0.99)
        fig, ax = plt.subplots(figsize=(9, 6))
        sns.histplot(data=samples[samples['distance_m'] <= clip_at], x='distance_m', hue='sample',
                     palette=SAMPLE_COLORS, stat='density', common_norm=False,
                     element='step', bins=60, ax=ax)
        ax.set_xlabel('Distance to nearest streetlight (m, 99th percentile cut)', fontsize=12)
        ax.set_title('Distance Distributions', fontsize=13, fontweight='bold')
        plt.tight_layout()
        plt.savefig(assets_dir / 'distance_histogram.png', dpi=dpi, bbox_inches='tight')
        plt.close()
        print(f"    ✓ Saved: {assets_dir / 'distance_histogram.png'}")
    except Exception as e:
        plt.close('all')
        print(f"    ⚠ Histogram failed: {e}")


def run_distance_analysis(config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """
    Main execution function for the nearest-streetlight distance comparison.

    Args:
        config: PipelineConfig instance. If None, loads from default.

    Returns:
        Test results table (one row per scope)
    """
    if config is None:
        config = load_config()

    results_dir = config.get_results_subdir("distance_analysis")
    assets_dir = config.get_assets_subdir("distance_analysis")

    with tee_output(results_dir / 'distance_analysis_results.txt'):
        print_header("NEAREST STREETLIGHT DISTANCE ANALYSIS")
        print(f"Sample size: {config.distance.sample_size:,}")
        print(f"Random state: {config.distance.random_state}")

        print_header("Loading layers", level=2)
        crimes = load_crimes(config)
        streetlights = load_streetlights(config).reset_index(drop=True)
        polygons = load_boundaries(config)
        print(f"    ✓ Crimes: {len(crimes):,}")
        print(f"    ✓ Streetlights: {len(streetlights):,}")
        print(f"    ✓ Polygons: {len(polygons):,}")

        samples = build_samples(crimes, polygons, config)

        print_header("Nearest streetlight", level=2)
        nearest = nearest_neighbor_distances(samples, streetlights)
        samples['distance_m'] = nearest['distance_m']
        samples['nearest_light'] = streetlights.loc[nearest['nearest'], 'light_id'].values
        samples['city'] = streetlights.loc[nearest['nearest'], 'city'].values
        print(samples.groupby('sample')['distance_m'].describe().round(1).to_string())

        tests = run_tests(samples, config.distance.alpha)

        distances_path = results_dir / 'distances.csv'
        pd.DataFrame(samples.drop(columns='geometry')).to_csv(distances_path, index=False)
        tests_path = results_dir / 'distance_tests.csv'
        tests.to_csv(tests_path, index=False)
        print(f"\n    ✓ Saved distances to: {distances_path}")
        print(f"    ✓ Saved tests to: {tests_path}")

        plot_distance_distributions(samples, config, assets_dir)

    return tests


if __name__ == "__main__":
    run_distance_analysis()
