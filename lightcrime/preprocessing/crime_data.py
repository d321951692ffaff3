#!/usr/bin/env python3
"""
Crime Data Module
=================
Loads police.uk street-level crime CSVs and prepares crime points.

This module:
1. Concatenates the monthly street-level CSV files
2. Renames police.uk headers to snake_case
3. Drops crimes without usable coordinates
4. Reprojects to the British National Grid (EPSG:27700)
5. Derives the meteorological season from the crime month
"""

from pathlib import Path
from typing import List, Optional, Sequence
import pandas as pd
import geopandas as gpd

from ..config import PipelineConfig, load_config
from ..reporting import print_header, tee_output
from .coordinate_cleaning import clean_coordinates, to_points, reproject, clip_to_bounds


SEASONS = {
    12: 'Winter', 1: 'Winter', 2: 'Winter',
    3: 'Spring', 4: 'Spring', 5: 'Spring',
    6: 'Summer', 7: 'Summer', 8: 'Summer',
    9: 'Autumn', 10: 'Autumn', 11: 'Autumn'
}

CRIME_COLUMNS = ['uid', 'crime_id', 'month', 'crime_type', 'season',
                 'source_x', 'source_y', 'geometry']


def read_crime_files(paths: Sequence[Path]) -> pd.DataFrame:
    """Concatenate police.uk street-level CSV files."""
    if not paths:
        raise FileNotFoundError(
            "No crime CSV files matched the configured patterns (paths.crimes)"
        )

    frames = []
    for path in paths:
        df = pd.read_csv(path)
        print(f"    {Path(path).name}: {len(df):,} rows")
        frames.append(df)

    return pd.concat(frames, ignore_index=True)


def assign_season(months: pd.Series) -> pd.Series:
    """
    Map crime months to seasons.

    Accepts police.uk ``YYYY-MM`` strings or datetimes; unparseable values map to NaN.
    """
    dates = pd.to_datetime(months, errors='coerce')
    return dates.dt.month.map(SEASONS)


def prepare_crimes(df: pd.DataFrame, config: PipelineConfig) -> gpd.GeoDataFrame:
    """
    Turn raw police.uk rows into clean crime points in the analysis CRS.

    Returns:
        GeoDataFrame with ``uid, crime_id, month, crime_type, season`` columns
    """
    cc = config.crimes
    required = [cc.month_column, cc.type_column, cc.x_column, cc.y_column]
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Crime data missing columns {missing}. Available: {list(df.columns)}")

    df = df.rename(columns={
        cc.id_column: 'crime_id',
        cc.month_column: 'month',
        cc.type_column: 'crime_type',
        cc.x_column: 'source_x',
        cc.y_column: 'source_y',
    })
    if 'crime_id' not in df.columns:
        df['crime_id'] = None

    df = clean_coordinates(df, 'source_x', 'source_y')

    if cc.crime_types:
        n_before = len(df)
        df = df[df['crime_type'].isin(cc.crime_types)]
        print(f"    Crime type filter: {n_before:,} → {len(df):,}")

    df = df.copy()
    df['season'] = assign_season(df['month'])

    gdf = to_points(df, 'source_x', 'source_y', cc.source_crs)
    gdf = reproject(gdf, config.crs.analysis)

    n_before = len(gdf)
    gdf = clip_to_bounds(gdf, config.cleaning.bounds)
    if len(gdf) < n_before:
        print(f"    Outside study bounds: {n_before - len(gdf):,}")

    gdf = gdf.reset_index(drop=True)
    # Anti-social behaviour records have no Crime ID
    gdf['uid'] = range(len(gdf))

    return gdf[CRIME_COLUMNS]


def run_crime_preprocessing(config: Optional[PipelineConfig] = None) -> gpd.GeoDataFrame:
    """
    Prepare crime points and save them as GeoJSON.

    Args:
        config: PipelineConfig instance. If None, loads from default.
    """
    if config is None:
        config = load_config()

    config.paths.ensure_dirs()
    results_dir = config.get_results_subdir("preprocessing")

    with tee_output(results_dir / 'crime_preprocessing_log.txt'):
        print_header("CRIME DATA PREPROCESSING")

        files: List[Path] = config.get_crime_files()
        print(f"Crime files: {len(files)}")
        raw = read_crime_files(files)
        print(f"    ✓ Total rows: {len(raw):,}")

        crimes = prepare_crimes(raw, config)
        if crimes.empty:
            raise ValueError("No crimes left after cleaning")

        print_header("Crime types", level=2)
        print(crimes['crime_type'].value_counts().to_string())

        print_header("Seasons", level=2)
        print(crimes['season'].value_counts(dropna=False).to_string())

        out_path = config.get_clean_crimes_path()
        crimes.to_file(out_path, driver='GeoJSON')
        print(f"\n✓ Saved {len(crimes):,} crimes to: {out_path}")

    return crimes


if __name__ == "__main__":
    run_crime_preprocessing()
