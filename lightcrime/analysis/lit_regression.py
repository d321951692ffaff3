#!/usr/bin/env python3
"""
Lit Buffer Regression Module
============================
Logistic regression of "crime occurs within a lit buffer" on crime type and season.

Analysis steps:
1. Buffer every streetlight by the configured radius
2. Flag crimes falling inside at least one buffer as lit
3. Pool rare crime types, drop rows without type or season
4. Fit lit ~ C(crime_type) + C(season) as a logit model
5. Report odds ratios with 95% confidence intervals
"""

import re
from pathlib import Path
from typing import Optional
import numpy as np
import pandas as pd
import geopandas as gpd
import statsmodels.formula.api as smf
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from ..config import PipelineConfig, load_config
from ..layers import load_crimes, load_streetlights
from ..reporting import print_header, significance_stars, tee_output


OTHER_CATEGORY = 'Other'
TERM_PATTERN = re.compile(r"C\((\w+).*\)\[T\.(.+)\]")


def build_light_buffers(streetlights: gpd.GeoDataFrame, radius: float) -> gpd.GeoDataFrame:
    """Disc of ``radius`` metres around every streetlight."""
    buffers = streetlights[['geometry']].copy()
    buffers['geometry'] = buffers.geometry.buffer(radius)
    buffers['buffer_radius_m'] = radius
    return buffers


def flag_lit_crimes(crimes: gpd.GeoDataFrame, streetlights: gpd.GeoDataFrame,
                    radius: float) -> gpd.GeoDataFrame:
    """
    Add a boolean ``lit`` column: crime lies within ``radius`` of any streetlight.

    A crime covered by several overlapping buffers is still one row.
    """
    if crimes.crs != streetlights.crs:
        raise ValueError(f"CRS mismatch: crimes {crimes.crs} vs streetlights {streetlights.crs}")

    buffers = build_light_buffers(streetlights, radius)
    joined = gpd.sjoin(crimes[['geometry']], buffers, how='inner', predicate='intersects')

    crimes = crimes.copy()
    crimes['lit'] = crimes.index.isin(joined.index.unique())
    return crimes


def prepare_model_frame(crimes: pd.DataFrame, min_category_count: int = 30) -> pd.DataFrame:
    """Model-ready rows: lit as 0/1, rare crime types pooled into 'Other'"""
    df = pd.DataFrame(crimes[['crime_type', 'season', 'lit']]).dropna(subset=['crime_type', 'season'])

    counts = df['crime_type'].value_counts()
    rare = counts[counts < min_category_count].index
    if len(rare) > 0:
        print(f"    Pooling {len(rare)} rare crime types into '{OTHER_CATEGORY}': {list(rare)}")
        df.loc[df['crime_type'].isin(rare), 'crime_type'] = OTHER_CATEGORY

    df['lit'] = df['lit'].astype(int)
    return df.reset_index(drop=True)


def _resolve_reference(levels: pd.Series, wanted: str, name: str) -> str:
    """Use the configured reference level, or the most frequent one when absent."""
    if wanted in set(levels):
        return wanted
    fallback = levels.value_counts().idxmax()
    print(f"    ⚠ Reference {name} '{wanted}' not present; using '{fallback}'")
    return fallback


def fit_lit_model(frame: pd.DataFrame, reference_crime_type: str, reference_season: str):
    """
    Fit the logit model.

    Returns:
        statsmodels BinaryResults
    """
    if frame['lit'].nunique() < 2:
        raise ValueError("Outcome 'lit' has a single class; logistic regression is undefined")

    ref_type = _resolve_reference(frame['crime_type'], reference_crime_type, 'crime type')
    ref_season = _resolve_reference(frame['season'], reference_season, 'season')

    formula = (
        f"lit ~ C(crime_type, Treatment(reference={ref_type!r}))"
        f" + C(season, Treatment(reference={ref_season!r}))"
    )
    print(f"    Formula: {formula}")

    return smf.logit(formula, data=frame).fit(disp=0)


def readable_term(term: str) -> str:
    """'C(season, Treatment(...))[T.Winter]' -> 'season: Winter'"""
    match = TERM_PATTERN.match(term)
    if match:
        return f"{match.group(1)}: {match.group(2)}"
    return term


def odds_ratio_table(result) -> pd.DataFrame:
    """Coefficients, odds ratios, 95% CI and p-values"""
    ci = result.conf_int()
    table = pd.DataFrame({
        'term': [readable_term(t) for t in result.params.index],
        'coef': result.params.values,
        'std_err': result.bse.values,
        'odds_ratio': np.exp(result.params.values),
        'ci_lower': np.exp(ci[0].values),
        'ci_upper': np.exp(ci[1].values),
        'p_value': result.pvalues.values,
    })
    return table


def plot_odds_ratios(table: pd.DataFrame, config: PipelineConfig, assets_dir: Path):
    """Forest plot of odds ratios (intercept excluded)"""
    try:
        data = table[table['term'] != 'Intercept'].sort_values('odds_ratio')
        fig, ax = plt.subplots(figsize=(9, max(4, 0.4 * len(data))))
        colors = ['red' if p < 0.05 else 'gray' for p in data['p_value']]
        ax.errorbar(data['odds_ratio'], data['term'],
                    xerr=[data['odds_ratio'] - data['ci_lower'], data['ci_upper'] - data['odds_ratio']],
                    fmt='none', ecolor='black', capsize=3, linewidth=0.8)
        ax.scatter(data['odds_ratio'], data['term'], c=colors, edgecolor='black', zorder=3)
        ax.axvline(x=1, color='black', linestyle='--', linewidth=0.8)
        ax.set_xscale('log')
        ax.set_xlabel('Odds ratio of crime within a lit buffer (log scale)', fontsize=12)
        ax.set_title("Lit Buffer Logistic Regression\n(Red = Significant p<0.05)",
                     fontsize=13, fontweight='bold')
        ax.grid(axis='x', alpha=0.3)

        plt.tight_layout()
        out = assets_dir / 'logit_odds_ratios.png'
        plt.savefig(out, dpi=config.visualization.get('dpi', 300), bbox_inches='tight')
        plt.close()
        print(f"    ✓ Saved: {out}")
    except Exception as e:
        plt.close('all')
        print(f"    ⚠ Odds ratio plot failed: {e}")


def run_lit_regression(config: Optional[PipelineConfig] = None) -> pd.DataFrame:
    """
    Main execution function for the lit buffer regression.

    Args:
        config: PipelineConfig instance. If None, loads from default.

    Returns:
        Odds ratio table
    """
    if config is None:
        config = load_config()

    rc = config.regression
    results_dir = config.get_results_subdir("lit_regression")
    assets_dir = config.get_assets_subdir("lit_regression")

    with tee_output(results_dir / 'lit_regression_results.txt'):
        print_header("LIT BUFFER LOGISTIC REGRESSION")
        print(f"Buffer radius: {rc.buffer_radius_m} m")

        print_header("1. Flagging lit crimes", level=2)
        crimes = load_crimes(config)
        streetlights = load_streetlights(config)
        crimes = flag_lit_crimes(crimes, streetlights, rc.buffer_radius_m)
        print(f"    ✓ Lit crimes: {int(crimes['lit'].sum()):,} of {len(crimes):,} "
              f"({crimes['lit'].mean() * 100:.1f}%)")

        lit_path = results_dir / 'lit_crimes.csv'
        pd.DataFrame(crimes.drop(columns='geometry')).to_csv(lit_path, index=False)
        print(f"    ✓ Saved: {lit_path}")

        print_header("2. Lit share by category", level=2)
        frame = prepare_model_frame(crimes, rc.min_category_count)
        print((frame.groupby('crime_type')['lit'].mean() * 100).round(1).to_string())
        print()
        print((frame.groupby('season')['lit'].mean() * 100).round(1).to_string())

        print_header("3. Model", level=2)
        result = fit_lit_model(frame, rc.reference_crime_type, rc.reference_season)
        print(f"    ✓ Observations: {int(result.nobs):,}")
        print(f"    ✓ McFadden pseudo R²: {result.prsquared:.4f}")
        print(f"    ✓ LLR p-value: {result.llr_pvalue:.4g}")

        summary_path = results_dir / 'logit_summary.txt'
        summary_path.write_text(result.summary().as_text(), encoding='utf-8')

        table = odds_ratio_table(result)
        print("\n    Odds ratios:")
        for _, row in table.iterrows():
            print(f"    {row['term']:45s}: OR={row['odds_ratio']:6.3f} "
                  f"[{row['ci_lower']:6.3f}, {row['ci_upper']:6.3f}] "
                  f"{significance_stars(row['p_value'])}")

        table_path = results_dir / 'logit_odds_ratios.csv'
        table.to_csv(table_path, index=False)
        print(f"\n    ✓ Saved odds ratios to: {table_path}")
        print(f"    ✓ Saved model summary to: {summary_path}")

        plot_odds_ratios(table, config, assets_dir)

    return table


if __name__ == "__main__":
    run_lit_regression()
