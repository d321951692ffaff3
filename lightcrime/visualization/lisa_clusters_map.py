#!/usr/bin/env python3
"""
Visualization Module - LISA Clusters Map
========================================
Interactive Folium map of the crime density LISA clusters.
"""

from typing import Optional
import pandas as pd
import folium

from ..config import PipelineConfig, load_config
from ..layers import load_polygon_counts
from ..analysis.spatial_autocorrelation import LISA_COLORS, LISA_VARIABLE
from .choropleth_map import base_map


LEGEND_NAMES = {
    'HH': 'High-High',
    'LL': 'Low-Low',
    'HL': 'High-Low',
    'LH': 'Low-High',
    'NS': 'Not significant',
}


def legend_html(counts: pd.Series) -> str:
    """Fixed-position legend with the number of areas per cluster."""
    rows = "".join(
        f'<p style="margin:2px 0;"><span style="color:{LISA_COLORS[label]};">●</span> '
        f'{name} ({int(counts.get(label, 0))})</p>'
        for label, name in LEGEND_NAMES.items()
    )
    return (
        '<div style="position: fixed; bottom: 50px; left: 50px; z-index: 1000; '
        'background-color: white; padding: 10px; border-radius: 5px; border: 2px solid grey;">'
        f'<h4>LISA clusters ({LISA_VARIABLE.replace("_", " ")})</h4>{rows}</div>'
    )


def generate_lisa_map(config: Optional[PipelineConfig] = None) -> str:
    """
    Generate LISA clusters interactive map.

    Returns:
        Path to saved HTML file
    """
    if config is None:
        config = load_config()

    print("Generating LISA clusters map...")

    id_col = config.boundaries.id_column
    lisa_path = config.paths.results / "spatial_autocorrelation" / f'lisa_results_{LISA_VARIABLE}.csv'
    if not lisa_path.exists():
        raise FileNotFoundError(f"LISA results not found: {lisa_path}")

    lisa_df = pd.read_csv(lisa_path, dtype={id_col: str})

    gdf = load_polygon_counts(config)
    gdf[id_col] = gdf[id_col].astype(str)
    # Areas dropped as islands have no LISA row
    gdf = gdf[[id_col, 'crime_count', 'geometry']].merge(
        lisa_df[[id_col, 'local_I', 'p_value', 'label']], on=id_col, how='left'
    )
    gdf['label'] = gdf['label'].fillna('NS')
    gdf = gdf.to_crs(config.crs.web)

    m = base_map(gdf, config)
    folium.GeoJson(
        gdf,
        style_function=lambda feature: {
            'fillColor': LISA_COLORS.get(feature['properties']['label'], LISA_COLORS['NS']),
            'color': 'white',
            'weight': 0.3,
            'fillOpacity': 0.75,
        },
        tooltip=folium.GeoJsonTooltip(
            fields=[id_col, 'crime_count', 'label', 'local_I', 'p_value'],
            aliases=['Area', 'Crimes', 'LISA cluster', 'Local I', 'p-value'],
            localize=True,
        ),
    ).add_to(m)
    m.get_root().html.add_child(folium.Element(legend_html(gdf['label'].value_counts())))

    output_path = config.get_assets_subdir("maps") / 'lisa_clusters_explorer.html'
    m.save(str(output_path))

    print(f"✓ Saved: {output_path}")
    return str(output_path)


if __name__ == "__main__":
    generate_lisa_map()
