#!/usr/bin/env python3
"""
Visualization Module - Crime Choropleth Map
===========================================
Interactive Folium choropleth of a polygon count variable, with crime and
streetlight counts in the tooltip.
"""

from typing import Optional
import geopandas as gpd
import folium

from ..config import PipelineConfig, load_config
from ..layers import load_polygon_counts


def base_map(gdf: gpd.GeoDataFrame, config: PipelineConfig) -> folium.Map:
    """Light basemap centred on a WGS 84 layer."""
    minx, miny, maxx, maxy = gdf.total_bounds
    return folium.Map(
        location=[(miny + maxy) / 2, (minx + maxx) / 2],
        zoom_start=config.visualization.get('zoom_start', 9),
        tiles='cartodbpositron',
    )


def generate_choropleth_map(config: Optional[PipelineConfig] = None,
                            column: str = 'crime_density') -> str:
    """
    Generate a choropleth for one column of the polygon counts.

    Returns:
        Path to saved HTML file
    """
    if config is None:
        config = load_config()

    print(f"Generating choropleth map ({column})...")

    id_col = config.boundaries.id_column
    gdf = load_polygon_counts(config)
    if column not in gdf.columns:
        raise ValueError(f"Column '{column}' not in polygon counts")

    gdf[id_col] = gdf[id_col].astype(str)
    gdf = gdf.to_crs(config.crs.web)
    title = column.replace('_', ' ').capitalize()

    m = base_map(gdf, config)
    choropleth = folium.Choropleth(
        geo_data=gdf,
        data=gdf,
        columns=[id_col, column],
        key_on=f'feature.properties.{id_col}',
        fill_color=config.visualization.get('choropleth_cmap', 'OrRd'),
        fill_opacity=0.75,
        line_opacity=0.2,
        nan_fill_color='lightgrey',
        legend_name=title,
    ).add_to(m)

    folium.GeoJsonTooltip(
        fields=[id_col, 'crime_count', 'light_count', column],
        aliases=['Area', 'Crimes', 'Streetlights', title],
        localize=True,
    ).add_to(choropleth.geojson)

    output_path = config.get_assets_subdir("maps") / f'choropleth_{column}.html'
    m.save(str(output_path))

    print(f"✓ Saved: {output_path}")
    return str(output_path)


if __name__ == "__main__":
    generate_choropleth_map()
