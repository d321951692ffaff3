"""
Configuration loader for the LIGHTCRIME pipeline.

Settings live in ``config/pipeline.yaml``; each top-level section maps onto
one dataclass below. Values missing from the file fall back to the dataclass
defaults, and every section is validated when the config is built.
"""

import re
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar
import yaml


T = TypeVar("T")

CONFIG_RELPATH = Path("config") / "pipeline.yaml"


def find_project_root() -> Path:
    """Closest ancestor of this package holding config/pipeline.yaml."""
    here = Path(__file__).resolve().parent
    for candidate in [here, *here.parents][:10]:
        if (candidate / CONFIG_RELPATH).exists():
            return candidate
    # Installed without a checkout: assume the package sits in the project root
    return here.parent


PROJECT_ROOT = find_project_root()
DEFAULT_CONFIG_PATH = PROJECT_ROOT / CONFIG_RELPATH

# Great Britain + Northern Ireland on the British National Grid (metres)
DEFAULT_BNG_BOUNDS = [0.0, 0.0, 700000.0, 1300000.0]

TABULAR_FORMATS = ("csv", "xlsx")
VECTOR_FORMATS = ("geojson", "kml", "shp", "gpkg")
FORMAT_BY_SUFFIX = {
    ".csv": "csv",
    ".xlsx": "xlsx",
    ".xls": "xlsx",
    ".geojson": "geojson",
    ".json": "geojson",
    ".kml": "kml",
    ".shp": "shp",
    ".gpkg": "gpkg",
}
WEIGHT_TYPES = ("queen", "knn")

# spatial.lisa YAML key -> SpatialConfig field
LISA_KEYS = {"permutations": "lisa_permutations", "significance_level": "lisa_significance"}


def infer_format(path: Path) -> str:
    """Infer a reader format from the file extension."""
    fmt = FORMAT_BY_SUFFIX.get(Path(path).suffix.lower())
    if fmt is None:
        raise ValueError(
            f"Unsupported file type '{Path(path).suffix}' for {path}. "
            f"Supported: {sorted(FORMAT_BY_SUFFIX)}"
        )
    return fmt


def slugify(name: str) -> str:
    """Filesystem-safe lowercase name for per-city outputs."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def _build(cls: Type[T], values: Optional[Dict[str, Any]], section: str) -> T:
    """
    Instantiate dataclass ``cls`` from a YAML mapping.

    Unknown keys are rejected; numeric fields are coerced to the type of
    their default so ``30`` and ``30.0`` behave the same. A fractional value
    for an integer field raises ValueError.
    """
    values = dict(values or {})
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}': {unknown}. Allowed: {sorted(known)}")

    for name, value in values.items():
        default = known[name].default
        if value is None or type(default) not in (int, float):
            continue
        number = float(value)
        if type(default) is int and not number.is_integer():
            raise ValueError(f"'{section}.{name}' must be an integer, got {value!r}")
        values[name] = type(default)(number)

    obj = cls(**values)
    validate = getattr(obj, "validate", None)
    if validate is not None:
        validate()
    return obj


@dataclass
class PathsConfig:
    """Directory layout, relative to the project root."""
    data_dir: str = "data"
    raw_dir: str = "data/raw"
    results_dir: str = "results"
    assets_dir: str = "assets"
    # Relative to raw_dir
    boundaries: str = "boundaries/super_output_areas.geojson"
    crimes: List[str] = field(default_factory=lambda: ["crimes/*-street.csv"])

    def resolve(self, base: Path) -> "ResolvedPaths":
        raw = base / self.raw_dir
        return ResolvedPaths(
            base=base,
            data=base / self.data_dir,
            raw=raw,
            results=base / self.results_dir,
            assets=base / self.assets_dir,
            boundaries=raw / self.boundaries,
            crime_patterns=[self.crimes] if isinstance(self.crimes, str) else list(self.crimes),
        )


@dataclass
class ResolvedPaths:
    """Absolute paths for one project checkout."""
    base: Path
    data: Path
    raw: Path
    results: Path
    assets: Path
    boundaries: Path
    crime_patterns: List[str]

    def ensure_dirs(self):
        """Create the output directories."""
        for path in (self.data, self.results, self.assets):
            path.mkdir(parents=True, exist_ok=True)


@dataclass
class CRSConfig:
    """Coordinate reference systems."""
    analysis: str = "EPSG:27700"
    web: str = "EPSG:4326"


@dataclass
class BoundariesConfig:
    """Administrative polygon layer settings."""
    id_column: str = "SOA_CODE"
    name_column: Optional[str] = None
    layer: Optional[str] = None


@dataclass
class CrimesConfig:
    """Crime CSV column mapping (police.uk street-level format)."""
    id_column: str = "Crime ID"
    month_column: str = "Month"
    type_column: str = "Crime type"
    x_column: str = "Longitude"
    y_column: str = "Latitude"
    source_crs: str = "EPSG:4326"
    crime_types: List[str] = field(default_factory=list)

    def validate(self):
        self.crime_types = list(self.crime_types or [])


@dataclass
class CityConfig:
    """One streetlight source file for a city or council area."""
    name: str = ""
    file: str = ""
    format: Optional[str] = None
    x_column: Optional[str] = None
    y_column: Optional[str] = None
    source_crs: str = "EPSG:4326"
    rename: Dict[str, str] = field(default_factory=dict)
    sheet: Optional[str] = None
    layer: Optional[str] = None

    @property
    def slug(self) -> str:
        return slugify(self.name)

    @property
    def resolved_format(self) -> str:
        return self.format.lower() if self.format else infer_format(Path(self.file))

    def validate(self):
        if not self.name:
            raise ValueError("City entry without a name")
        if not self.file:
            raise ValueError(f"City '{self.name}' has no streetlight file configured")
        self.rename = dict(self.rename or {})
        fmt = self.resolved_format
        if fmt not in TABULAR_FORMATS + VECTOR_FORMATS:
            raise ValueError(f"City '{self.name}': unsupported format '{fmt}'")
        if fmt in TABULAR_FORMATS and not (self.x_column and self.y_column):
            raise ValueError(
                f"City '{self.name}': tabular source needs 'x_column' and 'y_column'"
            )


@dataclass
class CleaningConfig:
    """Coordinate cleaning settings."""
    bounds: List[float] = field(default_factory=lambda: list(DEFAULT_BNG_BOUNDS))
    drop_duplicates: bool = True

    def validate(self):
        if len(self.bounds) != 4:
            raise ValueError(f"cleaning.bounds must have 4 values, got {self.bounds}")
        self.bounds = [float(v) for v in self.bounds]
        minx, miny, maxx, maxy = self.bounds
        if minx >= maxx or miny >= maxy:
            raise ValueError(f"cleaning.bounds is not a valid box: {self.bounds}")


@dataclass
class DistanceConfig:
    """Nearest-neighbour distance analysis settings."""
    sample_size: int = 5000
    random_multiplier: int = 1
    random_state: int = 42
    alpha: float = 0.05

    def validate(self):
        if self.sample_size <= 0:
            raise ValueError(f"distance.sample_size must be positive, got {self.sample_size}")
        if self.random_multiplier <= 0:
            raise ValueError(
                f"distance.random_multiplier must be positive, got {self.random_multiplier}"
            )
        if not 0 < self.alpha < 1:
            raise ValueError(f"distance.alpha must be in (0, 1), got {self.alpha}")


@dataclass
class SpatialConfig:
    """Spatial weights and Moran's I / LISA settings."""
    weights: str = "queen"
    knn_neighbors: int = 6
    lisa_permutations: int = 999
    lisa_significance: float = 0.05
    random_state: int = 42

    def validate(self):
        if self.weights not in WEIGHT_TYPES:
            raise ValueError(
                f"Invalid weights '{self.weights}'. Must be one of: {list(WEIGHT_TYPES)}"
            )
        if self.knn_neighbors < 1:
            raise ValueError(f"spatial.knn_neighbors must be >= 1, got {self.knn_neighbors}")
        # Local pseudo p-values only exist with conditional permutations
        if self.lisa_permutations < 1:
            raise ValueError(
                f"spatial.lisa.permutations must be >= 1, got {self.lisa_permutations}"
            )
        if not 0 < self.lisa_significance < 1:
            raise ValueError(
                f"spatial.lisa.significance_level must be in (0, 1), got {self.lisa_significance}"
            )


@dataclass
class RegressionConfig:
    """Lit-buffer logistic regression settings."""
    buffer_radius_m: float = 30.0
    reference_crime_type: str = "Anti-social behaviour"
    reference_season: str = "Summer"
    min_category_count: int = 30

    def validate(self):
        if self.buffer_radius_m <= 0:
            raise ValueError(
                f"regression.buffer_radius_m must be positive, got {self.buffer_radius_m}"
            )


class PipelineConfig:
    """
    Typed view of the pipeline YAML.

    Usage:
        config = PipelineConfig.load()                        # config/pipeline.yaml
        config = PipelineConfig.load("path/to/config.yaml")   # custom file
        config = PipelineConfig({"distance": {...}}, base)    # no file IO

        config.distance.sample_size
        config.get_clean_crimes_path()
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]], base_path: Optional[Path] = None):
        config_dict = config_dict or {}
        base = Path(base_path) if base_path is not None else PROJECT_ROOT

        self.paths = _build(PathsConfig, config_dict.get("paths"), "paths").resolve(base)
        self.crs = _build(CRSConfig, config_dict.get("crs"), "crs")
        self.boundaries = _build(BoundariesConfig, config_dict.get("boundaries"), "boundaries")
        self.crimes = _build(CrimesConfig, config_dict.get("crimes"), "crimes")
        self.cities: List[CityConfig] = [
            _build(CityConfig, city, "cities") for city in config_dict.get("cities") or []
        ]
        self.cleaning = _build(CleaningConfig, config_dict.get("cleaning"), "cleaning")
        self.distance = _build(DistanceConfig, config_dict.get("distance"), "distance")

        # LISA options sit in a nested 'lisa' block in the YAML
        spatial_dict = dict(config_dict.get("spatial") or {})
        lisa_dict = dict(spatial_dict.pop("lisa", None) or {})
        unknown = sorted(set(lisa_dict) - set(LISA_KEYS))
        if unknown:
            raise ValueError(
                f"Unknown key(s) in 'spatial.lisa': {unknown}. Allowed: {sorted(LISA_KEYS)}"
            )
        for key, value in lisa_dict.items():
            spatial_dict[LISA_KEYS[key]] = value
        self.spatial = _build(SpatialConfig, spatial_dict, "spatial")

        self.regression = _build(RegressionConfig, config_dict.get("regression"), "regression")

        # Plot options are read with .get() and a default where used
        self.visualization: Dict[str, Any] = dict(config_dict.get("visualization") or {})

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "PipelineConfig":
        """
        Load configuration from a YAML file.

        The project root (base for every relative path) is the parent of the
        directory holding the file, i.e. the directory containing ``config/``.
        """
        path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            config_dict = yaml.safe_load(f)

        return cls(config_dict, path.resolve().parent.parent)

    # Paths

    def get_boundaries_path(self) -> Path:
        return self.paths.boundaries

    def get_crime_files(self) -> List[Path]:
        """Crime CSVs matching the configured patterns under the raw directory."""
        files: List[Path] = []
        for pattern in self.paths.crime_patterns:
            matches = sorted(self.paths.raw.glob(pattern))
            if not matches and (self.paths.raw / pattern).is_file():
                matches = [self.paths.raw / pattern]
            files.extend(matches)
        return files

    def get_city_source_path(self, city: CityConfig) -> Path:
        return self.paths.raw / city.file

    def get_clean_crimes_path(self) -> Path:
        return self.paths.data / "crimes_clean.geojson"

    def get_clean_streetlights_path(self, city: Optional[CityConfig] = None) -> Path:
        """Cleaned streetlights for one city, or for all cities combined."""
        suffix = city.slug if city is not None else "all"
        return self.paths.data / f"streetlights_{suffix}.geojson"

    def get_polygon_counts_path(self) -> Path:
        return self.paths.data / "polygon_counts.geojson"

    def get_results_subdir(self, name: str) -> Path:
        """Results subdirectory, created on first use."""
        path = self.paths.results / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_assets_subdir(self, name: str) -> Path:
        """Figure/map subdirectory, created on first use."""
        path = self.paths.assets / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def summary(self) -> str:
        """Human-readable dump of the effective settings."""
        lines = [
            "LIGHTCRIME configuration",
            "-" * 40,
            f"CRS (analysis / web):  {self.crs.analysis} / {self.crs.web}",
            f"Project root:          {self.paths.base}",
            f"Raw inputs:            {self.paths.raw}",
            f"Boundaries:            {self.paths.boundaries} (id: {self.boundaries.id_column})",
            f"Crime files:           {', '.join(self.paths.crime_patterns)}",
            "Cities:",
        ]
        for city in self.cities:
            lines.append(f"  - {city.name:12s} {city.file} [{city.resolved_format}, {city.source_crs}]")
        if not self.cities:
            lines.append("  (none)")
        lines += [
            f"Cleaning bounds:       {self.cleaning.bounds}",
            f"Distance:              n={self.distance.sample_size}, "
            f"x{self.distance.random_multiplier} random per crime, alpha={self.distance.alpha}, "
            f"seed={self.distance.random_state}",
            f"Spatial weights:       {self.spatial.weights}"
            + (f" (k={self.spatial.knn_neighbors})" if self.spatial.weights == "knn" else ""),
            f"LISA:                  {self.spatial.lisa_permutations} permutations, "
            f"p < {self.spatial.lisa_significance}",
            f"Regression:            {self.regression.buffer_radius_m:g} m buffers, reference "
            f"'{self.regression.reference_crime_type}' / '{self.regression.reference_season}'",
            f"Outputs:               {self.paths.data}, {self.paths.results}, {self.paths.assets}",
        ]
        return "\n".join(lines)


def load_config(config_path: Optional[str] = None) -> PipelineConfig:
    """
    Load pipeline configuration.

    Usage:
        from lightcrime import load_config
        config = load_config()
    """
    return PipelineConfig.load(config_path)
