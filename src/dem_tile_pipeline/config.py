"""YAML config loading with dataclass defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger

RESOLUTIONS = (30, 90)
PRODUCT_TYPES = ("DGED", "DTED")

GRID_URL = "https://github.com/hydroversebr/miscellaneous/blob/main/copDemGrid.zip?raw=TRUE"
MANIFEST_BASE_URL = "https://github.com/hydroversebr/miscellaneous/blob/main/"


@dataclass
class SourceConfig:
    resolution: int = 90
    product_type: str = "DGED"
    dataset_release: str = "2023_1"
    grid_url: str = GRID_URL
    manifest_base_url: str = MANIFEST_BASE_URL

    @property
    def dataset_name(self) -> str:
        """e.g. ``COP-DEM_GLO-90-DGED__2023_1``."""
        return f"COP-DEM_GLO-{self.resolution}-{self.product_type}__{self.dataset_release}"

    @property
    def manifest_url(self) -> str:
        return f"{self.manifest_base_url}{self.dataset_name}?raw=TRUE"


@dataclass
class DownloadConfig:
    timeout_sec: int = 1000
    max_workers: int = 1
    retries: int = 5
    temp_dir: str = "./copernicusDem/tempDirDem"


@dataclass
class OutputConfig:
    output_dir: str = "./copernicusDem"
    output_file_name: str = "copernicusDem.tif"
    keep_individual_tiles: bool = False
    save_as_integer: bool = False
    multiplier: float = 1.0
    show_raster: bool = False

    @property
    def output_path(self) -> str:
        return str(Path(self.output_dir) / self.output_file_name)


@dataclass
class PipelineConfig:
    source: SourceConfig = field(default_factory=SourceConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def load_config(path: Optional[str] = None) -> PipelineConfig:
    """Load config from YAML, falling back to defaults for missing keys."""
    if path is None:
        # Try default location
        default = Path("config.yaml")
        if not default.exists():
            logger.debug("No config file found; using built-in defaults")
            return PipelineConfig()
        path = str(default)

    logger.info(f"Using config: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    cfg = PipelineConfig()

    src = raw.get("source", {})
    for key in ("resolution", "product_type", "dataset_release", "grid_url", "manifest_base_url"):
        if src.get(key) is not None:
            setattr(cfg.source, key, src[key])

    dl = raw.get("download", {})
    for key in ("timeout_sec", "max_workers", "retries", "temp_dir"):
        if dl.get(key) is not None:
            setattr(cfg.download, key, dl[key])

    out = raw.get("output", {})
    for key in (
        "output_dir", "output_file_name", "keep_individual_tiles",
        "save_as_integer", "multiplier", "show_raster",
    ):
        if out.get(key) is not None:
            setattr(cfg.output, key, out[key])

    validate_config(cfg)
    return cfg


def validate_config(cfg: PipelineConfig) -> None:
    """Raise ``ValueError`` for settings the pipeline cannot honour."""
    if cfg.source.resolution not in RESOLUTIONS:
        raise ValueError(f"resolution must be one of {RESOLUTIONS}, got {cfg.source.resolution}")
    if cfg.source.product_type not in PRODUCT_TYPES:
        raise ValueError(
            f"product_type must be one of {PRODUCT_TYPES}, got {cfg.source.product_type!r}"
        )
    if not cfg.output.output_file_name.lower().endswith((".tif", ".tiff")):
        raise ValueError(
            f"output_file_name must have a .tif extension, got {cfg.output.output_file_name!r}"
        )
    if cfg.download.max_workers < 1:
        raise ValueError("max_workers must be >= 1")
    if cfg.download.retries < 0:
        raise ValueError("retries must be >= 0")
    if cfg.download.timeout_sec <= 0:
        raise ValueError("timeout_sec must be positive")
