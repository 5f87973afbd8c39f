"""Click CLI: ``dem-tiles`` command group."""

from __future__ import annotations

import contextlib
import sys

import click
from loguru import logger

from dem_tile_pipeline.config import PRODUCT_TYPES, load_config, validate_config
from dem_tile_pipeline.errors import AoiSourceError, MergeError, ResolutionError, WriteError
from dem_tile_pipeline.exit_codes import ExitCode, exit_code_from_batch
from dem_tile_pipeline.logging import bind_run_context, new_run_id, setup_logging


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------

@click.group(invoke_without_command=True)
@click.version_option(package_name="dem-tile-pipeline", prog_name="dem-tiles")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True),
              help="Path to pipeline YAML config.")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--log-format", default="text",
              type=click.Choice(["text", "json"]),
              help="Log output format.")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False),
              help="Also write a DEBUG-level run log with per-tile context here.")
@click.option("--run-id", default=None, help="Override auto-generated run ID.")
@click.option("--show-config", is_flag=True, help="Print resolved config as YAML and exit.")
@click.pass_context
def dem_tiles(ctx: click.Context, config_path, log_level, log_format, log_file, run_id, show_config):
    """Copernicus DEM tile pipeline."""
    ctx.ensure_object(dict)

    # Logging with run context
    run_id = run_id or new_run_id()
    ctx.obj["run_id"] = run_id
    bind_run_context(run_id)
    setup_logging(level=log_level, fmt=log_format, log_file=log_file)

    try:
        ctx.obj["cfg"] = load_config(config_path)
    except ValueError as e:
        logger.error(f"Invalid config: {e}")
        ctx.exit(ExitCode.BAD_INPUT)
        return

    if show_config:
        import dataclasses
        import yaml as _yaml
        click.echo(_yaml.dump(dataclasses.asdict(ctx.obj["cfg"]), default_flow_style=False))
        ctx.exit(ExitCode.SUCCESS)
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _apply_overrides(cfg, **overrides) -> None:
    """Copy non-None CLI values onto the matching config sections."""
    sections = {
        "resolution": cfg.source, "product_type": cfg.source,
        "timeout_sec": cfg.download, "max_workers": cfg.download,
        "retries": cfg.download, "temp_dir": cfg.download,
        "output_dir": cfg.output, "output_file_name": cfg.output,
        "keep_individual_tiles": cfg.output, "save_as_integer": cfg.output,
        "multiplier": cfg.output, "show_raster": cfg.output,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(sections[key], key, value)
    validate_config(cfg)


def _echo_tiles(descriptors) -> None:
    n = len(descriptors)
    shown = descriptors if n <= 5 else descriptors[:3]
    for d in shown:
        click.echo(f"  {d.id:>4}  {d.grid_cell_code}  {d.local_archive_name}")
    if n > 5:
        click.echo(f"  ... and {n - 3} more")


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------

@dem_tiles.command()
@click.argument("aoi", type=click.Path(exists=True))
@click.option("-o", "--output", default="tiles.csv", help="Output tiles CSV path.")
@click.option("--res", "resolution", type=click.Choice(["30", "90"]), default=None,
              help="Source resolution in metres.")
@click.option("--type", "product_type", type=click.Choice(PRODUCT_TYPES), default=None)
@click.pass_context
def resolve(ctx, aoi, output, resolution, product_type):
    """List the DEM tiles intersecting AOI and write them to a tiles CSV."""
    from dem_tile_pipeline.steps.resolve import run_resolve

    cfg = ctx.obj["cfg"]
    try:
        _apply_overrides(
            cfg,
            resolution=int(resolution) if resolution else None,
            product_type=product_type,
        )
        n = run_resolve(aoi, cfg, output)
    except ValueError as e:
        logger.error(str(e))
        ctx.exit(ExitCode.BAD_INPUT)
        return
    except ResolutionError as e:
        logger.error(str(e))
        ctx.exit(ExitCode.NO_WORK)
        return

    ctx.exit(ExitCode.SUCCESS if n else ExitCode.NO_WORK)


# ---------------------------------------------------------------------------
# subbasins
# ---------------------------------------------------------------------------

@dem_tiles.command()
@click.option("--level", type=click.Choice(["1", "2"]), default="1", show_default=True,
              help="PNRH sub-basin level.")
@click.option("-o", "--output", default=None,
              help="Output vector file (.gpkg, .geojson, .shp). Default: GEOFT_PNRH_SUB<level>.gpkg")
@click.pass_context
def subbasins(ctx, level, output):
    """Download PNRH sub-basins for use as an AOI."""
    from dem_tile_pipeline.mosaic.writer import purge_work_dir
    from dem_tile_pipeline.tiles.subbasins import fetch_subbasins, layer_name

    cfg = ctx.obj["cfg"]
    level = int(level)
    output = output or f"{layer_name(level)}.gpkg"
    try:
        layer = fetch_subbasins(level, cfg.download.temp_dir, timeout=cfg.download.timeout_sec)
    except AoiSourceError as e:
        logger.error(str(e))
        ctx.exit(ExitCode.TOTAL_FAILURE)
        return
    finally:
        purge_work_dir(cfg.download.temp_dir)

    layer.to_file(output)
    click.echo(f"{len(layer)} sub-basin(s) written to {output}")
    ctx.exit(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# download
# ---------------------------------------------------------------------------

@dem_tiles.command()
@click.argument("aoi", type=click.Path(exists=True))
@click.option("--output-dir", default=None, help="Directory for the final DEM.")
@click.option("--output-file", "output_file_name", default=None, help="Output GeoTIFF name (.tif).")
@click.option("--res", "resolution", type=click.Choice(["30", "90"]), default=None,
              help="Source resolution in metres.")
@click.option("--type", "product_type", type=click.Choice(PRODUCT_TYPES), default=None)
@click.option("--temp-dir", default=None, help="Working directory for archives and tiles.")
@click.option("--keep-tiles/--no-keep-tiles", "keep_individual_tiles", default=None,
              help="Keep the individual tile rasters next to the output.")
@click.option("--timeout", "timeout_sec", type=int, default=None, help="Per-download timeout in seconds.")
@click.option("--max-workers", type=int, default=None, help="Parallel download workers (1 = sequential).")
@click.option("--retries", type=int, default=None, help="Retry passes for failed tiles.")
@click.option("--save-as-integer/--save-as-float", "save_as_integer", default=None,
              help="Write int16 values (value * multiplier, rounded).")
@click.option("--multiplier", type=float, default=None, help="Scale factor used with --save-as-integer.")
@click.option("--show/--no-show", "show_raster", default=None, help="Plot the DEM when done.")
@click.option("--tiles", "tiles_csv", default=None, type=click.Path(exists=True),
              help="Use a tiles CSV from `resolve` instead of the remote grid lookup.")
@click.option("--report-dir", default=None, help="Write JSON/CSV/text tile reports here.")
@click.option("--dry-run", is_flag=True, help="Resolve tiles and show what would be downloaded.")
@click.pass_context
def download(ctx, aoi, output_dir, output_file_name, resolution, product_type, temp_dir,
             keep_individual_tiles, timeout_sec, max_workers, retries, save_as_integer,
             multiplier, show_raster, tiles_csv, report_dir, dry_run):
    """Download, merge and clip the Copernicus DEM for AOI."""
    from dem_tile_pipeline.steps.download_dem import run_download_dem
    from dem_tile_pipeline.tiles.csv_io import read_tiles_csv

    cfg = ctx.obj["cfg"]
    try:
        _apply_overrides(
            cfg,
            resolution=int(resolution) if resolution else None,
            product_type=product_type,
            timeout_sec=timeout_sec,
            max_workers=max_workers,
            retries=retries,
            temp_dir=temp_dir,
            output_dir=output_dir,
            output_file_name=output_file_name,
            keep_individual_tiles=keep_individual_tiles,
            save_as_integer=save_as_integer,
            multiplier=multiplier,
            show_raster=show_raster,
        )
    except ValueError as e:
        logger.error(str(e))
        ctx.exit(ExitCode.BAD_INPUT)
        return

    resolver = None
    tiles = None
    if tiles_csv:
        tiles = read_tiles_csv(tiles_csv)
        resolver = lambda _aoi, _work_dir: tiles  # noqa: E731

    if dry_run:
        from dem_tile_pipeline.mosaic.writer import purge_work_dir
        from dem_tile_pipeline.tiles.aoi import load_aoi
        from dem_tile_pipeline.tiles.tile_lookup import resolve_tiles

        descriptors = tiles
        if descriptors is None:
            try:
                descriptors = resolve_tiles(
                    load_aoi(aoi), cfg.source, cfg.download.temp_dir,
                    timeout=cfg.download.timeout_sec,
                )
            except ValueError as e:
                logger.error(str(e))
                ctx.exit(ExitCode.BAD_INPUT)
                return
            except ResolutionError as e:
                logger.error(str(e))
                ctx.exit(ExitCode.NO_WORK)
                return
            finally:
                purge_work_dir(cfg.download.temp_dir)
        click.echo(f"Dataset: {cfg.source.dataset_name}")
        click.echo(f"Tiles: {len(descriptors)}, max_workers={cfg.download.max_workers}, "
                   f"retries={cfg.download.retries}")
        _echo_tiles(descriptors)
        click.echo(f"Output: {cfg.output.output_path}")
        ctx.exit(ExitCode.SUCCESS)
        return

    with contextlib.ExitStack() as stack:
        state = {}

        def on_resolved(descriptors):
            state["bar"] = stack.enter_context(click.progressbar(
                length=len(descriptors), label="Downloading tiles", file=sys.stderr,
            ))

        def on_progress(_completed):
            if "bar" in state:
                state["bar"].update(1)

        def on_total(total):
            # retry passes add attempts after the bar was created
            if "bar" in state:
                state["bar"].length = total

        try:
            run = run_download_dem(
                aoi, cfg,
                report_dir=report_dir,
                on_progress=on_progress,
                on_total=on_total,
                on_resolved=on_resolved,
                resolver=resolver,
            )
        except ValueError as e:
            logger.error(str(e))
            ctx.exit(ExitCode.BAD_INPUT)
            return
        except ResolutionError as e:
            logger.error(str(e))
            ctx.exit(ExitCode.NO_WORK)
            return
        except (MergeError, WriteError) as e:
            logger.error(str(e))
            ctx.exit(ExitCode.TOTAL_FAILURE)
            return
        except KeyboardInterrupt:
            logger.warning("Interrupted; working directory left in place")
            ctx.exit(ExitCode.USER_ABORT)
            return

    ctx.exit(exit_code_from_batch(run.batch))


def main() -> None:
    dem_tiles(obj={})


if __name__ == "__main__":
    main()
