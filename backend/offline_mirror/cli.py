"""
Command-line interface

Exit status: 0 when every image succeeded, 1 when any image failed after
the whole batch was attempted, 2 on fatal input errors.
"""
import asyncio
from pathlib import Path
from typing import Optional

import click

from offline_mirror.config import settings
from offline_mirror.exceptions import BatchError, InputError
from offline_mirror.log import configure_logging
from offline_mirror.models.schemas import AliasReport, CopyReport, RegistryCredentials
from offline_mirror.services.image_list import read_image_list, write_image_list
from offline_mirror.services.mirror import MirrorCopier
from offline_mirror.services.offline import OfflineResolver
from offline_mirror.services.reference_parser import extract_images, load_inspect_file
from offline_mirror.services.transport import RegistryTransport


class InputFailure(click.ClickException):
    exit_code = 2


def _parse_creds(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[RegistryCredentials]:
    if value is None:
        return None
    try:
        return RegistryCredentials.from_pair(value)
    except ValueError as e:
        raise click.BadParameter(str(e), ctx=ctx, param=param)


def _echo_copy_report(report: CopyReport) -> None:
    click.echo(
        f"Total: {report.total}, Copied: {report.copied}, "
        f"Skipped: {report.skipped}, Failed: {report.failed}"
    )
    for failure in report.failures:
        click.echo(f"FAILED {failure.image}: {failure.reason}", err=True)


def _echo_alias_report(report: AliasReport) -> None:
    click.echo(
        f"Sources: {report.total}, Pulled: {report.pulled}, Aliased: {report.aliased}"
    )
    for failure in report.pull_failures:
        click.echo(f"PULL FAILED {failure.image}: {failure.reason}", err=True)
    for source in report.join_failures:
        click.echo(f"NO MATCHING MIRROR {source}", err=True)
    for failure in report.alias_failures:
        click.echo(f"ALIAS FAILED {failure.image}: {failure.reason}", err=True)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", default=None, help="Log level, defaults to LOG_LEVEL")
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default=None,
    help="Log output format, defaults to LOG_FORMAT"
)
def main(log_level: Optional[str], log_format: Optional[str]) -> None:
    """Mirror pipeline container images and re-resolve them offline."""
    configure_logging(log_level or settings.log_level, log_format or settings.log_format)


@main.command()
@click.option(
    "--inspect-json",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Saved `nextflow inspect -format json` output"
)
@click.option("--pipeline", help="Pipeline to run `nextflow inspect` on, e.g. nf-core/demo")
@click.option("--revision", "-r", help="Pipeline revision")
@click.option("--profile", default="test,docker", show_default=True, help="Nextflow profile")
@click.option(
    "--pipeline-dir",
    type=click.Path(path_type=Path, file_okay=False),
    help="Downloaded pipeline sources, scanned when the manifest is unavailable"
)
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("images.txt"),
    show_default=True
)
def extract(
        inspect_json: Optional[Path],
        pipeline: Optional[str],
        revision: Optional[str],
        profile: str,
        pipeline_dir: Optional[Path],
        output: Path
) -> None:
    """Write the sorted, unique image list of a pipeline."""
    try:
        payload = load_inspect_file(inspect_json) if inspect_json else None
    except InputError as e:
        # A broken saved manifest still allows the source scan
        if pipeline_dir is None:
            raise InputFailure(str(e)) from e
        click.echo(f"WARNING: {e}", err=True)
        payload = None

    try:
        result = asyncio.run(extract_images(
            inspect_payload=payload,
            pipeline=pipeline,
            revision=revision,
            profile=profile,
            pipeline_dir=pipeline_dir,
            transport=RegistryTransport.from_settings(settings),
            default_registry=settings.default_source_registry
        ))
    except InputError as e:
        raise InputFailure(str(e)) from e

    header = [f"Container images ({result.method} extraction)"]
    if result.degraded:
        header.append("WARNING: extracted by module source scan, may be incomplete")
    write_image_list(output, result.references, header=header)
    click.echo(f"Extracted {len(result.images)} images ({result.method}) to {output}")


@main.command()
@click.argument("images_file", type=click.Path(path_type=Path, dir_okay=False), default=Path("images.txt"))
@click.option("--dest-registry", help="Mirror registry, defaults to DEST_REGISTRY")
@click.option("--dest-namespace", help="Mirror namespace, defaults to DEST_NAMESPACE")
@click.option(
    "--dest-creds",
    callback=_parse_creds,
    help="USER:PASSWORD for the mirror, defaults to DOCKER_USER/DOCKER_PAT"
)
@click.option(
    "--destination-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("destination.txt"),
    show_default=True
)
@click.option(
    "--manifest-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("pull-images-manifest.txt"),
    show_default=True
)
@click.option("--concurrency", "-j", type=click.IntRange(min=1), default=None)
@click.option("--timeout", type=float, default=None, help="Batch timeout in seconds")
def mirror(
        images_file: Path,
        dest_registry: Optional[str],
        dest_namespace: Optional[str],
        dest_creds: Optional[RegistryCredentials],
        destination_file: Path,
        manifest_file: Path,
        concurrency: Optional[int],
        timeout: Optional[float]
) -> None:
    """Copy every image in IMAGES_FILE to the mirror registry."""
    try:
        sources = read_image_list(images_file)
        config = settings.mirror_config(
            dest_registry=dest_registry,
            dest_namespace=dest_namespace,
            credentials=dest_creds
        )
    except InputError as e:
        raise InputFailure(str(e)) from e

    copier = MirrorCopier(
        RegistryTransport.from_settings(settings),
        concurrency=concurrency or settings.concurrency,
        timeout=timeout if timeout is not None else settings.batch_timeout
    )
    try:
        report = asyncio.run(copier.run(sources, config, destination_file, manifest_file))
    except InputError as e:
        raise InputFailure(str(e)) from e
    except BatchError as e:
        _echo_copy_report(e.report)
        click.echo(f"{e}. Manifest: {manifest_file}", err=True)
        raise SystemExit(1) from e

    _echo_copy_report(report)
    click.echo(f"Destination list: {destination_file}")
    click.echo(f"Manifest: {manifest_file}")


@main.command()
@click.argument("source_file", type=click.Path(path_type=Path, dir_okay=False), default=Path("images.txt"))
@click.argument("dest_file", type=click.Path(path_type=Path, dir_okay=False), default=Path("destination.txt"))
@click.option(
    "--report-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("offline-alias-report.txt"),
    show_default=True
)
@click.option("--login/--no-login", default=True, help="Log in to the mirror with DOCKER_USER/DOCKER_PAT")
@click.option("--verify", is_flag=True, help="Check every alias exists in local storage")
@click.option("--engine", help="Container engine, defaults to CONTAINER_ENGINE")
@click.option("--concurrency", "-j", type=click.IntRange(min=1), default=None)
@click.option("--timeout", type=float, default=None, help="Pull timeout in seconds")
def resolve(
        source_file: Path,
        dest_file: Path,
        report_file: Path,
        login: bool,
        verify: bool,
        engine: Optional[str],
        concurrency: Optional[int],
        timeout: Optional[float]
) -> None:
    """Pull mirrored images and tag them with their original references."""
    try:
        sources = read_image_list(source_file)
        destinations = read_image_list(dest_file)
    except InputError as e:
        raise InputFailure(str(e)) from e

    transport = RegistryTransport.from_settings(settings)
    if engine:
        transport.engine = engine
    resolver = OfflineResolver(
        transport,
        concurrency=concurrency or settings.concurrency,
        verify=verify,
        timeout=timeout if timeout is not None else settings.batch_timeout
    )
    credentials = settings.credentials() if login else None
    try:
        report = asyncio.run(resolver.run(sources, destinations, report_file, credentials))
    except InputError as e:
        raise InputFailure(str(e)) from e
    except BatchError as e:
        _echo_alias_report(e.report)
        click.echo(f"{e}. Report: {report_file}", err=True)
        raise SystemExit(1) from e

    _echo_alias_report(report)
    click.echo(f"All images are available with their original references. Report: {report_file}")


@main.command()
@click.option("--host", default=None, help="Bind address, defaults to APP_HOST")
@click.option("--port", type=int, default=None, help="Port, defaults to APP_PORT")
def serve(host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "offline_mirror.main:app",
        host=host or settings.app_host,
        port=port or settings.app_port
    )


if __name__ == "__main__":
    main()
