"""
Image reference extraction from an nf-core / Nextflow pipeline

The structured path reads the concretized container list produced by
`nextflow inspect`. When that is unavailable or fails, module sources are
scanned for biocontainers images instead; that degraded path is logged
separately because the two can disagree on completeness.
"""
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import structlog

from offline_mirror.exceptions import ExtractionError, InvalidReferenceError, NoImagesFoundError
from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.services.transport import RegistryTransport, tail

STRUCTURED = "structured"
SCAN = "scan"

DEFAULT_REGISTRY = "quay.io"

QUALIFIED_IMAGE_RE = re.compile(r"^[a-zA-Z0-9.-]+/[a-zA-Z0-9._/-]+:[a-zA-Z0-9._-]+$")
REGISTRY_SETTING_RE = re.compile(
    r"""^\s*(docker|podman|apptainer)\.registry\s*=\s*['"]([^'"]+)['"]""",
    re.MULTILINE
)
BIOCONTAINERS_RE = re.compile(r"""((?:[a-zA-Z0-9.-]+/)?biocontainers/[^'"\s]+)""")


@dataclass
class ExtractionResult:
    """
    Images found in a pipeline and the path that found them
    """
    images: List[str]
    method: str
    default_registry: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.method == SCAN

    @property
    def references(self) -> List[ImageReference]:
        return [ImageReference.parse(image) for image in self.images]


def validate_image_string(image: str) -> str:
    """
    Require the fully qualified `registry/path:tag` shape
    :param image:
    :return:
    """
    if not QUALIFIED_IMAGE_RE.match(image):
        raise InvalidReferenceError(image, "expected registry/path:tag")
    ImageReference.parse(image).check_qualified()
    return image


def extract_from_inspect(payload: Any) -> List[str]:
    """
    Container strings from `nextflow inspect -format json` output
    :param payload: parsed JSON, {"processes": [{"name": ..., "container": ...}]}
    :return: sorted unique container strings
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("processes"), list):
        raise ExtractionError("Container manifest has no 'processes' list")

    containers = set()
    for process in payload["processes"]:
        if not isinstance(process, dict):
            raise ExtractionError(f"Unexpected process entry in container manifest: {process!r}")
        container = process.get("container")
        if container:
            containers.add(str(container).strip())
    return sorted(containers)


def load_inspect_file(path: Path) -> Any:
    if not path.is_file():
        raise ExtractionError(f"Container manifest not found: {path}")
    return parse_inspect_output(path.read_text(encoding="utf-8"))


def parse_inspect_output(output: str) -> Any:
    """
    Parse inspect output, ignoring any log lines printed before the JSON
    :param output:
    :return:
    """
    start = output.find("{")
    if start < 0:
        raise ExtractionError("No JSON object in container manifest output")
    try:
        return json.loads(output[start:])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Container manifest is not valid JSON: {e}") from e


async def run_nextflow_inspect(
        transport: RegistryTransport,
        pipeline: str,
        revision: Optional[str] = None,
        profile: str = "test,docker"
) -> Any:
    """
    Run `nextflow inspect` and return its parsed JSON output
    :param transport:
    :param pipeline: pipeline name or path, e.g. nf-core/demo
    :param revision:
    :param profile:
    :return:
    """
    cmd = [transport.nextflow_bin, "inspect", pipeline]
    if revision:
        cmd.extend(["-r", revision])
    cmd.extend(["-profile", profile, "-concretize", "true", "-format", "json"])
    success, output = await transport.run_command(cmd)
    if not success:
        raise ExtractionError(f"nextflow inspect failed: {tail(output)}")
    return parse_inspect_output(output)


def detect_default_registry(config_file: Path, default: str = DEFAULT_REGISTRY) -> str:
    """
    Registry configured in nextflow.config, docker before podman before apptainer
    :param config_file:
    :param default:
    :return:
    """
    if not config_file.is_file():
        return default
    found = {}
    for engine, registry in REGISTRY_SETTING_RE.findall(config_file.read_text(encoding="utf-8")):
        found.setdefault(engine, registry)
    for engine in ("docker", "podman", "apptainer"):
        if engine in found:
            return found[engine]
    return default


def scan_module_sources(pipeline_dir: Path, default_registry: str = DEFAULT_REGISTRY) -> List[str]:
    """
    Find biocontainers images in module sources, one per module file
    :param pipeline_dir:
    :param default_registry: prefixed to images without a registry
    :return: sorted unique images
    """
    modules_dir = pipeline_dir / "modules"
    if not modules_dir.is_dir():
        raise ExtractionError(f"Pipeline modules directory not found: {modules_dir}")

    images = set()
    for module_file in sorted(modules_dir.rglob("*.nf")):
        match = BIOCONTAINERS_RE.search(module_file.read_text(encoding="utf-8"))
        if not match:
            continue
        image = match.group(1)
        if image.count("/") < 2:
            image = f"{default_registry}/{image}"
        images.add(image)
    return sorted(images)


async def extract_images(
        inspect_payload: Any = None,
        pipeline: Optional[str] = None,
        revision: Optional[str] = None,
        profile: str = "test,docker",
        pipeline_dir: Optional[Path] = None,
        transport: Optional[RegistryTransport] = None,
        default_registry: str = DEFAULT_REGISTRY,
        logger: Optional[structlog.stdlib.BoundLogger] = None
) -> ExtractionResult:
    """
    Build the image list for a pipeline
    :param inspect_payload: already parsed `nextflow inspect` JSON
    :param pipeline: pipeline to inspect when no payload is given
    :param revision:
    :param profile:
    :param pipeline_dir: downloaded pipeline sources, used by the scan fallback
    :param transport: runs `nextflow inspect`
    :param default_registry:
    :param logger:
    :return:
    """
    logger = logger or get_logger()
    images: Optional[List[str]] = None
    method = STRUCTURED
    registry = None

    if inspect_payload is None and pipeline and transport:
        try:
            inspect_payload = await run_nextflow_inspect(transport, pipeline, revision, profile)
        except ExtractionError as e:
            logger.warning("Structured extraction failed", pipeline=pipeline, error=str(e))

    if inspect_payload is not None:
        try:
            images = extract_from_inspect(inspect_payload)
        except ExtractionError as e:
            logger.warning("Structured extraction failed", error=str(e))
        else:
            if not images:
                logger.warning("Structured extraction returned no containers")
                images = None

    if images is None:
        if pipeline_dir is None:
            raise ExtractionError(
                "No container manifest available and no pipeline directory to scan"
            )
        registry = detect_default_registry(pipeline_dir / "nextflow.config", default_registry)
        logger.warning(
            "Falling back to module source scan",
            pipeline_dir=str(pipeline_dir),
            default_registry=registry,
            degraded=True
        )
        images = scan_module_sources(pipeline_dir, registry)
        method = SCAN

    images = sorted(set(images))
    if not images:
        raise NoImagesFoundError("No container images found in pipeline")
    for image in images:
        validate_image_string(image)

    logger.info("Extracted container images", count=len(images), method=method)
    return ExtractionResult(images=images, method=method, default_registry=registry)
