"""
Human readable run artifacts: destination list, copy manifest and alias report
"""
from datetime import datetime
from pathlib import Path
from typing import List, Sequence

from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import AliasReport, CopyOutcome, CopyReport
from offline_mirror.services.image_list import write_image_list


def write_destination_list(
        path: Path,
        destinations: Sequence[ImageReference],
        generated_at: datetime
) -> None:
    write_image_list(
        path,
        destinations,
        header=[
            "Destination images for offline repository",
            f"Generated: {generated_at.isoformat()}",
        ]
    )


def render_copy_manifest(report: CopyReport) -> str:
    """
    Render the copy manifest for a finished batch
    :param report:
    :return:
    """
    target = report.destination_registry
    if report.destination_namespace:
        target = f"{target}/{report.destination_namespace}"

    available = list(dict.fromkeys(
        r.destination for r in report.results
        if r.outcome in (CopyOutcome.COPIED, CopyOutcome.SKIPPED)
    ))
    lines = [
        f"# Docker images copy results - {target}",
        f"# Generated: {report.generated_at.isoformat()}",
        f"# Total: {report.total}, Copied: {report.copied}, "
        f"Skipped: {report.skipped}, Failed: {report.failed}",
        "",
        "## Images available at destination:",
    ]
    lines.extend(available or ["(none)"])

    if report.failures:
        lines.extend(["", "## Failed images:"])
        lines.extend(f"{f.image}: {f.reason}" for f in report.failures)

    if available:
        lines.extend(["", "## Offline usage:"])
        lines.extend(f"docker pull {dest}" for dest in available)

    return "\n".join(lines) + "\n"


def write_copy_manifest(path: Path, report: CopyReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_copy_manifest(report), encoding="utf-8")


def render_alias_report(report: AliasReport) -> str:
    lines: List[str] = [
        "# Offline alias report",
        f"# Generated: {report.generated_at.isoformat()}",
        f"# Sources: {report.total}, Pulled: {report.pulled}, Aliased: {report.aliased}, "
        f"Pull failures: {len(report.pull_failures)}, "
        f"Join failures: {len(report.join_failures)}, "
        f"Alias failures: {len(report.alias_failures)}",
        "",
        "## Aliases (original -> mirror):",
    ]
    lines.extend(f"{r.source} -> {r.destination}" for r in report.aliases)
    if report.pull_failures:
        lines.extend(["", "## Pull failures:"])
        lines.extend(f"{f.image}: {f.reason}" for f in report.pull_failures)
    if report.join_failures:
        lines.extend(["", "## No matching mirror:"])
        lines.extend(report.join_failures)
    if report.alias_failures:
        lines.extend(["", "## Alias failures:"])
        lines.extend(f"{f.image}: {f.reason}" for f in report.alias_failures)
    return "\n".join(lines) + "\n"


def write_alias_report(path: Path, report: AliasReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_alias_report(report), encoding="utf-8")
