"""Tests for the offline resolver."""

from __future__ import annotations

from pathlib import Path

import pytest

from offline_mirror.exceptions import InvalidReferenceError, NoImagesFoundError, ResolveBatchError
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import RegistryCredentials, ResolveOutcome
from offline_mirror.services.offline import NO_MATCHING_MIRROR, OfflineResolver

from .support.transport import FakeTransport

FASTQC = "quay.io/biocontainers/fastqc:0.12.1"
FASTQC_MIRROR = "docker.io/acme/fastqc:0.12.1"


def _refs(*values: str) -> list[ImageReference]:
    return [ImageReference.parse(v) for v in values]


async def test_alias_points_at_pulled_mirror(transport: FakeTransport) -> None:
    transport.registry.add(FASTQC_MIRROR)
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(_refs(FASTQC), _refs(FASTQC_MIRROR))

    assert report.ok
    assert (report.total, report.pulled, report.aliased) == (1, 1, 1)
    assert transport.local[FASTQC] == transport.local[FASTQC_MIRROR]
    assert report.aliases[0].source == FASTQC
    assert report.aliases[0].destination == FASTQC_MIRROR


async def test_missing_mirror_is_a_join_failure(transport: FakeTransport) -> None:
    transport.registry.update({FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"})
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(
        _refs(FASTQC, "quay.io/biocontainers/seqtk:1.4", "quay.io/biocontainers/multiqc:1.29"),
        _refs(FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"),
    )

    assert not report.ok
    assert report.join_failures == ["quay.io/biocontainers/multiqc:1.29"]
    assert report.pull_failures == []
    assert report.aliased == 2
    assert "quay.io/biocontainers/seqtk:1.4" in transport.local
    failed = [r for r in report.results if r.outcome == ResolveOutcome.JOIN_FAILED]
    assert len(failed) == 1
    assert failed[0].reason == NO_MATCHING_MIRROR


async def test_join_requires_matching_tag(transport: FakeTransport) -> None:
    transport.registry.add("docker.io/acme/fastqc:0.11.9")
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(_refs(FASTQC), _refs("docker.io/acme/fastqc:0.11.9"))

    assert report.join_failures == [FASTQC]
    assert report.aliased == 0


async def test_untagged_source_joins_latest(transport: FakeTransport) -> None:
    transport.registry.add("docker.io/acme/seqtk:latest")
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(
        _refs("quay.io/biocontainers/seqtk"), _refs("docker.io/acme/seqtk:latest")
    )

    assert report.ok
    assert ("tag", "docker.io/acme/seqtk:latest", "quay.io/biocontainers/seqtk") in transport.calls


async def test_pull_failure_is_separate_and_does_not_abort(
    transport: FakeTransport,
) -> None:
    transport.registry.update({FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"})
    transport.fail_pull.add(FASTQC_MIRROR)
    resolver = OfflineResolver(transport, concurrency=1)  # type: ignore[arg-type]
    report = await resolver.resolve(
        _refs(FASTQC, "quay.io/biocontainers/seqtk:1.4"),
        _refs(FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"),
    )

    assert [f.image for f in report.pull_failures] == [FASTQC_MIRROR]
    assert report.join_failures == []
    assert report.pulled == 1
    assert report.aliased == 1
    outcomes = {r.source: r.outcome for r in report.results}
    assert outcomes[FASTQC] == ResolveOutcome.PULL_FAILED
    assert outcomes["quay.io/biocontainers/seqtk:1.4"] == ResolveOutcome.ALIASED
    assert FASTQC not in transport.local


async def test_alias_failure(transport: FakeTransport) -> None:
    transport.registry.add(FASTQC_MIRROR)
    transport.fail_tag.add(FASTQC)
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(_refs(FASTQC), _refs(FASTQC_MIRROR))

    assert [f.image for f in report.alias_failures] == [FASTQC]
    assert report.aliased == 0


async def test_verify_checks_local_alias(transport: FakeTransport) -> None:
    transport.registry.add(FASTQC_MIRROR)
    resolver = OfflineResolver(transport, verify=True)  # type: ignore[arg-type]
    report = await resolver.resolve(_refs(FASTQC), _refs(FASTQC_MIRROR))

    assert report.ok
    assert ("image_exists", FASTQC) in transport.calls


async def test_login_once_per_registry(
    transport: FakeTransport, credentials: RegistryCredentials
) -> None:
    transport.registry.update({FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"})
    transport.fail_login = True
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(
        _refs(FASTQC, "quay.io/biocontainers/seqtk:1.4"),
        _refs(FASTQC_MIRROR, "docker.io/acme/seqtk:1.4"),
        credentials,
    )

    assert transport.calls_of("login") == [("login", "docker.io", "mirror-bot")]
    assert report.ok


async def test_empty_lists_are_fatal(transport: FakeTransport) -> None:
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    with pytest.raises(NoImagesFoundError):
        await resolver.resolve([], _refs(FASTQC_MIRROR))
    with pytest.raises(NoImagesFoundError):
        await resolver.resolve(_refs(FASTQC), [])
    assert transport.calls == []


async def test_run_writes_report_and_fails(
    tmp_path: Path, transport: FakeTransport
) -> None:
    transport.registry.add(FASTQC_MIRROR)
    report_file = tmp_path / "offline-alias-report.txt"
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]

    with pytest.raises(ResolveBatchError) as excinfo:
        await resolver.run(
            _refs(FASTQC, "quay.io/biocontainers/multiqc:1.29"),
            _refs(FASTQC_MIRROR),
            report_file,
        )

    assert excinfo.value.report.aliased == 1
    content = report_file.read_text()
    assert f"{FASTQC} -> {FASTQC_MIRROR}" in content
    assert "## No matching mirror:\nquay.io/biocontainers/multiqc:1.29" in content


async def test_pull_timeout_marks_unfinished_pulls(transport: FakeTransport) -> None:
    seqtk_mirror = "docker.io/acme/seqtk:1.4"
    transport.registry.update({FASTQC_MIRROR, seqtk_mirror})
    transport.slow_pulls[seqtk_mirror] = 5
    resolver = OfflineResolver(transport, timeout=0.2)  # type: ignore[arg-type]
    report = await resolver.resolve(
        _refs(FASTQC, "quay.io/biocontainers/seqtk:1.4"),
        _refs(FASTQC_MIRROR, seqtk_mirror),
    )

    assert (report.pulled, report.aliased) == (1, 1)
    assert report.pull_failures[0].image == seqtk_mirror
    assert "cancelled" in report.pull_failures[0].reason
    assert report.results[1].outcome == ResolveOutcome.PULL_FAILED
    assert "quay.io/biocontainers/fastqc:0.12.1" in transport.local


async def test_unexpected_pull_error_is_a_pull_failure(transport: FakeTransport) -> None:
    transport.registry.add(FASTQC_MIRROR)
    transport.crash_pull.add(FASTQC_MIRROR)
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    report = await resolver.resolve(_refs(FASTQC), _refs(FASTQC_MIRROR))

    assert not report.ok
    assert "unexpected error" in report.pull_failures[0].reason
    assert report.results[0].outcome == ResolveOutcome.PULL_FAILED


async def test_reference_without_registry_is_fatal(transport: FakeTransport) -> None:
    resolver = OfflineResolver(transport)  # type: ignore[arg-type]
    with pytest.raises(InvalidReferenceError):
        await resolver.resolve(_refs(FASTQC), _refs("acme/fastqc:0.12.1"))
    assert transport.calls == []
