"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from offline_mirror import cli
from offline_mirror.services.image_list import read_image_list

from .support.transport import FakeTransport


@pytest.fixture
def fake(monkeypatch: pytest.MonkeyPatch, transport: FakeTransport) -> FakeTransport:
    monkeypatch.setattr(cli.RegistryTransport, "from_settings", lambda settings: transport)
    return transport


def test_extract_from_saved_manifest(tmp_path: Path, fake: FakeTransport) -> None:
    manifest = tmp_path / "inspect.json"
    manifest.write_text(json.dumps({
        "processes": [
            {"name": "FASTQC", "container": "quay.io/biocontainers/fastqc:0.12.1"},
            {"name": "MULTIQC", "container": "quay.io/biocontainers/multiqc:1.29"},
        ]
    }))
    output = tmp_path / "images.txt"

    result = CliRunner().invoke(
        cli.main, ["extract", "--inspect-json", str(manifest), "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert "Extracted 2 images (structured)" in result.output
    assert [r.text for r in read_image_list(output)] == [
        "quay.io/biocontainers/fastqc:0.12.1",
        "quay.io/biocontainers/multiqc:1.29",
    ]


def test_extract_without_sources_is_input_error(tmp_path: Path, fake: FakeTransport) -> None:
    result = CliRunner().invoke(cli.main, ["extract", "-o", str(tmp_path / "images.txt")])
    assert result.exit_code == 2


def test_mirror(tmp_path: Path, fake: FakeTransport) -> None:
    images = tmp_path / "images.txt"
    images.write_text("# pipeline images\nquay.io/biocontainers/fastqc:0.12.1\n")
    destination = tmp_path / "destination.txt"
    manifest = tmp_path / "manifest.txt"

    result = CliRunner().invoke(cli.main, [
        "mirror", str(images),
        "--dest-registry", "docker.io",
        "--dest-namespace", "acme",
        "--dest-creds", "mirror-bot:s3cr3t-token",
        "--destination-file", str(destination),
        "--manifest-file", str(manifest),
    ])

    assert result.exit_code == 0, result.output
    assert "Total: 1, Copied: 1, Skipped: 0, Failed: 0" in result.output
    assert [str(r) for r in read_image_list(destination)] == ["docker.io/acme/fastqc:0.12.1"]
    assert manifest.exists()


def test_mirror_failure_exits_one(tmp_path: Path, fake: FakeTransport) -> None:
    images = tmp_path / "images.txt"
    images.write_text("quay.io/biocontainers/fastqc:0.12.1\nquay.io/biocontainers/seqtk:1.4\n")
    fake.fail_copy.add("quay.io/biocontainers/fastqc:0.12.1")
    manifest = tmp_path / "manifest.txt"

    result = CliRunner().invoke(cli.main, [
        "mirror", str(images),
        "--dest-namespace", "acme",
        "--dest-creds", "mirror-bot:s3cr3t-token",
        "--destination-file", str(tmp_path / "destination.txt"),
        "--manifest-file", str(manifest),
    ])

    assert result.exit_code == 1
    assert "FAILED quay.io/biocontainers/fastqc:0.12.1" in result.output
    assert "Failed: 1" in manifest.read_text()


def test_mirror_malformed_list_exits_two(tmp_path: Path, fake: FakeTransport) -> None:
    images = tmp_path / "images.txt"
    images.write_text("quay.io/biocontainers/fastqc:0.12.1\nnot a reference\n")

    result = CliRunner().invoke(cli.main, [
        "mirror", str(images),
        "--dest-namespace", "acme",
        "--dest-creds", "mirror-bot:s3cr3t-token",
    ])

    assert result.exit_code == 2
    assert fake.calls == []


def test_mirror_bad_creds_option(tmp_path: Path, fake: FakeTransport) -> None:
    images = tmp_path / "images.txt"
    images.write_text("quay.io/biocontainers/fastqc:0.12.1\n")
    result = CliRunner().invoke(cli.main, [
        "mirror", str(images), "--dest-namespace", "acme", "--dest-creds", "no-password",
    ])
    assert result.exit_code == 2


def test_resolve(tmp_path: Path, fake: FakeTransport) -> None:
    sources = tmp_path / "images.txt"
    sources.write_text("quay.io/biocontainers/fastqc:0.12.1\n")
    destinations = tmp_path / "destination.txt"
    destinations.write_text("# Destination images\ndocker.io/acme/fastqc:0.12.1\n")
    fake.registry.add("docker.io/acme/fastqc:0.12.1")
    report = tmp_path / "report.txt"

    result = CliRunner().invoke(cli.main, [
        "resolve", str(sources), str(destinations),
        "--report-file", str(report), "--no-login",
    ])

    assert result.exit_code == 0, result.output
    assert fake.local["quay.io/biocontainers/fastqc:0.12.1"] == fake.local["docker.io/acme/fastqc:0.12.1"]
    assert "Aliased: 1" in result.output
    assert report.exists()


def test_resolve_join_failure_exits_one(tmp_path: Path, fake: FakeTransport) -> None:
    sources = tmp_path / "images.txt"
    sources.write_text("quay.io/biocontainers/fastqc:0.12.1\nquay.io/biocontainers/seqtk:1.4\n")
    destinations = tmp_path / "destination.txt"
    destinations.write_text("docker.io/acme/fastqc:0.12.1\n")
    fake.registry.add("docker.io/acme/fastqc:0.12.1")

    result = CliRunner().invoke(cli.main, [
        "resolve", str(sources), str(destinations),
        "--report-file", str(tmp_path / "report.txt"), "--no-login",
    ])

    assert result.exit_code == 1
    assert "NO MATCHING MIRROR quay.io/biocontainers/seqtk:1.4" in result.output
    assert "quay.io/biocontainers/fastqc:0.12.1" in fake.local


def test_resolve_missing_file_exits_two(tmp_path: Path, fake: FakeTransport) -> None:
    result = CliRunner().invoke(cli.main, [
        "resolve", str(tmp_path / "images.txt"), str(tmp_path / "destination.txt"),
    ])
    assert result.exit_code == 2
