"""
Pydantic models for mirror configuration, reports and the HTTP API
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class RegistryCredentials(BaseModel):
    """
    Opaque username/password pair passed through to skopeo and docker
    """
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1, description="Registry user")
    password: SecretStr = Field(..., description="Registry password or token")

    @classmethod
    def from_pair(cls, creds: str) -> "RegistryCredentials":
        """
        Build credentials from a `user:password` string
        :param creds:
        :return:
        """
        username, sep, password = creds.partition(":")
        if not sep or not username or not password:
            raise ValueError("credentials must have the form USER:PASSWORD")
        return cls(username=username, password=SecretStr(password))

    def as_creds(self) -> str:
        """
        Render as the `user:password` form skopeo expects
        :return:
        """
        return f"{self.username}:{self.password.get_secret_value()}"


class MirrorConfig(BaseModel):
    """
    Mirror target for one run, immutable for the run's duration
    """
    model_config = ConfigDict(frozen=True)

    dest_registry: str = Field(..., min_length=1, description="Mirror registry host, e.g. docker.io")
    dest_namespace: str = Field(default="", description="Namespace inside the mirror registry")
    credentials: Optional[RegistryCredentials] = Field(None, description="Destination credentials")

    @property
    def target(self) -> str:
        if self.dest_namespace:
            return f"{self.dest_registry}/{self.dest_namespace}"
        return self.dest_registry


class CopyOutcome(str, Enum):
    """
    Result of mirroring a single image
    """
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


class CopyResult(BaseModel):
    source: str
    destination: str
    outcome: CopyOutcome
    reason: Optional[str] = None


class ImageFailure(BaseModel):
    image: str
    reason: str


class CopyReport(BaseModel):
    """
    Aggregated outcome of a mirror batch
    """
    total: int = 0
    copied: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[ImageFailure] = Field(default_factory=list)
    results: List[CopyResult] = Field(default_factory=list)
    destination_registry: str
    destination_namespace: str = ""
    generated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_totals(self) -> "CopyReport":
        if self.total != self.copied + self.skipped + self.failed:
            raise ValueError(
                f"total {self.total} != copied {self.copied} + skipped "
                f"{self.skipped} + failed {self.failed}"
            )
        return self

    @classmethod
    def from_results(
            cls,
            results: List[CopyResult],
            config: MirrorConfig
    ) -> "CopyReport":
        """
        Reduce per-image results into a report
        :param results:
        :param config:
        :return:
        """
        counts = {outcome: 0 for outcome in CopyOutcome}
        failures = []
        for result in results:
            counts[result.outcome] += 1
            if result.outcome == CopyOutcome.FAILED:
                failures.append(ImageFailure(image=result.source, reason=result.reason or "unknown error"))

        return cls(
            total=len(results),
            copied=counts[CopyOutcome.COPIED],
            skipped=counts[CopyOutcome.SKIPPED],
            failed=counts[CopyOutcome.FAILED],
            failures=failures,
            results=results,
            destination_registry=config.dest_registry,
            destination_namespace=config.dest_namespace
        )

    @property
    def ok(self) -> bool:
        return self.failed == 0


class ResolveOutcome(str, Enum):
    """
    Terminal state of one source reference on the offline host
    """
    ALIASED = "aliased"
    PULL_FAILED = "pull_failed"
    JOIN_FAILED = "join_failed"
    ALIAS_FAILED = "alias_failed"


class ResolveResult(BaseModel):
    source: str
    destination: Optional[str] = None
    outcome: ResolveOutcome
    reason: Optional[str] = None


class AliasReport(BaseModel):
    """
    Aggregated outcome of an offline resolve run

    Pull failures are keyed by destination, join and alias failures by source.
    """
    total: int = 0
    aliased: int = 0
    pulled: int = 0
    pull_failures: List[ImageFailure] = Field(default_factory=list)
    join_failures: List[str] = Field(default_factory=list)
    alias_failures: List[ImageFailure] = Field(default_factory=list)
    results: List[ResolveResult] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return not (self.pull_failures or self.join_failures or self.alias_failures)

    @property
    def aliases(self) -> List[ResolveResult]:
        return [r for r in self.results if r.outcome == ResolveOutcome.ALIASED]


class MirrorStatus(str, Enum):
    """
    Background mirror task status
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class MirrorRequest(BaseModel):
    """
    Request to mirror a list of images
    """
    images: List[str] = Field(..., description="Source image references, e.g. quay.io/biocontainers/fastqc:0.12.1")
    dest_registry: Optional[str] = Field(None, description="Mirror registry, defaults to the configured one")
    dest_namespace: Optional[str] = Field(None, description="Mirror namespace, defaults to the configured one")


class MirrorResponse(BaseModel):
    task_id: str = Field(..., description="Task ID")
    status: MirrorStatus = Field(..., description="Task status")
    message: str = Field(..., description="Status message")


class MirrorProgress(BaseModel):
    """
    Progress of a background mirror task
    """
    task_id: str
    status: MirrorStatus
    current_step: str
    progress: int = Field(default=0, ge=0, le=100)
    logs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    report: Optional[CopyReport] = None


class ConfigResponse(BaseModel):
    """
    Tool availability and mirror target, without secrets
    """
    mirror_configured: bool
    credentials_configured: bool
    skopeo_available: bool
    engine_available: bool
    container_engine: str
    dest_registry: Optional[str] = None
    dest_namespace: Optional[str] = None
    username: Optional[str] = None
