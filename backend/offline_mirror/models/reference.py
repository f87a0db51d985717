"""
Typed container image reference
Parses `[registry/]repository[:tag]` once so callers never inspect raw strings
"""
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from offline_mirror.exceptions import InvalidReferenceError

DEFAULT_TAG = "latest"
TRANSPORT_PREFIX = "docker://"

_ALLOWED_CHARS_RE = re.compile(r"^[A-Za-z0-9._/:-]+$")


@dataclass(frozen=True)
class ImageReference:
    """
    Image reference split into registry, repository path and tag

    `text` keeps the reference exactly as written (without `docker://`); it is
    the string offline aliases are created with. Equality ignores it, so
    `quay.io/biocontainers/seqtk` and `quay.io/biocontainers/seqtk:latest`
    are the same image.
    """
    repository: str
    tag: str = DEFAULT_TAG
    registry: Optional[str] = None
    text: str = field(default="", compare=False)
    explicit_tag: bool = field(default=True, compare=False)

    def __post_init__(self) -> None:
        if not self.text:
            object.__setattr__(self, "text", str(self))

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """
        Parse an image reference string
        :param value: e.g. quay.io/biocontainers/fastqc:0.12.1
        :return:
        """
        raw = value.strip()
        if raw.startswith(TRANSPORT_PREFIX):
            raw = raw[len(TRANSPORT_PREFIX):]
        if not raw:
            raise InvalidReferenceError(value, "empty reference")
        if not _ALLOWED_CHARS_RE.match(raw):
            raise InvalidReferenceError(value, "unexpected characters")

        # The first component is a registry only if it looks like a host
        registry = None
        remainder = raw
        if "/" in raw:
            first, rest = raw.split("/", 1)
            if "." in first or ":" in first or first == "localhost":
                registry = first
                remainder = rest

        explicit_tag = ":" in remainder.rsplit("/", 1)[-1]
        if explicit_tag:
            repository, tag = remainder.rsplit(":", 1)
            if not tag:
                raise InvalidReferenceError(value, "empty tag")
        else:
            repository, tag = remainder, DEFAULT_TAG

        if ":" in repository:
            raise InvalidReferenceError(value, "tag separator inside repository path")
        if any(not part for part in repository.split("/")):
            raise InvalidReferenceError(value, "empty path component")

        return cls(
            repository=repository,
            tag=tag,
            registry=registry,
            text=raw,
            explicit_tag=explicit_tag
        )

    def check_qualified(self) -> "ImageReference":
        """
        Fail unless the reference names its registry, as list files require
        :return: the reference itself
        """
        if self.registry is None:
            raise InvalidReferenceError(self.text, "missing registry, expected registry/path[:tag]")
        return self

    @property
    def basename(self) -> str:
        return self.repository.rsplit("/", 1)[-1]

    @property
    def key(self) -> Tuple[str, str]:
        """
        Join key between a source list and a destination list
        :return: (repository basename, tag)
        """
        return self.basename, self.tag

    @property
    def docker_uri(self) -> str:
        return f"{TRANSPORT_PREFIX}{self}"

    def __str__(self) -> str:
        if self.registry:
            return f"{self.registry}/{self.repository}:{self.tag}"
        return f"{self.repository}:{self.tag}"
