"""
Source to mirror name mapping

The destination keeps only the last path segment of the source repository:
`quay.io/biocontainers/fastqc:0.12.1` becomes `<registry>/<namespace>/fastqc:0.12.1`.
Distinct sources sharing a basename (`orgA/foo`, `orgB/foo`) therefore land on
the same destination and overwrite each other; `find_collisions` reports them.
"""
from collections import defaultdict
from typing import Dict, Iterable, List

from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import MirrorConfig


def map_reference(source: ImageReference, config: MirrorConfig) -> ImageReference:
    """
    Derive the mirror reference for a source image
    :param source:
    :param config:
    :return:
    """
    parts = [config.dest_namespace, source.basename]
    return ImageReference(
        registry=config.dest_registry,
        repository="/".join(part for part in parts if part),
        tag=source.tag
    )


def find_collisions(
        sources: Iterable[ImageReference],
        config: MirrorConfig
) -> Dict[ImageReference, List[ImageReference]]:
    """
    Destinations reached by more than one distinct source
    :param sources:
    :param config:
    :return: destination -> colliding sources, in input order
    """
    targets: Dict[ImageReference, List[ImageReference]] = defaultdict(list)
    for source in sources:
        bucket = targets[map_reference(source, config)]
        if source not in bucket:
            bucket.append(source)
    return {dest: found for dest, found in targets.items() if len(found) > 1}
