"""
Mirror copier
Copies source images into the mirror registry, skipping images that are
already there, and reports per-image outcomes
"""
import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from offline_mirror.exceptions import MirrorBatchError, MissingCredentialsError, NoImagesFoundError
from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import CopyOutcome, CopyReport, CopyResult, MirrorConfig
from offline_mirror.services.existence import ExistenceChecker
from offline_mirror.services.image_list import unique_references
from offline_mirror.services.manifest import write_copy_manifest, write_destination_list
from offline_mirror.services.name_mapper import find_collisions, map_reference
from offline_mirror.services.transport import RegistryTransport, tail

ResultCallback = Callable[[CopyResult], None]


class MirrorCopier:
    """
    Copy-with-skip over a list of images

    Images are independent, so up to `concurrency` of them are processed at
    once. Sources sharing a mirror reference share one worker.
    Failures are recorded and the batch always runs to the end.
    """

    def __init__(
            self,
            transport: RegistryTransport,
            concurrency: int = 4,
            timeout: Optional[float] = None,
            logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._transport = transport
        self._concurrency = concurrency
        self._timeout = timeout
        self._logger = logger or get_logger()
        self._checker = ExistenceChecker(transport, self._logger)

    async def copy_one(
            self,
            source: ImageReference,
            config: MirrorConfig,
            logs: Optional[List[str]] = None
    ) -> CopyResult:
        """
        Mirror a single image
        :param source:
        :param config:
        :param logs: optional task log receiving command output
        :return:
        """
        destination = map_reference(source, config)
        logger = self._logger.bind(source=source.text, destination=str(destination))

        if await self._checker.exists(destination, config.credentials):
            logger.info("Image already exists, skipping")
            if logs is not None:
                logs.append(f"Already exists (skipped): {destination}")
            return CopyResult(
                source=source.text,
                destination=str(destination),
                outcome=CopyOutcome.SKIPPED
            )

        logger.info("Copying image")
        success, output = await self._transport.copy(
            source, destination, config.credentials, logs=logs
        )
        if not success:
            reason = tail(output)
            logger.error("Failed to copy image", reason=reason)
            return CopyResult(
                source=source.text,
                destination=str(destination),
                outcome=CopyOutcome.FAILED,
                reason=reason
            )

        logger.info("Copied image")
        return CopyResult(
            source=source.text,
            destination=str(destination),
            outcome=CopyOutcome.COPIED
        )

    async def _copy_guarded(
            self,
            source: ImageReference,
            config: MirrorConfig,
            logs: Optional[List[str]]
    ) -> CopyResult:
        try:
            return await self.copy_one(source, config, logs=logs)
        except Exception as e:
            self._logger.exception("Unexpected error while mirroring image", source=source.text)
            return CopyResult(
                source=source.text,
                destination=str(map_reference(source, config)),
                outcome=CopyOutcome.FAILED,
                reason=f"unexpected error: {e}"
            )

    async def copy_all(
            self,
            sources: Sequence[ImageReference],
            config: MirrorConfig,
            on_result: Optional[ResultCallback] = None,
            logs: Optional[List[str]] = None
    ) -> Tuple[List[ImageReference], CopyReport]:
        """
        Mirror every source image

        Sources that map to the same mirror reference are handled one after
        another in list order, so the report matches a sequential run.
        :param sources:
        :param config:
        :param on_result: called once per finished image
        :param logs: optional task log
        :return: (unique destinations in source order, report)
        """
        if not sources:
            raise NoImagesFoundError("No images to mirror: the image list is empty")
        for source in sources:
            source.check_qualified()
        if config.credentials is None:
            raise MissingCredentialsError("Destination credentials are required for mirroring")

        sources = unique_references(sources)
        for destination, colliding in find_collisions(sources, config).items():
            self._logger.warning(
                "Sources collide on one mirror reference, first copy wins",
                destination=str(destination),
                sources=[s.text for s in colliding]
            )

        groups: Dict[ImageReference, List[int]] = {}
        for index, source in enumerate(sources):
            groups.setdefault(map_reference(source, config), []).append(index)

        self._logger.info(
            "Starting mirror batch",
            total=len(sources),
            target=config.target,
            concurrency=self._concurrency
        )
        semaphore = asyncio.Semaphore(self._concurrency)
        finished: Dict[int, CopyResult] = {}

        async def worker(indexes: List[int]) -> None:
            async with semaphore:
                for index in indexes:
                    result = await self._copy_guarded(sources[index], config, logs)
                    finished[index] = result
                    if on_result:
                        on_result(result)

        tasks = [asyncio.create_task(worker(indexes)) for indexes in groups.values()]
        try:
            _, pending = await asyncio.wait(tasks, timeout=self._timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            self._logger.warning(
                "Batch timed out, cancelling unfinished images",
                timeout=self._timeout,
                unfinished=len(sources) - len(finished)
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for index, source in enumerate(sources):
            result = finished.get(index)
            if result is None:
                result = CopyResult(
                    source=source.text,
                    destination=str(map_reference(source, config)),
                    outcome=CopyOutcome.FAILED,
                    reason=f"cancelled: batch timeout after {self._timeout}s"
                )
                if on_result:
                    on_result(result)
            results.append(result)

        report = CopyReport.from_results(results, config)
        destinations = unique_references(
            map_reference(source, config)
            for source, r in zip(sources, results)
            if r.outcome != CopyOutcome.FAILED
        )
        self._logger.info(
            "Mirror batch finished",
            total=report.total,
            copied=report.copied,
            skipped=report.skipped,
            failed=report.failed
        )
        return destinations, report

    async def run(
            self,
            sources: Sequence[ImageReference],
            config: MirrorConfig,
            destination_file: Path,
            manifest_file: Path
    ) -> CopyReport:
        """
        Mirror a batch and persist the destination list and manifest

        Both artifacts are written whether or not the batch succeeded.
        :param sources:
        :param config:
        :param destination_file:
        :param manifest_file:
        :return:
        """
        destinations, report = await self.copy_all(sources, config)
        write_destination_list(destination_file, destinations, report.generated_at)
        write_copy_manifest(manifest_file, report)

        if not report.ok:
            raise MirrorBatchError(
                f"Failed to mirror {report.failed} of {report.total} images", report
            )
        return report
