"""
Offline resolver
On the disconnected host, pulls the mirrored images and tags them with the
original references so the pipeline runs without configuration changes
"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from offline_mirror.exceptions import NoImagesFoundError, ResolveBatchError
from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import (
    AliasReport,
    ImageFailure,
    RegistryCredentials,
    ResolveOutcome,
    ResolveResult,
)
from offline_mirror.services.image_list import unique_references
from offline_mirror.services.manifest import write_alias_report
from offline_mirror.services.transport import RegistryTransport, tail

NO_MATCHING_MIRROR = "no matching mirror"


class OfflineResolver:
    """
    Pull, join and alias

    Every source ends in exactly one state: aliased, pull_failed,
    join_failed or alias_failed. Nothing is retried within one call.
    """

    def __init__(
            self,
            transport: RegistryTransport,
            concurrency: int = 4,
            verify: bool = False,
            timeout: Optional[float] = None,
            logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._transport = transport
        self._concurrency = concurrency
        self._verify = verify
        self._timeout = timeout
        self._logger = logger or get_logger()

    async def login(
            self,
            destinations: Sequence[ImageReference],
            credentials: RegistryCredentials
    ) -> None:
        """
        Log in to every mirror registry named in the destination list

        A failed login is only a warning: public mirrors can still be pulled.
        :param destinations:
        :param credentials:
        :return:
        """
        registries = sorted({d.registry for d in destinations if d.registry})
        for registry in registries:
            success, output = await self._transport.login(registry, credentials)
            if success:
                self._logger.info("Logged in to mirror registry", registry=registry)
            else:
                self._logger.warning(
                    "Mirror registry login failed, pulling anonymously",
                    registry=registry,
                    reason=tail(output)
                )

    async def pull_all(
            self,
            destinations: Sequence[ImageReference]
    ) -> Dict[ImageReference, Tuple[bool, str]]:
        """
        Pull every destination image into local storage

        Pulls still running when the batch timeout expires are cancelled and
        recorded as failed.
        :param destinations:
        :return: destination -> (success, reason)
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes: Dict[ImageReference, Tuple[bool, str]] = {}

        async def pull(destination: ImageReference) -> None:
            async with semaphore:
                self._logger.info("Pulling image", destination=str(destination))
                try:
                    success, output = await self._transport.pull(destination)
                except Exception as e:
                    self._logger.exception("Unexpected error while pulling image", destination=str(destination))
                    success, output = False, f"unexpected error: {e}"
            if not success:
                self._logger.error(
                    "Failed to pull image",
                    destination=str(destination),
                    reason=tail(output)
                )
                outcomes[destination] = (False, tail(output))
            else:
                outcomes[destination] = (True, "")

        tasks = [asyncio.create_task(pull(d)) for d in destinations]
        try:
            _, pending = await asyncio.wait(tasks, timeout=self._timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            self._logger.warning(
                "Pull timed out, cancelling unfinished images",
                timeout=self._timeout,
                unfinished=len(pending)
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return {
            d: outcomes.get(d, (False, f"cancelled: batch timeout after {self._timeout}s"))
            for d in destinations
        }

    async def resolve(
            self,
            sources: Sequence[ImageReference],
            destinations: Sequence[ImageReference],
            credentials: Optional[RegistryCredentials] = None
    ) -> AliasReport:
        """
        Re-establish the original source references on this host
        :param sources: references the pipeline uses
        :param destinations: mirrored references from the online run
        :param credentials: optional mirror registry credentials
        :return:
        """
        if not sources:
            raise NoImagesFoundError("No source images to resolve: the source list is empty")
        if not destinations:
            raise NoImagesFoundError("No mirrored images to pull: the destination list is empty")
        for reference in [*sources, *destinations]:
            reference.check_qualified()

        sources = unique_references(sources)
        destinations = unique_references(destinations)

        if credentials:
            await self.login(destinations, credentials)

        pulled = await self.pull_all(destinations)
        pull_failures = [
            ImageFailure(image=str(dest), reason=reason)
            for dest, (success, reason) in pulled.items() if not success
        ]

        index: Dict[Tuple[str, str], ImageReference] = {}
        for destination in destinations:
            index.setdefault(destination.key, destination)

        results: List[ResolveResult] = []
        for source in sources:
            results.append(await self._resolve_guarded(source, index, pulled))

        report = AliasReport(
            total=len(results),
            aliased=sum(1 for r in results if r.outcome == ResolveOutcome.ALIASED),
            pulled=sum(1 for success, _ in pulled.values() if success),
            pull_failures=pull_failures,
            join_failures=[r.source for r in results if r.outcome == ResolveOutcome.JOIN_FAILED],
            alias_failures=[
                ImageFailure(image=r.source, reason=r.reason or "unknown error")
                for r in results if r.outcome == ResolveOutcome.ALIAS_FAILED
            ],
            results=results
        )
        self._logger.info(
            "Offline resolve finished",
            total=report.total,
            pulled=report.pulled,
            aliased=report.aliased,
            pull_failures=len(report.pull_failures),
            join_failures=len(report.join_failures),
            alias_failures=len(report.alias_failures)
        )
        return report

    async def _resolve_guarded(
            self,
            source: ImageReference,
            index: Dict[Tuple[str, str], ImageReference],
            pulled: Dict[ImageReference, Tuple[bool, str]]
    ) -> ResolveResult:
        try:
            return await self._resolve_one(source, index, pulled)
        except Exception as e:
            self._logger.exception("Unexpected error while aliasing image", source=source.text)
            destination = index.get(source.key)
            return ResolveResult(
                source=source.text,
                destination=str(destination) if destination else None,
                outcome=ResolveOutcome.ALIAS_FAILED,
                reason=f"unexpected error: {e}"
            )

    async def _resolve_one(
            self,
            source: ImageReference,
            index: Dict[Tuple[str, str], ImageReference],
            pulled: Dict[ImageReference, Tuple[bool, str]]
    ) -> ResolveResult:
        destination = index.get(source.key)
        if destination is None:
            self._logger.error("No matching mirror for source image", source=source.text)
            return ResolveResult(
                source=source.text,
                outcome=ResolveOutcome.JOIN_FAILED,
                reason=NO_MATCHING_MIRROR
            )

        success, reason = pulled[destination]
        if not success:
            return ResolveResult(
                source=source.text,
                destination=str(destination),
                outcome=ResolveOutcome.PULL_FAILED,
                reason=reason
            )

        success, output = await self._transport.tag(destination, source.text)
        if not success:
            self._logger.error(
                "Failed to alias image",
                source=source.text,
                destination=str(destination),
                reason=tail(output)
            )
            return ResolveResult(
                source=source.text,
                destination=str(destination),
                outcome=ResolveOutcome.ALIAS_FAILED,
                reason=tail(output)
            )

        if self._verify and not await self._transport.image_exists(source.text):
            return ResolveResult(
                source=source.text,
                destination=str(destination),
                outcome=ResolveOutcome.ALIAS_FAILED,
                reason="alias not present in local storage after tagging"
            )

        self._logger.info("Aliased image", source=source.text, destination=str(destination))
        return ResolveResult(
            source=source.text,
            destination=str(destination),
            outcome=ResolveOutcome.ALIASED
        )

    async def run(
            self,
            sources: Sequence[ImageReference],
            destinations: Sequence[ImageReference],
            report_file: Path,
            credentials: Optional[RegistryCredentials] = None
    ) -> AliasReport:
        """
        Resolve and persist the alias report, failing if anything went wrong
        :param sources:
        :param destinations:
        :param report_file:
        :param credentials:
        :return:
        """
        report = await self.resolve(sources, destinations, credentials)
        write_alias_report(report_file, report)
        if not report.ok:
            raise ResolveBatchError(
                f"Offline resolve incomplete: {len(report.pull_failures)} pull, "
                f"{len(report.join_failures)} join and "
                f"{len(report.alias_failures)} alias failures",
                report
            )
        return report
