"""
Mirror existence check
"""
from typing import Optional

import structlog

from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import RegistryCredentials
from offline_mirror.services.transport import RegistryTransport, tail


class ExistenceChecker:
    """
    Answers whether a destination reference is already in the mirror

    An inspect that errors for any reason counts as "not present": the copy
    is attempted again instead of blocking the image.
    """

    def __init__(
            self,
            transport: RegistryTransport,
            logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self._transport = transport
        self._logger = logger or get_logger()

    async def exists(
            self,
            destination: ImageReference,
            credentials: Optional[RegistryCredentials] = None
    ) -> bool:
        success, output = await self._transport.inspect(destination, credentials)
        if not success:
            self._logger.debug(
                "Image not found in mirror, copy needed",
                destination=str(destination),
                detail=tail(output, 1)
            )
        return success
