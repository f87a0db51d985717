"""
Registry transport
Thin async wrapper over skopeo (remote inspect/copy) and the container
engine CLI (login/pull/tag on the local host)
"""
import asyncio
import re
import subprocess
from typing import List, Optional

import structlog

from offline_mirror.config import Settings
from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import RegistryCredentials

_SECRET_PATTERNS = [
    (re.compile(r"(--password)\s+\S+"), r"\1 ***"),
    (re.compile(r"(--(?:src-|dest-)?creds)\s+\S+"), r"\1 ***:***"),
]


def redact(cmd_str: str) -> str:
    """
    Hide passwords and credentials in a command line
    :param cmd_str:
    :return:
    """
    for pattern, replacement in _SECRET_PATTERNS:
        cmd_str = pattern.sub(replacement, cmd_str)
    return cmd_str


def tail(output: str, lines: int = 5) -> str:
    """
    Last few non-empty lines of command output, used as a failure reason
    :param output:
    :param lines:
    :return:
    """
    kept = [line.strip() for line in output.strip().splitlines() if line.strip()]
    return " | ".join(kept[-lines:]) or "no output"


class RegistryTransport:
    """
    Runs skopeo and docker/podman commands

    Every operation returns `(success, output)`; nothing here raises for a
    failed command, callers decide what a failure means.
    """

    def __init__(
            self,
            skopeo_bin: str = "skopeo",
            skopeo_image: Optional[str] = None,
            engine: str = "docker",
            nextflow_bin: str = "nextflow",
            retry_times: int = 3,
            copy_all_platforms: bool = True,
            command_timeout: Optional[float] = None,
            logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.skopeo_bin = skopeo_bin
        self.skopeo_image = skopeo_image
        self.engine = engine
        self.nextflow_bin = nextflow_bin
        self.retry_times = retry_times
        self.copy_all_platforms = copy_all_platforms
        self.command_timeout = command_timeout
        self._logger = logger or get_logger()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistryTransport":
        return cls(
            skopeo_bin=settings.skopeo_bin,
            skopeo_image=settings.skopeo_image,
            engine=settings.container_engine,
            nextflow_bin=settings.nextflow_bin,
            retry_times=settings.copy_retry_times,
            copy_all_platforms=settings.copy_all_platforms,
            command_timeout=settings.command_timeout
        )

    def check_tool_available(self, tool: str) -> bool:
        """
        Check whether a command line tool can be executed
        :param tool:
        :return:
        """
        try:
            result = subprocess.run(
                [tool, "--version"],
                capture_output=True,
                timeout=10
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def check_skopeo_available(self) -> bool:
        if self.skopeo_image:
            return self.check_engine_available()
        return self.check_tool_available(self.skopeo_bin)

    def check_engine_available(self) -> bool:
        return self.check_tool_available(self.engine)

    async def run_command(
            self,
            cmd: List[str],
            stdin_input: Optional[str] = None,
            logs: Optional[List[str]] = None
    ) -> tuple[bool, str]:
        """
        Run a command asynchronously and capture its combined output
        :param cmd:
        :param stdin_input: optional data written to stdin
        :param logs: optional list receiving the redacted command and its output
        :return: (success, output)
        """
        safe_cmd_str = redact(" ".join(cmd))
        self._logger.debug("Running command", command=safe_cmd_str)
        if logs is not None:
            logs.append(f"$ {safe_cmd_str}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin_input else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except OSError as e:
            error_msg = f"Could not execute {cmd[0]}: {e}"
            if logs is not None:
                logs.append(error_msg)
            return False, error_msg

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(input=stdin_input.encode() if stdin_input else None),
                timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            error_msg = f"Command timed out after {self.command_timeout}s"
            if logs is not None:
                logs.append(error_msg)
            return False, error_msg
        except asyncio.CancelledError:
            # In-flight transfers are aborted, not left running
            await self._kill(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        if logs is not None:
            logs.extend(line for line in output.strip().split("\n") if line.strip())

        success = process.returncode == 0
        if not success:
            self._logger.debug(
                "Command failed",
                command=safe_cmd_str,
                returncode=process.returncode,
                output=tail(output)
            )
            if logs is not None:
                logs.append(f"Command failed with exit code {process.returncode}")
        return success, output

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    def _skopeo(self) -> List[str]:
        if self.skopeo_image:
            return [self.engine, "run", "--rm", self.skopeo_image]
        return [self.skopeo_bin]

    async def inspect(
            self,
            image: ImageReference,
            credentials: Optional[RegistryCredentials] = None
    ) -> tuple[bool, str]:
        """
        Read image metadata from the registry without transferring layers
        :param image:
        :param credentials:
        :return:
        """
        cmd = self._skopeo() + ["inspect"]
        if credentials:
            cmd.extend(["--creds", credentials.as_creds()])
        cmd.append(image.docker_uri)
        return await self.run_command(cmd)

    async def copy(
            self,
            source: ImageReference,
            destination: ImageReference,
            credentials: Optional[RegistryCredentials] = None,
            logs: Optional[List[str]] = None
    ) -> tuple[bool, str]:
        """
        Copy an image between registries with skopeo
        :param source:
        :param destination:
        :param credentials: destination credentials
        :param logs:
        :return:
        """
        cmd = self._skopeo() + ["copy", "--retry-times", str(self.retry_times)]
        if self.copy_all_platforms:
            cmd.append("--all")
        if credentials:
            cmd.extend(["--dest-creds", credentials.as_creds()])
        cmd.extend([source.docker_uri, destination.docker_uri])
        return await self.run_command(cmd, logs=logs)

    async def login(
            self,
            registry: str,
            credentials: RegistryCredentials
    ) -> tuple[bool, str]:
        """
        Log the container engine in, passing the password on stdin
        :param registry:
        :param credentials:
        :return:
        """
        return await self.run_command(
            [
                self.engine, "login",
                "-u", credentials.username,
                "--password-stdin",
                registry
            ],
            stdin_input=credentials.password.get_secret_value()
        )

    async def pull(self, image: ImageReference) -> tuple[bool, str]:
        return await self.run_command([self.engine, "pull", str(image)])

    async def tag(self, existing: ImageReference, alias: str) -> tuple[bool, str]:
        return await self.run_command([self.engine, "tag", str(existing), alias])

    async def image_exists(self, name: str) -> bool:
        """
        Check whether an image name is present in local engine storage
        :param name:
        :return:
        """
        success, _ = await self.run_command([self.engine, "image", "inspect", name])
        return success
