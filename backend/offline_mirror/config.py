"""
Application settings
"""
from pathlib import Path
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from offline_mirror.exceptions import InputError, MissingCredentialsError
from offline_mirror.models.schemas import MirrorConfig, RegistryCredentials


class Settings(BaseSettings):
    """
    Settings read from the environment, ~/.env and ./.env
    """
    # Mirror registry
    dest_registry: str = "docker.io"
    dest_namespace: Optional[str] = None
    docker_user: Optional[str] = None
    docker_pat: Optional[SecretStr] = None

    # External tools
    skopeo_bin: str = "skopeo"
    # Run skopeo from this image through the container engine instead of a local binary
    skopeo_image: Optional[str] = None
    container_engine: str = "docker"
    nextflow_bin: str = "nextflow"
    copy_all_platforms: bool = True
    copy_retry_times: int = 3
    command_timeout: Optional[float] = None

    # Batch behaviour
    concurrency: int = 4
    batch_timeout: Optional[float] = None
    default_source_registry: str = "quay.io"

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "console"

    class Config:
        env_file = (str(Path.home() / ".env"), ".env")
        env_file_encoding = "utf-8"
        extra = "ignore"

    def credentials(self) -> Optional[RegistryCredentials]:
        """
        Destination credentials, if both DOCKER_USER and DOCKER_PAT are set
        :return:
        """
        if self.docker_user and self.docker_pat and self.docker_pat.get_secret_value():
            return RegistryCredentials(username=self.docker_user, password=self.docker_pat)
        return None

    def mirror_config(
            self,
            dest_registry: Optional[str] = None,
            dest_namespace: Optional[str] = None,
            credentials: Optional[RegistryCredentials] = None,
            require_credentials: bool = True
    ) -> MirrorConfig:
        """
        Build the per-run mirror configuration, explicit arguments win
        :param dest_registry:
        :param dest_namespace:
        :param credentials:
        :param require_credentials:
        :return:
        """
        registry = dest_registry or self.dest_registry
        namespace = dest_namespace if dest_namespace is not None else self.dest_namespace
        if not registry:
            raise InputError("Destination registry is not configured (DEST_REGISTRY)")
        if namespace is None:
            raise InputError("Destination namespace is not configured (DEST_NAMESPACE)")

        creds = credentials or self.credentials()
        if require_credentials and creds is None:
            raise MissingCredentialsError(
                "Destination credentials missing: set DOCKER_USER and DOCKER_PAT "
                "or pass --dest-creds USER:PASSWORD"
            )
        return MirrorConfig(dest_registry=registry, dest_namespace=namespace, credentials=creds)


settings = Settings()
