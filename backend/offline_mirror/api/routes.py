"""
API routes
"""
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from offline_mirror.config import Settings, settings
from offline_mirror.exceptions import InputError
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import (
    ConfigResponse,
    MirrorProgress,
    MirrorRequest,
    MirrorResponse,
    MirrorStatus,
)
from offline_mirror.services.image_list import unique_references
from offline_mirror.services.mirror import MirrorCopier
from offline_mirror.services.tasks import MirrorTaskService, mirror_task_service
from offline_mirror.services.transport import RegistryTransport

router = APIRouter()


def get_settings() -> Settings:
    return settings


def get_transport(app_settings: Settings = Depends(get_settings)) -> RegistryTransport:
    return RegistryTransport.from_settings(app_settings)


def get_task_service() -> MirrorTaskService:
    return mirror_task_service


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.get("/config", response_model=ConfigResponse)
async def get_config(
        app_settings: Settings = Depends(get_settings),
        transport: RegistryTransport = Depends(get_transport)
):
    """
    Mirror target and tool availability
    :return:
    """
    return ConfigResponse(
        mirror_configured=bool(app_settings.dest_registry and app_settings.dest_namespace is not None),
        credentials_configured=app_settings.credentials() is not None,
        skopeo_available=transport.check_skopeo_available(),
        engine_available=transport.check_engine_available(),
        container_engine=transport.engine,
        dest_registry=app_settings.dest_registry,
        dest_namespace=app_settings.dest_namespace,
        username=app_settings.docker_user
    )


@router.post("/mirror", response_model=MirrorResponse)
async def start_mirror(
        request: MirrorRequest,
        background_tasks: BackgroundTasks,
        app_settings: Settings = Depends(get_settings),
        transport: RegistryTransport = Depends(get_transport),
        service: MirrorTaskService = Depends(get_task_service)
):
    """
    Start a background mirror run
    :param request:
    :param background_tasks:
    :return:
    """
    try:
        images = unique_references(
            ImageReference.parse(image).check_qualified() for image in request.images
        )
        if not images:
            raise InputError("No images to mirror")
        config = app_settings.mirror_config(
            dest_registry=request.dest_registry,
            dest_namespace=request.dest_namespace
        )
    except InputError as e:
        raise HTTPException(status_code=422, detail=str(e))

    copier = MirrorCopier(
        transport,
        concurrency=app_settings.concurrency,
        timeout=app_settings.batch_timeout
    )
    task = service.create_task(images, config)
    background_tasks.add_task(service.run_task, task, copier, config)

    return MirrorResponse(
        task_id=task.task_id,
        status=MirrorStatus.PENDING,
        message=f"Mirror task created for {len(images)} images, target: {config.target}"
    )


@router.get("/mirror/{task_id}", response_model=MirrorProgress)
async def get_mirror_progress(
        task_id: str,
        service: MirrorTaskService = Depends(get_task_service)
):
    progress = service.get_task_progress(task_id)
    if not progress:
        raise HTTPException(
            status_code=404,
            detail=f"Task {task_id} does not exist"
        )
    return progress


@router.get("/tasks")
async def list_tasks(service: MirrorTaskService = Depends(get_task_service)):
    """
    List all mirror tasks
    :return:
    """
    tasks: List[dict] = []
    for task_id, task in service.tasks.items():
        tasks.append({
            "task_id": task_id,
            "target": task.target,
            "images": len(task.images),
            "status": task.status,
            "progress": task.progress
        })

    return {"tasks": tasks}
