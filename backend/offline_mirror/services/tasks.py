"""
Background mirror tasks for the HTTP API
"""
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from offline_mirror.exceptions import MirrorError
from offline_mirror.log import get_logger
from offline_mirror.models.reference import ImageReference
from offline_mirror.models.schemas import (
    CopyOutcome,
    CopyReport,
    CopyResult,
    MirrorConfig,
    MirrorProgress,
    MirrorStatus,
)
from offline_mirror.services.mirror import MirrorCopier


@dataclass
class MirrorTask:
    """
    One mirror run started through the API
    """
    task_id: str
    images: List[ImageReference]
    target: str
    status: MirrorStatus = MirrorStatus.PENDING
    current_step: str = ""
    progress: int = 0
    finished: int = 0
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    report: Optional[CopyReport] = None


class MirrorTaskService:
    """
    Keeps track of mirror tasks and their progress
    """

    def __init__(self):
        self.tasks: Dict[str, MirrorTask] = {}

    def create_task(
            self,
            images: List[ImageReference],
            config: MirrorConfig
    ) -> MirrorTask:
        task_id = str(uuid.uuid4())[:8]
        task = MirrorTask(task_id=task_id, images=images, target=config.target)
        self.tasks[task_id] = task
        return task

    async def run_task(
            self,
            task: MirrorTask,
            copier: MirrorCopier,
            config: MirrorConfig
    ) -> MirrorTask:
        """
        Run a mirror batch for a task, recording progress and logs
        :param task:
        :param copier:
        :param config:
        :return:
        """
        task.status = MirrorStatus.RUNNING
        task.current_step = "Mirroring images"
        task.logs.append(f"Starting mirror task: {task.task_id}")
        task.logs.append(f"Target: {task.target}")
        task.logs.append(f"Images: {len(task.images)}")

        def on_result(result: CopyResult) -> None:
            task.finished += 1
            task.progress = int(task.finished * 100 / len(task.images))
            if result.outcome == CopyOutcome.FAILED:
                task.logs.append(f"Failed: {result.source}: {result.reason}")
            else:
                task.logs.append(f"{result.outcome.value.capitalize()}: {result.source} -> {result.destination}")

        try:
            _, report = await copier.copy_all(task.images, config, on_result=on_result, logs=task.logs)
        except MirrorError as e:
            task.status = MirrorStatus.FAILED
            task.error = str(e)
            task.current_step = "Mirror failed"
            task.logs.append(f"Mirror failed: {e}")
            return task
        except Exception as e:
            get_logger().exception("Mirror task crashed", task_id=task.task_id)
            task.status = MirrorStatus.FAILED
            task.error = f"Unexpected error: {e}"
            task.current_step = "Mirror failed"
            task.logs.append(f"Mirror error: {e}")
            return task

        task.report = report
        task.progress = 100
        if report.ok:
            task.status = MirrorStatus.SUCCESS
            task.current_step = "Mirror completed"
            task.logs.append(f"Copied: {report.copied}, Skipped: {report.skipped}")
        else:
            task.status = MirrorStatus.FAILED
            task.current_step = "Mirror completed with failures"
            task.error = f"{report.failed} of {report.total} images failed"
            task.logs.append(f"Completed with {report.failed} failures")
        return task

    def get_task(self, task_id: str) -> Optional[MirrorTask]:
        return self.tasks.get(task_id)

    def get_task_progress(self, task_id: str) -> Optional[MirrorProgress]:
        """
        Progress snapshot for a task
        :param task_id:
        :return:
        """
        task = self.tasks.get(task_id)
        if not task:
            return None

        return MirrorProgress(
            task_id=task.task_id,
            status=task.status,
            current_step=task.current_step,
            progress=task.progress,
            logs=task.logs.copy(),
            error=task.error,
            report=task.report
        )


mirror_task_service = MirrorTaskService()
