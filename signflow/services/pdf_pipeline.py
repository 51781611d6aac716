"""
Final document generation.

Every file of a task is processed on its own: a failure on one file is
recorded and the remaining files are still generated. The pipeline never
changes the task status and never retries.
"""
import asyncio
import logging
from typing import List

from signflow.exceptions import NotFoundError
from signflow.gcs import ObjectStorage
from signflow.models import (
    FileGenerationError,
    FileStatus,
    GeneratedFile,
    PipelineResult,
    SignaturePosition,
    TaskFile,
)
from signflow.pdf import FieldStamp, PDFComposer
from signflow.repository import Repository
from signflow.services.positions import PositionStore
from signflow.utils.datetime_utils import utc_now
from signflow.utils.security import compute_bytes_hash

logger = logging.getLogger(__name__)


def final_object_path(task_id: str, file_id: str) -> str:
    return f"tasks/{task_id}/final/{file_id}.pdf"


def build_stamps(positions: List[SignaturePosition]) -> List[FieldStamp]:
    return [
        FieldStamp(
            position_id=p.id,
            page_number=p.page_number,
            rect=p.rect,
            field_type=p.field_type,
            value=p.signature_content or p.default_value or "",
        )
        for p in positions
    ]


class PDFCompositionPipeline:

    def __init__(
        self,
        repository: Repository,
        storage: ObjectStorage,
        positions: PositionStore,
        composer: PDFComposer,
    ):
        self.repository = repository
        self.storage = storage
        self.positions = positions
        self.composer = composer

    async def generate(self, task_id: str) -> PipelineResult:
        task = await self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        result = PipelineResult(task_id=task.id)
        files = await self.repository.list_files(task.id)
        logger.info(f"Generating final documents for task {task.id} ({len(files)} file(s))")

        for task_file in files:
            try:
                result.generated_files.append(await self._generate_file(task.id, task_file))
            except Exception as e:
                logger.error(f"Final document for file {task_file.id} failed: {e}", exc_info=True)
                result.errors.append(FileGenerationError(
                    file_id=task_file.id,
                    display_name=task_file.display_name,
                    error=str(e),
                ))

        logger.info(
            f"Final documents for task {task.id}: "
            f"{len(result.generated_files)} generated, {len(result.errors)} failed"
        )
        return result

    async def _generate_file(self, task_id: str, task_file: TaskFile) -> GeneratedFile:
        original = await self.storage.download(task_file.original_file_url)
        if task_file.mime_type != "application/pdf":
            original = await asyncio.to_thread(self.composer.image_to_pdf, original, task_file.mime_type)

        signed = await self.positions.signed_for_file(task_file.id)
        composed = await asyncio.to_thread(self.composer.compose, original, build_stamps(signed))
        for position_id, reason in composed.skipped:
            logger.warning(f"Field {position_id} not rendered on file {task_file.id}: {reason}")

        object_path = final_object_path(task_id, task_file.id)
        url = await self.storage.upload(composed.pdf_bytes, object_path, "application/pdf")
        await self.repository.update_file(task_file.id, {
            "final_storage_path": object_path,
            "final_file_url": url,
            "status": FileStatus.COMPLETED,
            "completed_at": utc_now(),
        })

        return GeneratedFile(
            file_id=task_file.id,
            display_name=task_file.display_name,
            final_file_url=url,
            sha256=compute_bytes_hash(composed.pdf_bytes),
            fields_rendered=composed.rendered,
            fields_skipped=len(composed.skipped),
        )
