"""
Task finalization once every recipient has signed.
"""
import logging

from signflow.models import CompletionResult, RecipientStatus, TaskStatus
from signflow.notifications import Notifier
from signflow.repository import Repository
from signflow.services.pdf_pipeline import PDFCompositionPipeline
from signflow.status import compute_transition_updates

logger = logging.getLogger(__name__)


class CompletionAggregator:

    def __init__(self, repository: Repository, pipeline: PDFCompositionPipeline, notifier: Notifier):
        self.repository = repository
        self.pipeline = pipeline
        self.notifier = notifier

    async def on_recipient_completed(self, task_id: str) -> CompletionResult:
        """
        Complete the task if every recipient has signed.

        Recipients are re-read on every call. The status write only
        succeeds while the task is still in_progress, so when two
        recipients finish together exactly one caller wins and runs the
        final document generation; the other reports already_completed.
        """
        recipients = await self.repository.list_recipients(task_id)
        pending = [r for r in recipients if r.status != RecipientStatus.SIGNED]
        all_signed = bool(recipients) and not pending
        result = CompletionResult(task_id=task_id, all_signed=all_signed, pending_recipients=len(pending))

        if not all_signed:
            logger.info(f"Task {task_id}: {len(pending)} recipient(s) still to sign")
            return result

        task = await self.repository.get_task(task_id)
        if task is None:
            logger.warning(f"Task {task_id} disappeared before completion")
            return result
        if task.status == TaskStatus.COMPLETED:
            result.already_completed = True
            return result
        if task.status != TaskStatus.IN_PROGRESS:
            logger.warning(f"Task {task_id} is '{task.status.value}', not completing")
            return result

        updates = compute_transition_updates(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        updates["status"] = TaskStatus.COMPLETED
        completed = await self.repository.update_task_if_status(task_id, TaskStatus.IN_PROGRESS, updates)
        if completed is None:
            logger.info(f"Task {task_id} was finalized by a concurrent request")
            result.already_completed = True
            return result

        result.task_completed = True
        logger.info(f"Task {task_id} completed, generating final documents")

        # A failure here leaves the task completed
        try:
            result.pdf_result = await self.pipeline.generate(task_id)
        except Exception as e:
            logger.error(f"Final document generation for task {task_id} failed: {e}", exc_info=True)
            result.pipeline_error = str(e)
            result.email_warnings = ["Final document generation failed, emails not sent"]
            return result

        if result.pdf_result.generated_files:
            files = await self.repository.list_files(task_id)
            report = await self.notifier.send_final_documents(completed, recipients, files)
            result.email_warnings = report.warnings
        else:
            result.email_warnings = ["No final documents were generated, emails not sent"]
        return result
