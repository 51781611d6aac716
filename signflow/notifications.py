"""
Recipient-facing emails: invitation, signing confirmation and delivery of
the final documents.

Delivery is best effort. Failures are logged and returned as warning
strings so the triggering operation still succeeds.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from html import escape
from typing import List, Optional, Sequence, Tuple

from signflow.config import Settings
from signflow.email import EmailSender
from signflow.gcs import ObjectStorage
from signflow.models import Recipient, RecipientStatus, Task, TaskFile
from signflow.utils.logging import mask_email

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    sent: int = 0
    warnings: List[str] = field(default_factory=list)


def _wrap_html(title: str, body: str) -> str:
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:560px;margin:0 auto\">"
        f"<h2 style=\"color:#000080\">{escape(title)}</h2>{body}</div>"
    )


class Notifier:

    def __init__(self, email: EmailSender, storage: ObjectStorage, settings: Settings):
        self.email = email
        self.storage = storage
        self.settings = settings

    async def _send(self, to_email: str, subject: str, html: str, text: str) -> Optional[str]:
        """Send one email; returns a warning string instead of raising."""
        try:
            result = await self.email.send_email(to_email=to_email, subject=subject, html=html, text=text)
        except Exception as e:
            logger.error(f"Email dispatch to {mask_email(to_email)} failed: {e}")
            return f"Email to {mask_email(to_email)} failed: {e}"
        if not result.success:
            return f"Email to {mask_email(to_email)} not delivered: {result.error}"
        return None

    async def send_invitation(self, task: Task, recipient: Recipient) -> Optional[str]:
        link = self.settings.build_signing_link(recipient.token)
        expires = recipient.expires_at.strftime("%Y-%m-%d")
        subject = f"Signature requested: {task.title}"
        body = (
            f"<p>Hello {escape(recipient.name)},</p>"
            f"<p>You have been asked to sign <strong>{escape(task.title)}</strong>.</p>"
            f"<p><a href=\"{escape(link)}\">Open the documents</a></p>"
            f"<p>This link is valid until {expires}.</p>"
        )
        text = (
            f"Hello {recipient.name},\n\nYou have been asked to sign \"{task.title}\".\n"
            f"Open the documents: {link}\nThis link is valid until {expires}.\n"
        )
        warning = await self._send(recipient.email, subject, _wrap_html(subject, body), text)
        if warning is None:
            logger.info(f"Invitation sent to {mask_email(recipient.email)}")
        return warning

    async def send_invitations(self, task: Task, recipients: Sequence[Recipient]) -> DispatchReport:
        report = DispatchReport()
        for recipient in recipients:
            if recipient.status == RecipientStatus.CANCELLED:
                continue
            warning = await self.send_invitation(task, recipient)
            if warning:
                report.warnings.append(warning)
            else:
                report.sent += 1
        return report

    async def send_signer_confirmation(self, task: Task, recipient: Recipient) -> Optional[str]:
        subject = f"You signed: {task.title}"
        body = (
            f"<p>Hello {escape(recipient.name)},</p>"
            f"<p>Thank you, your signature on <strong>{escape(task.title)}</strong> was recorded.</p>"
            "<p>You will receive the final documents once every recipient has signed.</p>"
        )
        text = (
            f"Hello {recipient.name},\n\nThank you, your signature on \"{task.title}\" was recorded.\n"
            "You will receive the final documents once every recipient has signed.\n"
        )
        return await self._send(recipient.email, subject, _wrap_html(subject, body), text)

    async def _final_links(self, files: Sequence[TaskFile], ttl: timedelta) -> Tuple[List[Tuple[str, str]], List[str]]:
        links = []
        warnings = []
        for task_file in files:
            if not task_file.final_storage_path:
                warnings.append(f"File {task_file.id} has no final document")
                continue
            name = f"{task_file.display_name or task_file.original_filename}.pdf"
            try:
                url = await self.storage.create_signed_url(task_file.final_storage_path, ttl, filename=name)
            except Exception as e:
                logger.error(f"Could not sign download link for file {task_file.id}: {e}")
                warnings.append(f"Download link for file {task_file.id} unavailable: {e}")
                continue
            links.append((name, url))
        return links, warnings

    async def send_final_documents(
        self,
        task: Task,
        recipients: Sequence[Recipient],
        files: Sequence[TaskFile],
    ) -> DispatchReport:
        """Email every signed recipient download links valid for FINAL_PDF_LINK_TTL_HOURS."""
        ttl_hours = self.settings.final_pdf_link_ttl_hours
        links, warnings = await self._final_links(files, timedelta(hours=ttl_hours))
        report = DispatchReport(warnings=warnings)
        if not links:
            report.warnings.append("No final documents available to send")
            return report

        subject = f"Completed: {task.title}"
        items_html = "".join(f"<li><a href=\"{escape(url)}\">{escape(name)}</a></li>" for name, url in links)
        items_text = "\n".join(f"- {name}: {url}" for name, url in links)

        for recipient in recipients:
            if recipient.status != RecipientStatus.SIGNED:
                continue
            body = (
                f"<p>Hello {escape(recipient.name)},</p>"
                f"<p>All recipients have signed <strong>{escape(task.title)}</strong>.</p>"
                f"<ul>{items_html}</ul>"
                f"<p>These links expire in {ttl_hours} hours.</p>"
            )
            text = (
                f"Hello {recipient.name},\n\nAll recipients have signed \"{task.title}\".\n"
                f"{items_text}\nThese links expire in {ttl_hours} hours.\n"
            )
            warning = await self._send(recipient.email, subject, _wrap_html(subject, body), text)
            if warning:
                report.warnings.append(warning)
            else:
                report.sent += 1

        logger.info(f"Final documents sent to {report.sent} recipient(s), {len(report.warnings)} warning(s)")
        return report
