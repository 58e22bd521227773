"""Operator notifications for finished files.

Notifiers are best effort: ``notify_success`` and ``notify_failure`` never
raise. Delivery problems are logged and otherwise ignored so that a broken
mail server can never stall the upload pipeline.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage

from grainup.config.models import EmailSettings
from grainup.ingestion.models import FileReport
from grainup.upload.models import FailureReason, UploadFailure, UploadSuccess

LOGGER = logging.getLogger(__name__)

_SUBJECT_PREFIX = "[Grain Uploader]"

_TROUBLESHOOTING_TIPS = [
    "Check that the file is not corrupted or in use by another program.",
    "Verify the Grain account credentials in the grainup configuration.",
    "Ensure there is sufficient disk space.",
    "Check the application logs for more detailed error messages.",
    "Try uploading the file manually to see if the problem is file-specific.",
]


class Notifier:
    """Base class for notifiers; subclasses implement the ``_send_*`` hooks."""

    async def notify_success(self, report: FileReport) -> None:
        """Report an uploaded and relocated file."""
        try:
            await self._send_success(report)
        except Exception:
            LOGGER.warning("Failed to send success notification for %s", report.path.name, exc_info=True)

    async def notify_failure(self, report: FileReport) -> None:
        """Report a file that needs operator attention."""
        try:
            await self._send_failure(report)
        except Exception:
            LOGGER.warning("Failed to send failure notification for %s", report.path.name, exc_info=True)

    async def _send_success(self, report: FileReport) -> None:
        raise NotImplementedError

    async def _send_failure(self, report: FileReport) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Write notifications to the application log."""

    async def _send_success(self, report: FileReport) -> None:
        outcome = _success(report)
        LOGGER.info("Uploaded %s: %s", report.path.name, outcome.remote_url)

    async def _send_failure(self, report: FileReport) -> None:
        outcome = _failure(report)
        LOGGER.error("%s: %s", failure_headline(report), outcome.message)


class EmailNotifier(LogNotifier):
    """Log notifications and also send them as plain-text and HTML emails over SMTP."""

    def __init__(self, settings: EmailSettings) -> None:
        self._settings = settings

    @property
    def configured(self) -> bool:
        """Return whether enough settings exist to send mail."""
        settings = self._settings
        return bool(settings.enabled and settings.smtp_host and self._sender and self._recipient)

    @property
    def _sender(self) -> str | None:
        return self._settings.sender or self._settings.username

    @property
    def _recipient(self) -> str | None:
        return self._settings.recipient or self._sender

    async def _send_success(self, report: FileReport) -> None:
        await super()._send_success(report)
        await self._deliver(build_success_message(report))

    async def _send_failure(self, report: FileReport) -> None:
        await super()._send_failure(report)
        await self._deliver(build_failure_message(report))

    async def _deliver(self, message: EmailMessage) -> None:
        if not self.configured:
            LOGGER.info("Email notifications disabled: SMTP settings are incomplete")
            return
        message["From"] = self._sender
        message["To"] = self._recipient
        await asyncio.to_thread(self._send_blocking, message)
        LOGGER.info("Notification email sent: %s", message["Subject"])

    def _send_blocking(self, message: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            if settings.starttls:
                smtp.starttls()
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.send_message(message)


def _success(report: FileReport) -> UploadSuccess:
    outcome = report.outcome
    if not isinstance(outcome, UploadSuccess):
        raise TypeError(f"{report.path.name} did not upload successfully")
    return outcome


def _failure(report: FileReport) -> UploadFailure:
    outcome = report.outcome
    if not isinstance(outcome, UploadFailure):
        raise TypeError(f"{report.path.name} did not fail")
    return outcome


def failure_headline(report: FileReport) -> str:
    """Return a one-line summary of a failed report."""
    outcome = _failure(report)
    if outcome.reason is FailureReason.RELOCATION_FAILED:
        return f"Uploaded {report.path.name} but could not move it to the processed folder"
    if outcome.reason.category == "detection":
        return f"{report.path.name} never became ready for upload"
    return f"Upload of {report.path.name} failed ({outcome.reason.value})"


def build_success_message(report: FileReport) -> EmailMessage:
    """Compose the success email for ``report``."""
    outcome = _success(report)
    name = report.path.name
    completed = report.finished_at.isoformat()
    location = report.final_path.as_posix() if report.final_path else "processed folder"

    message = EmailMessage()
    message["Subject"] = f"{_SUBJECT_PREFIX} Success: {name}"
    message.set_content(
        "\n".join(
            [
                "Grain Auto-Uploader - Success Notification",
                "",
                "Your file has been uploaded and moved to the processed folder.",
                "",
                f"Filename: {name}",
                f"Completed: {completed}",
                f"Moved to: {location}",
                "",
                "View your recording:",
                outcome.remote_url,
            ]
        )
    )
    message.add_alternative(
        _html_page(
            title="Grain Auto-Uploader - Success",
            colour="#4CAF50",
            rows=[("Filename", name), ("Completed", completed), ("Moved to", location)],
            body=(
                f'<p><strong>View your recording:</strong> '
                f'<a href="{html.escape(outcome.remote_url)}">{html.escape(outcome.remote_url)}</a></p>'
            ),
        ),
        subtype="html",
    )
    return message


def build_failure_message(report: FileReport) -> EmailMessage:
    """Compose the failure email for ``report``."""
    outcome = _failure(report)
    name = report.path.name
    occurred = report.finished_at.isoformat()
    headline = failure_headline(report)

    lines = [
        "Grain Auto-Uploader - Error Notification",
        "",
        f"{headline}.",
        "",
        f"Filename: {name}",
        f"Error time: {occurred}",
        f"Reason: {outcome.reason.value}",
        f"Details: {outcome.message}",
    ]
    if outcome.remote_url:
        lines += ["", "The recording was uploaded and is available at:", outcome.remote_url]
    lines += ["", "Troubleshooting tips:"]
    lines += [f"{index}. {tip}" for index, tip in enumerate(_TROUBLESHOOTING_TIPS, start=1)]
    lines += ["", "The file has NOT been moved and remains in the watch folder."]

    message = EmailMessage()
    message["Subject"] = f"{_SUBJECT_PREFIX} Error: {name}"
    message.set_content("\n".join(lines))

    extra = ""
    if outcome.remote_url:
        escaped = html.escape(outcome.remote_url)
        extra = f'<p>The recording was uploaded: <a href="{escaped}">{escaped}</a></p>'
    tips = "".join(f"<li>{html.escape(tip)}</li>" for tip in _TROUBLESHOOTING_TIPS)
    message.add_alternative(
        _html_page(
            title="Grain Auto-Uploader - Error",
            colour="#f44336",
            rows=[
                ("Filename", name),
                ("Error time", occurred),
                ("Reason", outcome.reason.value),
                ("Details", outcome.message),
            ],
            body=(
                f"<p><strong>{html.escape(headline)}.</strong></p>{extra}"
                f"<p><strong>Troubleshooting tips:</strong></p><ul>{tips}</ul>"
                "<p><strong>Note:</strong> the file has NOT been moved and remains in the watch folder.</p>"
            ),
        ),
        subtype="html",
    )
    return message


def _html_page(*, title: str, colour: str, rows: list[tuple[str, str]], body: str) -> str:
    details = "".join(
        f"<p><strong>{html.escape(label)}:</strong> {html.escape(value)}</p>" for label, value in rows
    )
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #333;\">"
        f'<div style="background-color: {colour}; color: white; padding: 15px;">{html.escape(title)}</div>'
        f'<div style="padding: 20px; border-left: 4px solid {colour};">{details}</div>'
        f"<div style=\"padding: 0 20px;\">{body}</div>"
        '<p style="font-size: 12px; color: #666;">This is an automated message from Grain Auto-Uploader.</p>'
        "</body></html>"
    )


__all__ = [
    "Notifier",
    "LogNotifier",
    "EmailNotifier",
    "failure_headline",
    "build_success_message",
    "build_failure_message",
]
