"""Mail dispatcher backed by Resend."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable, Protocol

import resend

from .config import settings

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class OutgoingEmail:
    sender: str
    to: str
    subject: str
    html: str


@dataclass(frozen=True)
class EmailTemplate:
    """A rendered message that has not been addressed yet."""

    subject: str
    html: str

    def addressed_to(self, recipient: str, *, sender: str | None = None) -> OutgoingEmail:
        return OutgoingEmail(
            sender=sender or settings.mail_from,
            to=recipient,
            subject=self.subject,
            html=self.html,
        )


@dataclass(frozen=True)
class SendResult:
    email: str
    success: bool
    id: str | None = None
    error: str | None = None


@dataclass
class DispatchReport:
    successful: int = 0
    failed: int = 0
    failures: list[SendResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful + self.failed

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0

    def as_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total": self.total,
        }


class Mailer(Protocol):
    def send(self, message: OutgoingEmail) -> SendResult: ...


class ResendMailer:
    """Send through the Resend API; one request per recipient."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("A Resend API key is required")
        self.api_key = api_key

    def send(self, message: OutgoingEmail) -> SendResult:
        resend.api_key = self.api_key
        params: resend.Emails.SendParams = {
            "from": message.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        try:
            response = resend.Emails.send(params)
        except Exception as exc:
            logger.error("Failed to send email to %s: %s", message.to, exc)
            return SendResult(email=message.to, success=False, error=str(exc))
        return SendResult(email=message.to, success=True, id=response.get("id"))


class NullMailer:
    """Log instead of sending; used when no API key is configured."""

    def send(self, message: OutgoingEmail) -> SendResult:
        logger.info(
            "Mail disabled; would send %r to %s", message.subject, message.to
        )
        return SendResult(email=message.to, success=True)


def get_mailer() -> Mailer:
    if settings.mail_enabled:
        return ResendMailer(settings.resend_api_key)
    return NullMailer()


def send_one(mailer: Mailer, message: OutgoingEmail) -> SendResult:
    try:
        return mailer.send(message)
    except Exception as exc:
        logger.exception("Mailer raised while sending to %s", message.to)
        return SendResult(email=message.to, success=False, error=str(exc))


def dispatch_batch(
    mailer: Mailer,
    template: EmailTemplate,
    recipients: Iterable[str],
    *,
    max_workers: int | None = None,
) -> DispatchReport:
    """Send one message per recipient concurrently.

    Sends are independent and unordered. Failures are counted, never retried.
    """
    addresses = list(dict.fromkeys(recipients))
    report = DispatchReport()
    if not addresses:
        return report
    workers = max(1, min(max_workers or settings.mail_max_workers, len(addresses)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(send_one, mailer, template.addressed_to(address))
            for address in addresses
        ]
        for future in as_completed(futures):
            result = future.result()
            if result.success:
                report.successful += 1
            else:
                report.failed += 1
                report.failures.append(result)
    logger.info(
        "Email sending completed: %d successful, %d failed",
        report.successful,
        report.failed,
    )
    if report.failures:
        logger.warning(
            "Failed emails: %s",
            ", ".join(f"{r.email} ({r.error})" for r in report.failures),
        )
    return report
