from collections.abc import Iterable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import smtplib

logger = logging.getLogger(__name__)


class SmtpMailError(Exception):
    pass


class SmtpMailClient:
    def __init__(
        self,
        *,
        host: str,
        from_email: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        timeout_seconds: float = 10.0,
        use_starttls: bool = True,
    ) -> None:
        self.host = host
        self.from_email = from_email
        self.port = port
        self.username = username
        self.password = password
        self.timeout_seconds = timeout_seconds
        self.use_starttls = use_starttls

    def send_mail(self, *, to: Iterable[str], subject: str, body: str) -> list[str]:
        recipients = _normalize_recipients(to)
        if not recipients:
            raise SmtpMailError("No valid recipients for email.")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain", "utf-8"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.use_starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise SmtpMailError(f"SMTP delivery failed: {exc}") from exc
        logger.info("Email sent to %s", ", ".join(recipients))
        return recipients


def _normalize_recipients(addresses: Iterable[str]) -> list[str]:
    normalized: list[str] = []
    seen: set[str] = set()
    for raw_address in addresses:
        cleaned = (raw_address or "").strip()
        if not cleaned or "@" not in cleaned:
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        normalized.append(cleaned)
    return normalized
