"""SMTP delivery for complaint notification emails."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import List

from flask import current_app


class EmailDeliveryError(Exception):
    """Raised when email dispatch fails."""


def mail_configured() -> bool:
    return bool(current_app.config.get("MAIL_SERVER"))


def _dispatch_email(subject: str, text_body: str, sender: str, recipients: List[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Reply-To"] = sender
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body)

    host = current_app.config.get("MAIL_SERVER")
    port = int(current_app.config.get("MAIL_PORT", 25))
    username = current_app.config.get("MAIL_USERNAME")
    password = current_app.config.get("MAIL_PASSWORD")
    use_tls = bool(current_app.config.get("MAIL_USE_TLS"))
    use_ssl = bool(current_app.config.get("MAIL_USE_SSL"))

    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    try:
        if use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context) as server:
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port) as server:
                server.ehlo()
                if use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
    except Exception as exc:  # pragma: no cover - external I/O
        raise EmailDeliveryError(str(exc)) from exc


def send_notification_email(recipient: str, subject: str, message: str, complaint_id: str | None = None) -> None:
    lines = [message, ""]
    if complaint_id:
        lines.append(f"Complaint reference: {complaint_id}")
    lines.append("This is an automated message from the civic complaint service.")
    sender = current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME") or ""
    _dispatch_email(subject, "\n".join(lines), sender, [recipient])
