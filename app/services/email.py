"""
Email service — sends verification and welcome emails.

Transports, picked by ``config.email_backend()``:

  • mailgun – Mailgun HTTP API (httpx)
  • smtp    – any SMTP relay (aiosmtplib)
  • console – nothing is sent; the message is logged so you can see what
              *would* be sent without configuring a provider
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from app import config

logger = logging.getLogger(__name__)

_TIMEOUT = 15.0


class EmailDeliveryError(Exception):
    """The email provider rejected the message or could not be reached."""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


# ── Templates ─────────────────────────────────────────────────────────────


def build_otp_email(to_email: str, code: str, expiry_minutes: int) -> EmailMessage:
    subject = f"Your {config.APP_NAME} Verification Code"
    html = f"""
    <html>
    <body style="font-family:sans-serif;color:#333;line-height:1.6">
      <div style="max-width:600px;margin:0 auto;padding:20px">
        <h2 style="background:#4F46E5;color:#fff;padding:20px;text-align:center">
          {config.APP_NAME} — Email Verification
        </h2>
        <p>Use the code below to verify your email address:</p>
        <p style="font-size:32px;font-weight:bold;color:#4F46E5;text-align:center;letter-spacing:4px">
          {code}
        </p>
        <ul>
          <li>This code will expire in {expiry_minutes} minutes</li>
          <li>Never share this code with anyone</li>
          <li>If you didn't request this code, please ignore this email</li>
        </ul>
        <p style="margin-top:1em;font-size:0.9em;color:#888">
          This email was sent to {to_email}.
        </p>
      </div>
    </body>
    </html>
    """
    text = (
        f"{config.APP_NAME} - Email Verification\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code will expire in {expiry_minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email.\n"
    )
    return EmailMessage(to=to_email, subject=subject, html=html, text=text)


def build_welcome_email(to_email: str) -> EmailMessage:
    dashboard = f"{config.APP_URL}/dashboard"
    subject = f"Welcome to {config.APP_NAME}!"
    html = f"""
    <html>
    <body style="font-family:sans-serif;color:#333;line-height:1.6">
      <div style="max-width:600px;margin:0 auto;padding:20px">
        <h2 style="background:#10B981;color:#fff;padding:20px;text-align:center">
          Welcome to {config.APP_NAME}!
        </h2>
        <p>Your email address has been verified. You can now create events,
           manage guest lists and send check-in QR codes.</p>
        <p><a href="{dashboard}">Go to your dashboard</a></p>
        <p style="margin-top:1em;font-size:0.9em;color:#888">
          This email was sent to {to_email}.
        </p>
      </div>
    </body>
    </html>
    """
    text = (
        f"Welcome to {config.APP_NAME}!\n\n"
        "Your email has been verified successfully.\n\n"
        f"Visit your dashboard: {dashboard}\n"
    )
    return EmailMessage(to=to_email, subject=subject, html=html, text=text)


# ── Transports ────────────────────────────────────────────────────────────


async def _send_mailgun(message: EmailMessage, transport: httpx.AsyncBaseTransport | None) -> str:
    if not config.mailgun_configured():
        raise EmailDeliveryError("Mailgun configuration missing")

    url = f"{config.MAILGUN_API_BASE}/{config.MAILGUN_DOMAIN}/messages"
    data = {
        "from": f"{config.MAILGUN_FROM_NAME} <{config.MAILGUN_FROM_EMAIL}>",
        "to": message.to,
        "subject": message.subject,
        "html": message.html,
        "text": message.text,
    }
    async with httpx.AsyncClient(timeout=_TIMEOUT, transport=transport) as client:
        try:
            resp = await client.post(url, data=data, auth=("api", config.MAILGUN_API_KEY))
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise EmailDeliveryError(
                f"Mailgun API error: {exc.response.status_code} - {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"Mailgun request failed: {exc}") from exc
        except ValueError as exc:
            raise EmailDeliveryError(f"Mailgun returned an unreadable response: {exc}") from exc
    return body.get("id", "")


async def _send_smtp(message: EmailMessage) -> str:
    import aiosmtplib

    msg = MIMEMultipart("alternative")
    msg["Subject"] = message.subject
    msg["From"] = config.SMTP_FROM_EMAIL
    msg["To"] = message.to
    msg.attach(MIMEText(message.text, "plain"))
    msg.attach(MIMEText(message.html, "html"))

    try:
        await aiosmtplib.send(
            msg,
            hostname=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            start_tls=config.SMTP_USE_TLS,
        )
    except (aiosmtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"SMTP send failed: {exc}") from exc
    return msg.get("Message-ID", "")


async def send_email(
    message: EmailMessage,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Deliver *message* through the configured backend.

    Returns the provider's message id ("" in console mode).
    Raises EmailDeliveryError when the provider fails.
    """
    backend = config.email_backend()

    # ── Console fallback (dev mode) ───────────────────────────────────
    if backend == "console":
        logger.info(
            "📧 [DEV] Would send email to %s:\n  Subject: %s\n%s",
            message.to,
            message.subject,
            message.text,
        )
        return ""

    try:
        if backend == "mailgun":
            message_id = await _send_mailgun(message, transport)
        else:
            message_id = await _send_smtp(message)
    except EmailDeliveryError:
        logger.exception("Failed to send email to %s via %s", message.to, backend)
        raise

    logger.info("Email sent to %s via %s (%s)", message.to, backend, message_id or "no id")
    return message_id


async def send_otp_email(to_email: str, code: str, expiry_minutes: int) -> str:
    return await send_email(build_otp_email(to_email, code, expiry_minutes))


async def send_welcome_email(to_email: str) -> str:
    return await send_email(build_welcome_email(to_email))
