"""Session notification emails.

Three messages, each with an HTML and a plain-text body:
- magic link: sent when a session is created or its email changes
- results: sent when the products stage completes
- recovery: sent by the recovery sweep for sessions stalled mid-pipeline

Sends are single attempts that raise EmailError on failure. Callers decide
whether to retry and whether a failure matters.

ERROR LOGGING REQUIREMENTS:
- Log every send with masked recipient and session_id
- Never log magic-link tokens
"""

from dataclasses import dataclass
from html import escape

from merchgen.core.logging import get_logger, mask_email
from merchgen.integrations.email import EmailClient, EmailResult

logger = get_logger(__name__)

DEFAULT_BRAND_NAME = "Your Brand"
MAX_PREVIEW_IMAGES = 3

_HTML_SHELL = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #667eea; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 28px;">{title}</h1>
  </div>
  <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px;">
{body}
    <p style="font-size: 14px; color: #999; margin-top: 30px; text-align: center;">
      Merchgen - Automated Brand Merchandise Design
    </p>
  </div>
</body>
</html>"""

_BUTTON = """    <div style="text-align: center; margin: 30px 0;">
      <a href="{url}" style="display: inline-block; background: #667eea; color: white; padding: 15px 40px; text-decoration: none; border-radius: 25px; font-weight: bold; font-size: 16px;">{label}</a>
    </div>"""

_EXPIRY_NOTICE = "This link is unique to you and expires in 24 hours. Don't share it with others."


@dataclass
class EmailMessage:
    """Rendered email content."""

    subject: str
    body_html: str
    body_text: str


def _paragraph(text: str) -> str:
    return f'    <p style="font-size: 16px; margin-bottom: 20px;">{text}</p>'


def build_magic_link_email(magic_link: str, brand_name: str | None = None) -> EmailMessage:
    """Access link for a new or re-keyed session."""
    if brand_name:
        subject = f"Access Your {brand_name} Designs"
        intro = f"Your merchandise designs for <strong>{escape(brand_name)}</strong> are in progress!"
        intro_text = f"Your merchandise designs for {brand_name} are in progress!"
    else:
        subject = "Access Your Merchandise Designs"
        intro = intro_text = "Your merchandise designs are being created!"

    body = "\n".join(
        [
            _paragraph("Hi there!"),
            _paragraph(intro),
            _paragraph(
                "Click the button below to view the current status and access "
                "your designs when they're ready."
            ),
            _BUTTON.format(url=escape(magic_link, quote=True), label="View My Designs"),
            _paragraph(f"<strong>Security notice:</strong> {_EXPIRY_NOTICE}"),
            _paragraph("If you didn't request this, you can safely ignore this email."),
        ]
    )
    text = (
        f"Hi there!\n\n{intro_text}\n\n"
        f"View the current status and access your designs:\n{magic_link}\n\n"
        f"{_EXPIRY_NOTICE}\n\n"
        "If you didn't request this, you can safely ignore this email.\n"
    )
    return EmailMessage(
        subject=subject,
        body_html=_HTML_SHELL.format(title="Access Your Designs", body=body),
        body_text=text,
    )


def build_results_email(
    session_id: str,
    brand_name: str,
    concept: str,
    results_link: str,
    preview_images: list[str],
) -> EmailMessage:
    """Completion email with the concept and a few mockup previews."""
    previews = "".join(
        f'<img src="{escape(url, quote=True)}" alt="Product preview" '
        'style="width: 200px; height: 200px; object-fit: cover; margin: 10px; border-radius: 8px;" />'
        for url in preview_images[:MAX_PREVIEW_IMAGES]
    )
    body = "\n".join(
        [
            _paragraph("Hi there!"),
            _paragraph(
                "We've created custom merchandise designs for "
                f"<strong>{escape(brand_name)}</strong> based on your brand's unique identity."
            ),
            _paragraph(f"<strong>Design Concept</strong><br>{escape(concept)}"),
            f'    <div style="text-align: center; margin: 20px 0;">{previews}</div>',
            _BUTTON.format(url=escape(results_link, quote=True), label="View Your Designs"),
            f'    <p style="font-size: 14px; color: #666;">Session ID: <code>{escape(session_id)}</code></p>',
        ]
    )
    text = (
        f"Hi there!\n\nWe've created custom merchandise designs for {brand_name}.\n\n"
        f"Design Concept:\n{concept}\n\n"
        f"View your designs:\n{results_link}\n\n"
        f"Session ID: {session_id}\n"
    )
    return EmailMessage(
        subject=f"Your {brand_name} Merchandise Designs Are Ready!",
        body_html=_HTML_SHELL.format(title="Your Designs Are Ready!", body=body),
        body_text=text,
    )


def build_recovery_email(brand_name: str, magic_link: str, progress: int) -> EmailMessage:
    """Reminder for a session stalled partway through the pipeline."""
    body = "\n".join(
        [
            _paragraph("Hi there!"),
            _paragraph(
                f"Your merchandise designs for <strong>{escape(brand_name)}</strong> "
                f"are <strong>{progress}%</strong> complete."
            ),
            (
                '    <div style="background: #e5e7eb; border-radius: 8px; height: 12px;">'
                f'<div style="background: #667eea; border-radius: 8px; height: 12px; width: {progress}%;"></div>'
                "</div>"
            ),
            _paragraph("Pick up where you left off:"),
            _BUTTON.format(url=escape(magic_link, quote=True), label="Continue My Designs"),
            _paragraph(_EXPIRY_NOTICE),
        ]
    )
    text = (
        f"Hi there!\n\nYour merchandise designs for {brand_name} are {progress}% complete.\n\n"
        f"Pick up where you left off:\n{magic_link}\n\n{_EXPIRY_NOTICE}\n"
    )
    return EmailMessage(
        subject=f"Your {brand_name} Designs Are Waiting",
        body_html=_HTML_SHELL.format(title="Your Designs Are Waiting", body=body),
        body_text=text,
    )


class NotificationService:
    """Sends session emails through the SMTP client."""

    def __init__(self, email_client: EmailClient) -> None:
        self._email = email_client

    async def _send(self, recipient: str, message: EmailMessage, kind: str, session_id: str) -> EmailResult:
        logger.debug(
            "Sending session email",
            extra={
                "kind": kind,
                "session_id": session_id,
                "recipient": mask_email(recipient),
            },
        )
        result = await self._email.send(
            recipient=recipient,
            subject=message.subject,
            body_html=message.body_html,
            body_text=message.body_text,
        )
        logger.info(
            "Session email sent",
            extra={
                "kind": kind,
                "session_id": session_id,
                "recipient": mask_email(recipient),
                "duration_ms": round(result.duration_ms, 2),
            },
        )
        return result

    async def send_magic_link(
        self,
        recipient: str,
        session_id: str,
        magic_link: str,
        brand_name: str | None = None,
    ) -> EmailResult:
        message = build_magic_link_email(magic_link, brand_name)
        return await self._send(recipient, message, "magic_link", session_id)

    async def send_results(
        self,
        recipient: str,
        session_id: str,
        brand_name: str | None,
        concept: str,
        results_link: str,
        preview_images: list[str],
    ) -> EmailResult:
        message = build_results_email(
            session_id,
            brand_name or DEFAULT_BRAND_NAME,
            concept,
            results_link,
            preview_images,
        )
        return await self._send(recipient, message, "results", session_id)

    async def send_recovery(
        self,
        recipient: str,
        session_id: str,
        brand_name: str | None,
        magic_link: str,
        progress: int,
    ) -> EmailResult:
        message = build_recovery_email(brand_name or DEFAULT_BRAND_NAME, magic_link, progress)
        return await self._send(recipient, message, "recovery", session_id)
