"""
Email Service using Resend

Sends the three transactional emails of the registration lifecycle:
confirmation on intake, approval with the email-verification link, and
rejection. Delivery failures raise `EmailDeliveryError`; callers decide
whether a failure matters.
"""

import asyncio
import logging
from html import escape

import resend

from alumni.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

_STYLE = """
        <style>
            body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
            .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
            .header { color: #8b0000; margin-bottom: 24px; }
            .button { display: inline-block; background-color: #8b0000; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
            .info-box { background-color: #f9fafb; border: 1px solid #e5e7eb; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .reason-box { background-color: #fef2f2; border: 1px solid #fecaca; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
        </style>
"""


class EmailDeliveryError(Exception):
    """Raised when the mail provider does not accept a message."""


def _page(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        {_STYLE}
    </head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>Alumni Relations Office</p>
            </div>
        </div>
    </body>
    </html>
    """


def verification_url(token: str) -> str:
    """Public link an applicant follows to verify their email address."""
    return f"{settings.frontend_url.rstrip('/')}/verify/{token}"


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> str | None:
    """
    Send an email using Resend.

    Returns:
        The provider message ID, or None when no API key is configured and the
        message is only logged

    Raises:
        EmailDeliveryError: If the provider rejects or fails the request
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return None

    params: resend.Emails.SendParams = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html_content,
    }

    try:
        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        raise EmailDeliveryError(str(e)) from e

    logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
    return email["id"]


async def send_registration_confirmation(to_email: str, full_name: str) -> str | None:
    """Acknowledge a new registration."""
    safe_name = escape(full_name)
    body = f"""
            <p>Dear {safe_name},</p>

            <p>Thank you for registering with the alumni network. We have received your details.</p>

            <div class="info-box">
                <p><strong>What happens next?</strong></p>
                <p>We verify your former employment against our personnel records. Most
                registrations are verified automatically within a few minutes; some need a
                manual review, which can take up to two business days.</p>
            </div>

            <p>You will receive another email once a decision has been made.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="We received your alumni registration",
        html_content=_page("Registration Received", body),
    )


async def send_registration_approved(
    to_email: str,
    full_name: str,
    token: str,
    expiry_days: int,
) -> str | None:
    """Tell an applicant they were approved and ask them to verify their email."""
    safe_name = escape(full_name)
    url = verification_url(token)
    body = f"""
            <p>Dear {safe_name},</p>

            <p>Your alumni registration has been <strong>approved</strong>.</p>

            <p>Please verify your email address to activate your membership:</p>

            <a href="{url}" class="button">Verify Email</a>

            <p>Or copy and paste this link into your browser:</p>
            <p style="word-break: break-all; color: #3b82f6;">{url}</p>

            <p><strong>This link expires in {expiry_days} days.</strong></p>
    """
    return await send_email(
        to_email=to_email,
        subject="Your alumni registration is approved - verify your email",
        html_content=_page("Welcome to the Alumni Network", body),
    )


async def send_registration_rejected(
    to_email: str,
    full_name: str,
    reason: str | None,
) -> str | None:
    """Tell an applicant their registration could not be approved."""
    safe_name = escape(full_name)
    reason_html = ""
    if reason:
        reason_html = f"""
            <div class="reason-box">
                <p><strong>Reason:</strong></p>
                <p>{escape(reason)}</p>
            </div>
        """
    body = f"""
            <p>Dear {safe_name},</p>

            <p>Thank you for your interest in the alumni network. We were unable to approve
            your registration.</p>
            {reason_html}
            <p>If you believe this decision was made in error, please contact the alumni
            relations office with your staff number.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Update on your alumni registration",
        html_content=_page("Registration Update", body),
    )
