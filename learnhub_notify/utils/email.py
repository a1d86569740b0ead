"""
Email Utility

Helper functions for sending notification emails over SMTP.
"""

import html
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
import logging

from learnhub_notify.core.config import settings

logger = logging.getLogger(__name__)

PRIORITY_COLORS = {
    "low": "#6b7280",
    "normal": "#4f46e5",
    "high": "#f59e0b",
    "urgent": "#dc2626",
}


def smtp_configured() -> bool:
    return bool(settings.SMTP_SERVER and settings.SMTP_EMAIL)


def send_email(
    recipients: List[str],
    subject: str,
    content: str,
    plain_content: Optional[str] = None,
) -> bool:
    """
    Send an email using SMTP settings from config.

    Args:
        recipients: List of email addresses
        subject: Email subject
        content: HTML body
        plain_content: Plain-text alternative

    Returns:
        True if successful, False otherwise
    """
    if not smtp_configured():
        logger.warning("SMTP settings not configured. Email not sent.")
        return False

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.SMTP_EMAIL
        msg["To"] = ", ".join(recipients)

        # Clients render the last part they understand
        if plain_content:
            msg.attach(MIMEText(plain_content, "plain"))
        msg.attach(MIMEText(content, "html"))

        port = int(settings.SMTP_PORT) if settings.SMTP_PORT else 587

        with smtplib.SMTP(settings.SMTP_SERVER, port) as server:
            server.starttls()
            if settings.SMTP_PASSWORD:
                server.login(settings.SMTP_EMAIL, settings.SMTP_PASSWORD)
            server.send_message(msg)

        logger.info(f"Email sent to {recipients}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email: {str(e)}")
        return False


def send_notification_email(
    email: str,
    title: str,
    message: str,
    priority: str = "normal",
    related_url: Optional[str] = None,
) -> bool:
    """
    Send one notification as an email.

    Returns:
        True if the SMTP server accepted it, False otherwise
    """
    subject = f"{title} - {settings.PROJECT_NAME}"
    accent = PRIORITY_COLORS.get(priority, PRIORITY_COLORS["normal"])

    link_html = ""
    link_plain = ""
    if related_url:
        link_html = f"""
                <p style="margin: 28px 0 0 0;">
                    <a href="{html.escape(related_url, quote=True)}" style="
                    background-color: {accent};
                    color: #ffffff;
                    padding: 10px 18px;
                    border-radius: 8px;
                    text-decoration: none;
                    font-size: 14px;
                    ">View on {settings.PROJECT_NAME}</a>
                </p>"""
        link_plain = f"\n    Open: {related_url}\n"

    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0"/>
    <title>{html.escape(title)}</title>
    </head>
    <body style="
    margin: 0;
    padding: 0;
    background-color: #f3f4f6;
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
    color: #111827;
    ">

    <table width="100%" cellpadding="0" cellspacing="0" role="presentation">
        <tr>
        <td align="center" style="padding: 40px 16px;">

            <table width="100%" cellpadding="0" cellspacing="0" style="
            max-width: 600px;
            background-color: #ffffff;
            border-radius: 14px;
            border-top: 6px solid {accent};
            overflow: hidden;
            ">
            <tr>
                <td style="padding: 32px;">
                <h2 style="margin-top: 0; font-size: 20px; font-weight: 600;">
                    {html.escape(title)}
                </h2>
                <p style="font-size: 15px; color: #374151; line-height: 1.6; white-space: pre-line;">
                    {html.escape(message)}
                </p>{link_html}
                </td>
            </tr>
            <tr>
                <td style="
                padding: 20px;
                text-align: center;
                background-color: #f9fafb;
                border-top: 1px solid #e5e7eb;
                ">
                <p style="margin: 0; font-size: 12px; color: #9ca3af;">
                    © {settings.PROJECT_NAME} · You can change email notifications in your preferences
                </p>
                </td>
            </tr>
            </table>

        </td>
        </tr>
    </table>

    </body>
    </html>
    """

    plain_content = f"""
    {title}

    {message}
    {link_plain}
    ---
    This is an automated message from {settings.PROJECT_NAME}.
    """

    return send_email([email], subject, html_content, plain_content)
