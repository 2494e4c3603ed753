import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.application import MIMEApplication
import os
import logging
from typing import Optional
from dotenv import load_dotenv

import schemas

logger = logging.getLogger(__name__)

load_dotenv()


def _build_message(
    sender: str,
    recipient: str,
    subject: str,
    body: str,
    attachment: Optional[schemas.ReportAttachment]
) -> MIMEMultipart:
    from_name = os.getenv("MAIL_FROM_NAME", "Analytics Reports")

    message = MIMEMultipart()
    message["From"] = f"{from_name} <{sender}>"
    message["To"] = recipient
    message["Subject"] = subject

    # Add HTML body
    message.attach(MIMEText(body, "html"))

    if attachment is not None:
        part = MIMEApplication(attachment.content.encode("utf-8"), Name=attachment.filename)
        part.replace_header("Content-Type", f'{attachment.content_type}; name="{attachment.filename}"')
        part["Content-Disposition"] = f'attachment; filename="{attachment.filename}"'
        message.attach(part)

    return message


def send_email(
    recipient: str,
    subject: str,
    body: str,
    attachment: Optional[schemas.ReportAttachment] = None
) -> bool:
    """
    Send an email using SMTP with enhanced error handling

    Blocks for the whole SMTP exchange; async callers go through
    send_email_async.

    Args:
        recipient: Email address of the recipient
        subject: Email subject
        body: Email body (HTML)
        attachment: Optional exported report to attach

    Returns:
        bool: True if the email was accepted by the server, False otherwise
    """
    # Get email configuration
    sender_email = os.getenv("MAIL_USERNAME")
    password = os.getenv("MAIL_PASSWORD")
    smtp_server = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    smtp_port = int(os.getenv("MAIL_PORT", 587))

    # Validate configuration
    if not all([sender_email, password]):
        logger.error("Email configuration is incomplete. Check your .env file.")
        return False

    logger.info(f"Attempting to send email to {recipient} via {smtp_server}:{smtp_port}")

    try:
        message = _build_message(sender_email, recipient, subject, body, attachment)

        # Create SSL context
        context = ssl.create_default_context()

        # Create secure connection with server and send email
        with smtplib.SMTP(smtp_server, smtp_port) as server:
            server.ehlo()

            # Start TLS encryption
            if smtp_port == 587:
                server.starttls(context=context)
                server.ehlo()

            server.login(sender_email, password)
            server.send_message(message)
            logger.info(f"Email sent successfully to {recipient}")

            return True

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP Authentication Error: {e}")
    except smtplib.SMTPException as e:
        logger.error(f"SMTP Error: {e}")
    except OSError as e:
        logger.error(f"Could not reach SMTP server {smtp_server}:{smtp_port}: {e}")

    return False


async def send_email_async(
    recipient: str,
    subject: str,
    body: str,
    attachment: Optional[schemas.ReportAttachment] = None
) -> bool:
    """Send an email from a worker thread so the event loop keeps serving"""
    return await asyncio.to_thread(send_email, recipient, subject, body, attachment)
