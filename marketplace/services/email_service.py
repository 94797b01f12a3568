"""Transactional email delivery through the Brevo API."""

import logging

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from marketplace.core.config import Settings

logger = logging.getLogger(__name__)


class EmailService:
    """Sends HTML emails; every failure is reported as ``False``, never raised."""

    def __init__(self, settings: Settings):
        self.sender_email = settings.mail_from_email
        self.sender_name = settings.mail_from_name

        if not settings.brevo_api_key:
            logger.warning("BREVO_API_KEY not configured - emails will not be delivered")
            self.api_client = None
            return

        configuration = sib_api_v3_sdk.Configuration()
        configuration.api_key["api-key"] = settings.brevo_api_key
        self.api_client = sib_api_v3_sdk.ApiClient(configuration)
        self.transactional_emails_api = sib_api_v3_sdk.TransactionalEmailsApi(self.api_client)

    def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        """
        Send one HTML email.

        Args:
            to_email: Recipient address
            subject: Email subject
            html_content: HTML body

        Returns:
            bool: True if the provider accepted the message, False otherwise
        """
        if not self.api_client:
            logger.warning(f"Email service not configured - skipping email to {to_email}")
            return False

        send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
            to=[sib_api_v3_sdk.SendSmtpEmailTo(email=to_email)],
            sender=sib_api_v3_sdk.SendSmtpEmailSender(email=self.sender_email, name=self.sender_name),
            subject=subject,
            html_content=html_content,
        )
        try:
            api_response = self.transactional_emails_api.send_transac_email(send_smtp_email)
        except ApiException as e:
            logger.error(f"Error sending email to {to_email}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending email to {to_email}: {e}")
            return False

        logger.info(f"Email sent to {to_email} - Message ID: {api_response.message_id}")
        return True


def build_otp_email(otp: str, expires_minutes: int, brand: str) -> tuple[str, str]:
    """Return the ``(subject, html)`` pair for a verification code email."""
    subject = f"Verify your ID - {brand}"
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; border: 1px solid #ddd; border-radius: 10px; overflow: hidden;">
            <div style="background-color: #CC2936; padding: 20px; text-align: center; color: white;">
                <h1 style="margin: 0;">{brand}</h1>
            </div>
            <div style="padding: 20px; background-color: #f9f9f9;">
                <h2 style="color: #333; text-align: center;">Verify Your Email</h2>
                <p style="color: #666; text-align: center; font-size: 16px;">Use the verification code below to complete your registration.</p>
                <div style="text-align: center; margin: 30px 0;">
                    <span style="background-color: #fff; padding: 15px 30px; font-size: 24px; font-weight: bold; border: 2px solid #CC2936; border-radius: 5px; color: #CC2936; letter-spacing: 5px;">{otp}</span>
                </div>
                <p style="color: #666; text-align: center;">This code will expire in <strong>{expires_minutes} minutes</strong>.</p>
                <hr style="border: 0; border-top: 1px solid #ddd; margin: 20px 0;">
                <p style="color: #999; font-size: 12px; text-align: center;">If you didn't request this, please ignore this email.</p>
            </div>
        </div>
    """
    return subject, html
