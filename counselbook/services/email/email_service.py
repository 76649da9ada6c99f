# ===== counselbook/services/email/email_service.py =====
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
import logging

from counselbook.config.settings import settings
from counselbook.services.integrations.base import Mailer

logger = logging.getLogger(__name__)


class EmailService(Mailer):
    """Sends booking emails via SMTP"""

    @staticmethod
    def _get_smtp_connection():
        """Create and return SMTP connection"""
        try:
            if settings.EMAIL_USE_TLS:
                server = smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(settings.EMAIL_HOST, settings.EMAIL_PORT)

            if settings.EMAIL_USERNAME and settings.EMAIL_PASSWORD:
                server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)

            return server
        except smtplib.SMTPException as e:
            logger.error(f"Failed to connect to SMTP server: {e}")
            raise

    def send(self, to: str, subject: str, html_body: str) -> bool:
        """
        Send one HTML email

        Returns:
            bool: True once the server accepted the message

        Raises:
            smtplib.SMTPException / OSError: delivery failed (callers retry)
        """
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"
        msg['To'] = to
        msg.attach(MIMEText(html_body, 'html'))

        try:
            server = self._get_smtp_connection()
            server.sendmail(settings.EMAIL_FROM_ADDRESS, [to], msg.as_string())
            server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise

        logger.info(f"Email sent successfully to {to}")
        return True

    # ------------------------------------------------------------------
    # Booking templates
    # ------------------------------------------------------------------

    def send_booking_confirmation(
            self,
            to: str,
            client_name: str,
            counselor_name: str,
            when: str,
            session_type: str,
            meeting_link: Optional[str] = None,
            payment_link: Optional[str] = None,
    ) -> bool:
        rows = [
            ("Counselor", counselor_name),
            ("When", when),
            ("Session", session_type.replace("_", " ").title()),
        ]
        if meeting_link:
            rows.append(("Meeting link", f'<a href="{meeting_link}">{meeting_link}</a>'))

        extra = ""
        if payment_link:
            extra = (
                '<p style="font-size: 16px; color: #555;">You can pay for this session here: '
                f'<a href="{payment_link}">{payment_link}</a></p>'
            )

        html = _render(
            title="Your session is booked",
            greeting=f"Hi {client_name},",
            intro="Your counseling session has been confirmed.",
            rows=rows,
            extra=extra,
        )
        return self.send(to, "Your counseling session is confirmed", html)

    def send_counselor_notification(
            self,
            to: str,
            counselor_name: str,
            client_name: str,
            when: str,
            session_type: str,
    ) -> bool:
        html = _render(
            title="New booking",
            greeting=f"Hi {counselor_name},",
            intro=f"{client_name} has booked a session with you.",
            rows=[("When", when), ("Session", session_type.replace("_", " ").title())],
        )
        return self.send(to, f"New booking: {client_name}", html)

    def send_reschedule_notice(
            self,
            to: str,
            name: str,
            previous_when: str,
            new_when: str,
    ) -> bool:
        html = _render(
            title="Session rescheduled",
            greeting=f"Hi {name},",
            intro="A counseling session has been moved.",
            rows=[("Previously", previous_when), ("Now", new_when)],
        )
        return self.send(to, "Your counseling session has been rescheduled", html)


def _render(title: str, greeting: str, intro: str, rows, extra: str = "") -> str:
    details = "".join(
        f'<tr><td style="padding: 6px 12px; color: #888;">{label}</td>'
        f'<td style="padding: 6px 12px; color: #333;">{value}</td></tr>'
        for label, value in rows
    )
    return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="background-color: #3d6b5e; padding: 24px; text-align: center; border-radius: 10px 10px 0 0;">
                <h1 style="color: white; margin: 0; font-size: 24px;">{title}</h1>
            </div>
            <div style="background-color: #ffffff; padding: 30px; border: 1px solid #e0e0e0; border-top: none; border-radius: 0 0 10px 10px;">
                <h2 style="color: #333; margin-top: 0;">{greeting}</h2>
                <p style="font-size: 16px; color: #555;">{intro}</p>
                <table style="border-collapse: collapse; margin: 20px 0;">{details}</table>
                {extra}
                <p style="font-size: 13px; color: #999;">{settings.EMAIL_FROM_NAME}</p>
            </div>
        </body>
        </html>
        """
