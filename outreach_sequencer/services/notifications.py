import os
import logging
from typing import Optional, Dict, Any
from datetime import datetime
import resend

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for sending operator email notifications via Resend."""

    def __init__(self):
        self.resend_api_key = os.environ.get('RESEND_API_KEY')
        self.from_email = os.environ.get('NOTIFY_EMAIL_FROM', 'notifications@sequence-engine.local')
        self.to_emails = [email.strip() for email in os.environ.get('NOTIFY_EMAIL_TO', '').split(',') if email.strip()]
        self.enabled = os.environ.get('NOTIFICATIONS_ENABLED', 'false').lower() == 'true'

        if self.resend_api_key:
            resend.api_key = self.resend_api_key
            logger.info("Resend API key configured")
        else:
            logger.warning("No Resend API key found - notifications will be disabled")
            self.enabled = False

    def _send(self, subject: str, html_content: str, kind: str) -> bool:
        success_count = 0
        for email in self.to_emails:
            try:
                response = resend.Emails.send({
                    "from": self.from_email,
                    "to": email,
                    "subject": subject,
                    "html": html_content
                })
                logger.info(f"{kind} notification sent to {email}: {response.get('id')}")
                success_count += 1
            except Exception as e:
                logger.error(f"Failed to send {kind} notification to {email}: {str(e)}")
        return success_count > 0

    def send_attention_notification(self, run, sequence_name: str, reason: str) -> bool:
        """Send notification when a run needs manual attention."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping attention notification")
            return False

        try:
            subject = f"⚠️ Sequence needs attention: {sequence_name} (lead {run.lead_id})"
            html_content = self._create_attention_notification_template(run, sequence_name, reason)
            return self._send(subject, html_content, 'Attention')
        except Exception as e:
            logger.error(f"Error sending attention notification: {str(e)}")
            return False

    def send_error_notification(self, error_type: str, error_message: str, context: Dict[str, Any] = None) -> bool:
        """Send notification for system errors."""
        if not self.enabled:
            logger.info("Notifications disabled - skipping error notification")
            return False

        try:
            subject = f"⚠️ System Error: {error_type}"
            html_content = self._create_error_notification_template(error_type, error_message, context)
            return self._send(subject, html_content, 'Error')
        except Exception as e:
            logger.error(f"Error sending error notification: {str(e)}")
            return False

    def _create_attention_notification_template(self, run, sequence_name: str, reason: str) -> str:
        """Create HTML template for needs-attention notifications."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #f0ad4e; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #fff4e5; padding: 15px; border-left: 4px solid #f0ad4e; margin: 15px 0; }}
                .footer {{ margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>⚠️ Sequence Run Needs Attention</h1>
                    <p>Time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>

                <div class="content">
                    <h2>Run Details</h2>
                    <div class="highlight">
                        <strong>Sequence:</strong> {sequence_name}<br>
                        <strong>Lead ID:</strong> {run.lead_id}<br>
                        <strong>Status:</strong> {run.status}<br>
                        <strong>Step:</strong> {run.current_step + 1} of {run.total_steps}<br>
                        <strong>Failed attempts:</strong> {run.failure_count}
                    </div>

                    <h3>Reason</h3>
                    <div class="highlight">{reason}</div>

                    <h3>Next Steps</h3>
                    <ol>
                        <li>Check whether the step was delivered to the lead</li>
                        <li>Fix the delivery problem if there is one</li>
                        <li>Clear the needs-attention flag on the run, or stop it</li>
                    </ol>
                </div>

                <div class="footer">
                    <p>This notification was sent by the Lead Sequence Engine</p>
                    <p>Run ID: {run.id} | Sequence ID: {run.sequence_id}</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _create_error_notification_template(self, error_type: str, error_message: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Create HTML template for error notifications."""
        context_html = ""
        if context:
            context_html = "<h3>Context</h3><div class='highlight'><pre>" + str(context) + "</pre></div>"

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #dc3545; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
                .content {{ background: #f9f9f9; padding: 20px; border-radius: 0 0 8px 8px; }}
                .highlight {{ background: #ffe6e6; padding: 15px; border-left: 4px solid #dc3545; margin: 15px 0; }}
                .footer {{ margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; font-size: 12px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>⚠️ System Error</h1>
                    <p>Time: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}</p>
                </div>

                <div class="content">
                    <h2>Error Details</h2>
                    <div class="highlight">
                        <strong>Type:</strong> {error_type}<br>
                        <strong>Message:</strong> {error_message}
                    </div>

                    {context_html}
                </div>

                <div class="footer">
                    <p>This notification was sent by the Lead Sequence Engine</p>
                </div>
            </div>
        </body>
        </html>
        """


# Global notification service instance
_notification_service = None


def get_notification_service() -> NotificationService:
    """Get the global notification service instance."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
