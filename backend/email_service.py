"""
Service d'emails SendGrid pour Facturo
- Rappels de paiement aux clients (premier, deuxième, dernier)
- Alertes critiques (échec d'une tâche planifiée)
"""

import os
import html
import logging
from datetime import datetime, timezone
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

logger = logging.getLogger("email_service")

# Configuration
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
ALERT_EMAIL = os.environ.get('ALERT_EMAIL', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@facturo.local')
SENDER_NAME = os.environ.get('SENDER_NAME', 'Facturo')


class EmailService:
    """Service centralisé pour l'envoi d'emails"""

    def __init__(self):
        self.api_key = SENDGRID_API_KEY
        self.sender = SENDER_EMAIL
        self.sender_name = SENDER_NAME
        self.alert_recipient = ALERT_EMAIL

    def _send_email(self, to_email: str, subject: str, html_content: str, reply_to: str = None) -> bool:
        """Envoie un email via SendGrid"""
        if not self.api_key:
            logger.error("SENDGRID_API_KEY non configurée")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, self.sender_name),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )
            if reply_to:
                message.reply_to = Email(reply_to)

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email envoyé à {to_email}: {subject}")
                return True
            else:
                logger.error(f"Erreur envoi email: {response.status_code}")
                return False

        except Exception as e:
            logger.error(f"Exception envoi email: {str(e)}")
            return False

    # ==================== RAPPELS DE PAIEMENT ====================

    def send_payment_reminder(self, to_email: str, subject: str, text: str, reply_to: str = None) -> bool:
        """
        Envoie un rappel de paiement au client.
        Le texte brut est converti en HTML (retours à la ligne conservés).
        """
        body = html.escape(text).replace("\n", "<br>")
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; color: #111827; }}
                .container {{ max-width: 600px; margin: 0 auto; }}
            </style>
        </head>
        <body>
            <div class="container">{body}</div>
        </body>
        </html>
        """
        return self._send_email(to_email, subject, html_content, reply_to=reply_to)

    # ==================== ALERTES CRITIQUES ====================

    def send_critical_alert(self, alert_type: str, message: str, details: dict = None) -> bool:
        """
        Envoie une alerte critique immédiate.
        Types: SCHEDULER_ERROR, PDF_ERROR
        """
        if not self.alert_recipient:
            logger.warning(f"ALERT_EMAIL non configurée, alerte {alert_type} ignorée: {message}")
            return False

        subject = f"🚨 ALERTE CRITIQUE - {alert_type}"

        details_html = ""
        if details:
            details_html = "<ul>"
            for key, value in details.items():
                details_html += f"<li><strong>{key}:</strong> {html.escape(str(value))}</li>"
            details_html += "</ul>"

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }}
                .container {{ max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; overflow: hidden; }}
                .header {{ background: #DC2626; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; }}
                .alert-box {{ background: #FEF2F2; border-left: 4px solid #DC2626; padding: 15px; margin: 20px 0; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header"><h1>🚨 ALERTE CRITIQUE</h1></div>
                <div class="content">
                    <p>{datetime.now(timezone.utc).strftime('%d/%m/%Y %H:%M:%S')} UTC</p>
                    <div class="alert-box">
                        <strong>Type:</strong> {alert_type}<br>
                        <strong>Message:</strong> {html.escape(message)}
                    </div>
                    {details_html}
                </div>
            </div>
        </body>
        </html>
        """

        return self._send_email(self.alert_recipient, subject, html_content)


# Instance globale
email_service = EmailService()
