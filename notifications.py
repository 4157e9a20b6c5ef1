import logging

from flask import current_app
from flask_mail import Mail, Message

mail = Mail()


def send_issuance_email(certificate, institution_name, verification_url) -> bool:
    """Tell the recipient their certificate was issued. Failures are logged, never raised."""
    if not current_app.config.get('NOTIFY_RECIPIENTS'):
        return False
    try:
        msg = Message(
            subject=f"Your certificate: {certificate.title}",
            recipients=[certificate.recipient_email],
            body=(
                f"Dear {certificate.recipient_name},\n\n"
                f"{institution_name} has issued you the certificate \"{certificate.title}\".\n"
                f"Anyone can verify it at:\n{verification_url}\n"
            ),
        )
        mail.send(msg)
        logging.info('[MAIL] issuance notice sent for certificate %s', certificate.id)
        return True
    except Exception:
        logging.exception('[MAIL] failed to send issuance notice for certificate %s', certificate.id)
        return False
