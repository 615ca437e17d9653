import logging
from urllib.parse import urlencode

from flask import current_app
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

logger = logging.getLogger(__name__)


def confirmation_link(email, code):
    query = urlencode({'email': email, 'code': code})
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/auth/confirm?{query}"


def send_confirmation_email(email, code):
    """Send the sign-up confirmation code using SendGrid"""
    api_key = current_app.config.get('SENDGRID_API_KEY')
    logger.info("[EMAIL] Sending confirmation email to: %s", email)

    if not api_key:
        logger.warning("[EMAIL] No SendGrid API key configured, confirmation code for %s is %s", email, code)
        return False

    link = confirmation_link(email, code)
    subject = "TaskKarwalo - Confirm your email"

    html_content = f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #0f766e; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
            <h1 style="color: white; margin: 0; font-size: 28px;">TaskKarwalo</h1>
            <p style="color: white; margin: 10px 0 0 0; font-size: 16px;">Trusted local services, near you.</p>
        </div>
        <div style="background: white; padding: 40px; border: 1px solid #e0e0e0; border-radius: 0 0 10px 10px;">
            <h2 style="color: #333; margin-top: 0;">Confirm your email</h2>
            <p style="color: #666; font-size: 16px; line-height: 1.6;">Your confirmation code is:</p>
            <div style="font-size: 32px; font-weight: bold; color: #0f766e; letter-spacing: 3px; font-family: monospace;">
                {code}
            </div>
            <p style="color: #666; font-size: 14px; line-height: 1.6;">
                Or open <a href="{link}">this link</a> to confirm your account.
            </p>
            <p style="color: #999; font-size: 12px; margin-top: 30px;">
                If you didn't create a TaskKarwalo account, please ignore this email.
            </p>
        </div>
    </body>
    </html>
    """

    text_content = f"""
    Welcome to TaskKarwalo!

    Your confirmation code is: {code}
    Confirm your account: {link}

    If you did not sign up, please ignore this email.
    """

    message = Mail(
        from_email=current_app.config['EMAIL_FROM'],
        to_emails=email,
        subject=subject,
        html_content=html_content,
        plain_text_content=text_content,
    )

    try:
        sg = SendGridAPIClient(api_key=api_key)
        response = sg.send(message)
    except Exception:
        logger.exception("[EMAIL] Error sending confirmation email to %s", email)
        return False

    logger.info("[EMAIL] SendGrid response: %s", response.status_code)
    return response.status_code == 202
