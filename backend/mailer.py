from html import escape
from typing import Dict, Optional, Tuple

import resend
from flask import current_app

brand_colors = {
    "text_primary": "#171717",
    "text_secondary": "#52525b",
    "text_muted": "#71717a",
    "code_background": "#f4f4f5",
    "accent_purple": "#6b21a8",
}


def send_email_via_resend(
    payload: Dict[str, object], api_key: str
) -> Tuple[bool, Optional[str]]:
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def build_verification_email_html(code: str, expiration_minutes: int) -> str:
    colors = brand_colors
    return f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <title>Noble Mosaic Verification Code</title>
  </head>
  <body style="margin:0;padding:0;font-family:sans-serif;">
    <div style="max-width:600px;margin:0 auto;padding:20px;">
      <h2 style="color:{colors['text_primary']};">Welcome to Noble Mosaic!</h2>
      <p style="color:{colors['text_secondary']};font-size:16px;">
        To access your free gift pages, please enter the following verification code:
      </p>
      <div style="background-color:{colors['code_background']};padding:30px;border-radius:12px;text-align:center;margin:30px 0;">
        <h1 style="margin:0;font-size:42px;letter-spacing:8px;color:{colors['accent_purple']};font-weight:bold;">{code}</h1>
      </div>
      <p style="color:{colors['text_secondary']};font-size:14px;">This code will expire in {expiration_minutes} minutes.</p>
      <p style="color:{colors['text_muted']};font-size:14px;margin-top:40px;">
        If you didn&rsquo;t request this code, you can safely ignore this email.
      </p>
    </div>
  </body>
</html>"""


def send_verification_code(
    recipient_email: str, code: str, expiration_minutes: int
) -> Tuple[bool, Optional[str]]:
    """Email a verification code.

    Without a Resend key the code is only logged, and only outside
    production (or under testing/debug). In production a missing key is a
    delivery failure.
    """
    config = current_app.config
    api_key = config.get("RESEND_API_KEY") or ""
    if not api_key.strip():
        is_production = config.get("FLASK_ENV", "production") == "production"
        if is_production and not (current_app.testing or current_app.debug):
            return False, "Resend API key is not configured."
        current_app.logger.warning(
            "RESEND_API_KEY not set; verification code for %s is %s",
            recipient_email,
            code,
        )
        return True, None

    payload: Dict[str, object] = {
        "from": f"Noble Mosaic <{config['MAIL_SENDER']}>",
        "to": [recipient_email],
        "subject": "Your Verification Code - Noble Mosaic",
        "html": build_verification_email_html(code, expiration_minutes),
        "text": (
            f"Your Noble Mosaic verification code is {code}. "
            f"It expires in {expiration_minutes} minutes."
        ),
    }
    return send_email_via_resend(payload, api_key)


def send_contact_notification(contact_document) -> Tuple[bool, Optional[str]]:
    config = current_app.config
    recipient = (config.get("CONTACT_NOTIFY_EMAIL") or "").strip()
    if not recipient:
        return False, "No contact notification recipient configured."

    name = str(contact_document.get("name") or "")
    email = str(contact_document.get("email") or "")
    message = str(contact_document.get("message") or "")

    payload: Dict[str, object] = {
        "from": f"Noble Mosaic <{config['MAIL_SENDER']}>",
        "to": [recipient],
        "reply_to": email,
        "subject": f"New contact message from {name}",
        "html": (
            f"<p><strong>{escape(name)}</strong> &lt;{escape(email)}&gt; wrote:</p>"
            f"<p style=\"white-space:pre-wrap;\">{escape(message)}</p>"
        ),
        "text": f"{name} <{email}> wrote:\n\n{message}",
    }
    return send_email_via_resend(payload, config.get("RESEND_API_KEY") or "")
