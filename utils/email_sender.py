from __future__ import annotations

import logging
import os
import re
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

import requests
from sqlalchemy.orm import Session

from models import EmailConfiguration

logger = logging.getLogger(__name__)

BREVO_URL = "https://api.brevo.com/v3/smtp/email"
DEFAULT_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "Retail Hub")


def _strip_html(html: str) -> str:
    return re.sub(r"<[^>]*>", "", html or "").strip()


def _send_brevo(*, api_key: str, from_email: str, from_name: str, to_email: str, subject: str, html: str, text: str) -> None:
    payload = {
        "sender": {"email": from_email, "name": from_name},
        "to": [{"email": to_email}],
        "subject": subject,
        "htmlContent": html,
        "textContent": text,
    }
    resp = requests.post(
        BREVO_URL,
        headers={
            "accept": "application/json",
            "api-key": api_key,
            "content-type": "application/json",
        },
        json=payload,
        timeout=15,
    )
    if resp.status_code >= 300:
        raise RuntimeError(f"Brevo send failed ({resp.status_code}): {resp.text}")


def _send_smtp(
    *,
    host: str,
    port: int,
    user: Optional[str],
    password: Optional[str],
    use_tls: bool,
    from_email: str,
    from_name: str,
    to_email: str,
    subject: str,
    html: str,
    text: str,
) -> None:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))

    with smtplib.SMTP(host, port, timeout=15) as server:
        if use_tls:
            server.starttls()
        if user and password:
            server.login(user, password)
        server.sendmail(from_email, [to_email], msg.as_string())


def _send_with_config(cfg: EmailConfiguration, **message) -> None:
    from_name = cfg.from_name or DEFAULT_FROM_NAME
    if cfg.provider == "brevo":
        if not cfg.api_key:
            raise RuntimeError("Active Brevo configuration has no API key")
        _send_brevo(api_key=cfg.api_key, from_email=cfg.from_email, from_name=from_name, **message)
        return
    if not cfg.smtp_host:
        raise RuntimeError("Active SMTP configuration has no host")
    _send_smtp(
        host=cfg.smtp_host,
        port=int(cfg.smtp_port or 587),
        user=cfg.smtp_user,
        password=cfg.smtp_password,
        use_tls=bool(cfg.use_tls),
        from_email=cfg.from_email,
        from_name=from_name,
        **message,
    )


def _send_with_env(**message) -> None:
    from_email = os.getenv("BREVO_FROM") or os.getenv("EMAIL_FROM") or os.getenv("SMTP_FROM")

    api_key = os.getenv("BREVO_API_KEY")
    if api_key:
        if not from_email:
            raise RuntimeError("BREVO_FROM (or EMAIL_FROM/SMTP_FROM) is not set")
        _send_brevo(api_key=api_key, from_email=from_email, from_name=DEFAULT_FROM_NAME, **message)
        return

    host = os.getenv("SMTP_HOST")
    if host:
        user = os.getenv("SMTP_USER")
        _send_smtp(
            host=host,
            port=int(os.getenv("SMTP_PORT", "587")),
            user=user,
            password=os.getenv("SMTP_PASSWORD"),
            use_tls=os.getenv("SMTP_TLS", "1") != "0",
            from_email=from_email or user or "",
            from_name=DEFAULT_FROM_NAME,
            **message,
        )
        return

    raise RuntimeError("No email channel configured (set BREVO_API_KEY or SMTP_HOST)")


def send_email(db: Session, *, to_email: str, subject: str, html: str, text: Optional[str] = None) -> dict:
    """
    Deliver one message through the configured channel.

    The active EmailConfiguration row wins; otherwise env (Brevo, then SMTP).
    Never raises: returns {"success": bool, "message": str}.
    """
    message = {"to_email": to_email, "subject": subject, "html": html, "text": text or _strip_html(html)}
    try:
        cfg = db.query(EmailConfiguration).filter(EmailConfiguration.is_active.is_(True)).first()
        if cfg:
            _send_with_config(cfg, **message)
        else:
            _send_with_env(**message)
    except Exception as exc:
        logger.error("Email to %s failed: %s", to_email, exc)
        return {"success": False, "message": str(exc)}

    logger.info("Email sent to %s", to_email)
    return {"success": True, "message": "Email sent"}


def _otp_html(*, heading: str, name: str, intro: str, code: str, footer: str) -> str:
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px">
      <h2 style="color:#333">{heading}</h2>
      <p>Hi {name},</p>
      <p>{intro}</p>
      <div style="background-color:#f5f5f5;padding:20px;text-align:center;margin:30px 0;border-radius:8px">
        <h1 style="color:#4F46E5;font-size:36px;margin:0;letter-spacing:8px">{code}</h1>
      </div>
      <p style="color:#666">This OTP will expire in 10 minutes.</p>
      <p style="color:#666">{footer}</p>
      <hr style="border:none;border-top:1px solid #eee;margin:30px 0">
      <p style="color:#999;font-size:12px">This is an automated email. Please do not reply.</p>
    </div>
    """


def send_registration_otp(db: Session, *, to_email: str, name: str, code: str) -> dict:
    html = _otp_html(
        heading="Email Verification",
        name=name,
        intro="Thank you for registering with us. Please use the following OTP to verify your email address:",
        code=code,
        footer="If you didn't create this account, please ignore this email.",
    )
    return send_email(db, to_email=to_email, subject="Verify Your Email - OTP Code", html=html)


def send_resend_otp(db: Session, *, to_email: str, name: str, code: str) -> dict:
    html = _otp_html(
        heading="Email Verification - Resend OTP",
        name=name,
        intro="You requested a new OTP to verify your email address. Please use the following code:",
        code=code,
        footer="If you didn't request this, please ignore this email.",
    )
    return send_email(db, to_email=to_email, subject="Verify Your Email - New OTP Code", html=html)


def send_welcome_email(db: Session, *, to_email: str, name: str) -> dict:
    html = f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px">
      <h2 style="color:#333">Welcome, {name}!</h2>
      <p>Your phone number is verified and your account is ready.</p>
      <p>Browse the store, save favourites to your wishlist, and we'll let you know when prices drop.</p>
    </div>
    """
    return send_email(db, to_email=to_email, subject="Welcome to Retail Hub", html=html)


def send_contact_message(
    db: Session, *, to_email: str, name: str, email: str, message: str, phone: Optional[str] = None
) -> dict:
    """Forward a storefront contact-form submission to the shop owner."""
    received = datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")
    name_h, email_h = escape(name), escape(email)
    phone_row = (
        f'<p style="margin:0 0 12px"><b>Phone:</b><br>{escape(phone)}</p>' if phone else ""
    )
    html = f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px">
      <div style="background-color:#E63946;color:white;padding:20px;text-align:center">
        <h2 style="margin:0">New Contact Form Submission</h2>
      </div>
      <div style="background-color:#f9f9f9;padding:20px;border:1px solid #ddd">
        <p style="margin:0 0 12px"><b>Name:</b><br>{name_h}</p>
        <p style="margin:0 0 12px"><b>Email:</b><br>{email_h}</p>
        {phone_row}
        <p style="margin:0"><b>Message:</b><br>{escape(message).replace(chr(10), "<br>")}</p>
      </div>
      <p style="color:#777;font-size:12px;text-align:center">Sent from the website contact form. Received on {received}</p>
    </div>
    """
    text = "\n".join(
        line
        for line in (
            "New Contact Form Submission",
            "",
            f"Name: {name}",
            f"Email: {email}",
            f"Phone: {phone}" if phone else None,
            "",
            "Message:",
            message,
            "",
            f"Received on {received}",
        )
        if line is not None
    )
    return send_email(db, to_email=to_email, subject=f"New Contact Form Submission from {name}", html=html, text=text)
