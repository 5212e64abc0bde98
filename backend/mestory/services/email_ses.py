from __future__ import annotations

import html
from typing import Any

import boto3

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("email")


def _sesv2_client():
    return boto3.client("sesv2", region_name=settings.aws_region)


def send_email(*, to_email: str, subject: str, html_body: str, text: str) -> dict[str, Any]:
    to_ = str(to_email or "").strip()
    frm = str(settings.ses_from_email or "").strip()
    subj = str(subject or "").strip()[:200] or "MeStory"
    if not to_ or not frm:
        log.info("email_skipped", reason="missing_to_or_from", subject=subj)
        return {"ok": False, "error": "missing_to_or_from"}
    resp = _sesv2_client().send_email(
        FromEmailAddress=frm,
        Destination={"ToAddresses": [to_]},
        Content={
            "Simple": {
                "Subject": {"Data": subj, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": str(text or "").strip() or "(empty)", "Charset": "UTF-8"},
                    "Html": {"Data": html_body, "Charset": "UTF-8"},
                },
            }
        },
    )
    msg_id = (resp or {}).get("MessageId") if isinstance(resp, dict) else None
    log.info("email_sent", subject=subj, message_id=msg_id)
    return {"ok": True, "messageId": msg_id}


def send_email_safe(**kwargs: Any) -> dict[str, Any]:
    """Background-task entry point: delivery failures are logged, never raised."""
    try:
        return send_email(**kwargs)
    except Exception as e:  # noqa: BLE001
        log.warning("email_send_failed", subject=kwargs.get("subject"), error=str(e))
        return {"ok": False, "error": str(e)}


def _layout(title: str, body_html: str) -> str:
    return (
        "<!doctype html><html><body style=\"font-family:Arial,sans-serif;background:#0f0f1a;color:#eee\">"
        "<div style=\"max-width:560px;margin:0 auto;padding:24px\">"
        f"<h1 style=\"color:#a78bfa\">{html.escape(title)}</h1>"
        f"{body_html}"
        f"<p style=\"color:#888;font-size:12px\">MeStory &middot; {html.escape(settings.frontend_base_url)}</p>"
        "</div></body></html>"
    )


def verification_email(*, to_email: str, name: str, code: str) -> dict[str, Any]:
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        "<p>Use this code to verify your email address:</p>"
        f"<p style=\"font-size:32px;letter-spacing:8px;font-weight:bold\">{html.escape(code)}</p>"
        "<p>The code expires in 15 minutes.</p>"
    )
    return {
        "to_email": to_email,
        "subject": f"Your MeStory verification code: {code}",
        "html_body": _layout("Verify your email", body),
        "text": f"Hi {name},\n\nYour MeStory verification code is {code}. It expires in 15 minutes.",
    }


def welcome_email(*, to_email: str, name: str) -> dict[str, Any]:
    dashboard = f"{settings.frontend_base_url}/dashboard"
    body = (
        f"<p>Hi {html.escape(name)}, your email is verified.</p>"
        "<ul><li>Start your first book</li><li>Write with the AI assistant</li>"
        "<li>Design a cover and publish to the marketplace</li></ul>"
        f"<p><a href=\"{html.escape(dashboard)}\">Open your dashboard</a></p>"
    )
    return {
        "to_email": to_email,
        "subject": "Welcome to MeStory!",
        "html_body": _layout("Welcome to MeStory!", body),
        "text": f"Hi {name},\n\nWelcome to MeStory! Start writing at {dashboard}",
    }


def subscription_email(*, to_email: str, name: str, plan: str, amount: float, currency: str) -> dict[str, Any]:
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>Your account was upgraded to the <b>{html.escape(plan)}</b> plan.</p>"
        f"<p>Amount charged: {amount:.2f} {html.escape(currency)}</p>"
    )
    return {
        "to_email": to_email,
        "subject": f"Your {plan} plan is active",
        "html_body": _layout(f"Upgraded to {plan}", body),
        "text": f"Hi {name},\n\nYour account was upgraded to the {plan} plan. Amount: {amount:.2f} {currency}.",
    }


def purchase_email(*, to_email: str, name: str, book_title: str, price: float, read_url: str) -> dict[str, Any]:
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>You purchased <b>{html.escape(book_title)}</b> for ${price:.2f}.</p>"
        f"<p><a href=\"{html.escape(read_url)}\">Start reading</a></p>"
    )
    return {
        "to_email": to_email,
        "subject": f"Purchase confirmation: \"{book_title}\"",
        "html_body": _layout("Purchase complete", body),
        "text": f"Hi {name},\n\nYou purchased \"{book_title}\" for ${price:.2f}. Read it at {read_url}",
    }


def sale_email(*, to_email: str, name: str, book_title: str, earned: float) -> dict[str, Any]:
    body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>Someone bought <b>{html.escape(book_title)}</b>. You earned ${earned:.2f}.</p>"
    )
    return {
        "to_email": to_email,
        "subject": f"New sale: \"{book_title}\"",
        "html_body": _layout("New sale!", body),
        "text": f"Hi {name},\n\nSomeone bought \"{book_title}\". You earned ${earned:.2f}.",
    }
