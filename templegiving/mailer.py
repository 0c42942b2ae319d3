from __future__ import annotations
import asyncio
import logging
import os
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Callable, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.ext.asyncio import AsyncSession

from .model.donations import get_donation, donation_as_dict
from .model.email_settings import get_settings_config
from .model.users import user_as_dict
from .helpers import is_valid_email
from .infra.timings import timeit

log = logging.getLogger(__name__)

_env = Environment(
    loader=FileSystemLoader(
        os.path.join(os.path.dirname(__file__), "templates", "email")
    ),
    autoescape=select_autoescape(["html"]),
)

REQUIRED = ("smtp_host", "smtp_port", "smtp_user", "smtp_pass",
            "email_from_address")


def config_problems(config: Dict[str, Any]) -> List[str]:
    problems = [f"{k} is not set" for k in REQUIRED if not config.get(k)]
    addr = config.get("email_from_address")
    if addr and not is_valid_email(addr):
        problems.append("email_from_address is not a valid email address")
    return problems


def render_receipt(site_name: str, donation: Dict[str, Any],
                   donor: Optional[Dict[str, Any]]) -> Dict[str, str]:
    ctx = {"site_name": site_name, "donation": donation, "donor": donor or {}}
    return {
        "subject": f"Donation receipt {donation.get('receipt_number')}"
                   f" - {site_name}",
        "text": _env.get_template("receipt.txt").render(**ctx),
        "html": _env.get_template("receipt.html").render(**ctx),
    }


def _build_message(config: Dict[str, Any], to: str, subject: str,
                   text: str, html: Optional[str]) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr(
        (config.get("email_from_name") or "", config["email_from_address"])
    )
    msg["To"] = to
    if config.get("email_reply_to"):
        msg["Reply-To"] = config["email_reply_to"]
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _smtp_send(config: Dict[str, Any], msg: EmailMessage) -> None:
    host, port = config["smtp_host"], int(config["smtp_port"])
    if config.get("smtp_secure"):
        with smtplib.SMTP_SSL(host, port, timeout=15,
                              context=ssl.create_default_context()) as s:
            s.login(config["smtp_user"], config["smtp_pass"])
            s.send_message(msg)
        return
    with smtplib.SMTP(host, port, timeout=15) as s:
        s.starttls(context=ssl.create_default_context())
        s.login(config["smtp_user"], config["smtp_pass"])
        s.send_message(msg)


async def send_email(config: Dict[str, Any], to: str, subject: str,
                     text: str, html: Optional[str] = None) -> bool:
    """Send one message. Returns False when sending is off or not possible."""
    if not config.get("email_enabled"):
        log.info("email disabled, not sending %r to %s", subject, to)
        return False
    if config.get("email_test_mode"):
        log.info("email test mode, would send %r to %s:\n%s",
                 subject, to, text)
        return True
    problems = config_problems(config)
    if problems:
        log.warning("email settings incomplete (%s), not sending to %s",
                    "; ".join(problems), to)
        return False
    msg = _build_message(config, to, subject, text, html)
    try:
        async with timeit("email.send"):
            # smtplib blocks
            await asyncio.to_thread(_smtp_send, config, msg)
    except (smtplib.SMTPException, OSError) as e:
        log.error("sending %r to %s failed: %s", subject, to, e)
        return False
    log.info("email %r sent to %s", subject, to)
    return True


async def send_receipt(
        session_factory: Callable[[], AsyncSession],
        donation_id: str, site_name: str,
) -> bool:
    """Background task: email the receipt for a completed donation."""
    async with session_factory() as db:
        found = await get_donation(db, donation_id)
        if not found.ok or found.value is None:
            log.warning("receipt: donation %s not found", donation_id)
            return False
        donation = found.value
        if donation.user is None or not donation.user.email:
            log.info("receipt: donation %s has no donor email", donation_id)
            return False
        config = await get_settings_config(db)
        if not config.ok:
            log.error("receipt: cannot load email settings: %s",
                      config.error)
            return False
        rendered = render_receipt(site_name, donation_as_dict(donation),
                                  user_as_dict(donation.user))
        return await send_email(config.value, donation.user.email,
                                rendered["subject"], rendered["text"],
                                rendered["html"])
