import asyncio
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config.env import (
    MAIL_FROM_NAME,
    SMTP_ENCRYPTION,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USER,
)

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")
jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)

# strong refs so scheduled sends are not garbage collected mid-flight
_pending_sends: set = set()


def mail_configured() -> bool:
    return bool(SMTP_USER and SMTP_PASSWORD)


def render_template(template_name: str, context: dict) -> str:
    return jinja_env.get_template(template_name).render(**context)


def send_email(to_email: str, subject: str, html_content: str) -> None:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((MAIL_FROM_NAME, SMTP_USER))
    msg["To"] = to_email
    msg.attach(MIMEText(html_content, "html"))

    if SMTP_ENCRYPTION == "ssl":
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=15)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=15)
        if SMTP_ENCRYPTION == "tls":
            server.starttls()

    try:
        server.login(SMTP_USER, SMTP_PASSWORD)
        server.sendmail(SMTP_USER, to_email, msg.as_string())
    finally:
        server.quit()


def order_email_context(order: dict, customer: dict) -> dict:
    return {
        "customer_name": customer.get("name") or "there",
        "order_id": str(order["_id"]),
        "items": order.get("items") or [],
        "addons": order.get("addons") or [],
        "subtotal": order.get("subtotal"),
        "discount": order.get("discount"),
        "delivery_charge": order.get("deliveryCharge"),
        "wallet_used": order.get("walletUsed"),
        "total_amount": order.get("totalAmount"),
        "payment_method": order.get("paymentMethod"),
        "delivery_date": order.get("deliveryDate"),
        "otp": order.get("otp"),
        "store": order.get("storeSnapshot") or {},
        "address": order.get("shippingAddress") or {},
    }


async def send_order_confirmation(order: dict, customer: dict) -> None:
    if not mail_configured():
        logger.info("ORDER_EMAIL_SKIPPED order=%s reason=smtp_not_configured", order["_id"])
        return

    to_email = customer.get("email")
    if not to_email:
        logger.info("ORDER_EMAIL_SKIPPED order=%s reason=no_email", order["_id"])
        return

    try:
        html = render_template("order_confirmation.html", order_email_context(order, customer))
        await asyncio.to_thread(
            send_email,
            to_email,
            f"Order confirmed #{str(order['_id'])[-6:].upper()}",
            html,
        )
        logger.info("ORDER_EMAIL_SENT order=%s", order["_id"])
    except Exception:
        # the order is already committed; email is best effort
        logger.exception("ORDER_EMAIL_FAILED order=%s", order["_id"])


def schedule_order_confirmation(order: dict, customer: dict) -> None:
    task = asyncio.create_task(send_order_confirmation(order, customer))
    _pending_sends.add(task)
    task.add_done_callback(_pending_sends.discard)
