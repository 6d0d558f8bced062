from datetime import datetime
from decimal import Decimal

from bson import ObjectId

from models.user import Role
from utils.money import to_number

# Roles that handle the parcel never see the customer's delivery code.
OTP_HIDDEN_ROLES = {Role.VENDOR.value, Role.DELIVERY_AGENT.value}


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return to_number(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc: dict | None) -> dict | None:
    if not doc:
        return doc
    return {k: serialize_value(v) for k, v in doc.items()}


def serialize_docs(docs):
    return [serialize_doc(d) for d in docs]


def serialize_order(order: dict, viewer_role: str | None = None) -> dict:
    data = serialize_doc(order)
    if viewer_role in OTP_HIDDEN_ROLES:
        data.pop("otp", None)
    return data


def serialize_orders(orders, viewer_role: str | None = None) -> list[dict]:
    return [serialize_order(o, viewer_role) for o in orders]
