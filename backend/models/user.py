from enum import Enum


class Role(str, Enum):
    CUSTOMER = "user"
    VENDOR = "vendor"
    DELIVERY_AGENT = "delivery_agent"
    ADMIN = "admin"
