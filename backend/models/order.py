from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PUNCHED = "punched"
    PREPARING = "preparing your cake"
    AWAITING_AGENT = "Awaiting Agent"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class PaymentMethod(str, Enum):
    COD = "COD"
    ONLINE = "Online"


class CancellationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class OrderEvent(str, Enum):
    VERIFY_PAYMENT = "verify_payment"
    VERIFY_ORDER = "verify_order"
    MARK_OUT_FOR_DELIVERY = "mark_out_for_delivery"
    ACCEPT = "accept"
    VERIFY_OTP = "verify_otp"


# =====================================================
# EMBEDDED VALUES
# =====================================================

REQUIRED_ADDRESS_FIELDS = ("name", "phone", "addressLine1", "city", "state", "pincode")


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    addressLine1: Optional[str] = None
    addressLine2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    def is_complete(self) -> bool:
        return all((getattr(self, f) or "").strip() for f in REQUIRED_ADDRESS_FIELDS)


class StoreSnapshot(BaseModel):
    """
    Copy of the store's contact details taken at checkout.
    Stores may be edited later; orders keep what the customer saw.
    """

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class PaymentDetails(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.razorpay_order_id and self.razorpay_payment_id and self.razorpay_signature)


class CancellationRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    reason: str
    status: CancellationStatus = CancellationStatus.PENDING
    refundAmount: Optional[float] = None
    walletRefundAmount: Optional[float] = None
    requestedAt: datetime
    processedAt: Optional[datetime] = None
    adminNote: Optional[str] = None


# =====================================================
# REQUEST BODIES
# =====================================================

class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    shippingAddress: Optional[ShippingAddress] = None
    paymentMethod: PaymentMethod = PaymentMethod.COD
    couponCode: Optional[str] = None
    locationId: Optional[str] = None
    useWallet: bool = False
    walletUsed: Optional[float] = Field(None, ge=0)
    deliveryDate: Optional[datetime] = None
    orderNotes: Optional[str] = None
    occasion: Optional[str] = None
    occasionName: Optional[str] = None
    cakeMessage: Optional[str] = None
    paymentDetails: Optional[PaymentDetails] = None


class OrderActionRequest(BaseModel):
    status: Optional[OrderStatus] = None
    action: Optional[OrderEvent] = None
    otp: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class AdminCancelDecision(BaseModel):
    action: Literal["approve", "reject"]
    refundAmount: Optional[float] = Field(None, ge=0)
    walletRefundAmount: Optional[float] = Field(None, ge=0)
    adminNote: Optional[str] = None


class PaymentQuoteRequest(BaseModel):
    couponCode: Optional[str] = None
    locationId: Optional[str] = None
    useWallet: bool = False
    walletUsed: Optional[float] = Field(None, ge=0)
