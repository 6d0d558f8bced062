import hmac
import secrets

from config.constants import DELIVERY_OTP_LENGTH


# ===============================
# GENERATE DELIVERY OTP
# ===============================
def generate_otp(length: int = DELIVERY_OTP_LENGTH) -> str:
    # first digit never zero so the code keeps its length as a number
    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(length - 1))
    return first + rest


# ===============================
# VERIFY OTP
# ===============================
def verify_otp(submitted: str | None, expected: str | None) -> bool:
    if not submitted or not expected:
        return False
    return hmac.compare_digest(str(submitted).strip(), str(expected))
