import random
import string


def _random_block(length: int = 8) -> str:
    """
    Return a random string of uppercase letters and digits.
    """
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def generate_id(prefix: str = "ID") -> str:
    """
    Generate a short ID like 'SCH-1F2A9C3D' or 'ID-8K2L0P9Q'.

    Used as a SQLAlchemy column default, which calls it with zero
    positional arguments, so `prefix` must stay optional.
    """
    block = _random_block(8)
    if prefix:
        return f"{prefix}-{block}"
    return block


def generate_order_id() -> str:
    """
    Merchant reference sent to the payment gateway.

    The gateway uses it to de-duplicate charges, so it must be globally
    unique rather than merely unique per school.
    """
    return f"SUB-{_random_block(12)}"
