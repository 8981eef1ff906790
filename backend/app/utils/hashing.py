import hashlib
import hmac


def hash_address(address: str | None, secret: str) -> str | None:
    # Security: keyed digest so stored values cannot be reversed by brute
    # forcing the IPv4 space without the secret.
    if not address:
        return None
    return hmac.new(secret.encode(), address.encode(), hashlib.sha256).hexdigest()
