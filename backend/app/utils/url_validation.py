import ipaddress
import re
from urllib.parse import urlsplit

DANGEROUS_SCHEMES = ("javascript:", "data:", "vbscript:", "file:", "about:", "blob:")
BLOCKED_HOSTNAMES = {"localhost", "0.0.0.0", "127.0.0.1", "::1"}

_SCHEME_RE = re.compile(r"^[a-zA-Z][\w+.-]*:")


def normalize_url(url: str) -> str:
    url = url.strip()
    if _SCHEME_RE.match(url):
        return url
    if url.startswith("//"):
        return "https:" + url
    return "https://" + url


def validate_url(url: str | None, max_length: int = 8192, block_private: bool = True) -> str:
    """Return the normalized destination URL or raise ``ValueError``."""
    if not url or not url.strip():
        raise ValueError("URL is required")
    if len(url.strip()) > max_length:
        raise ValueError(f"URL exceeds maximum length of {max_length} characters")

    normalized = normalize_url(url)
    lowered = normalized.lower()
    for scheme in DANGEROUS_SCHEMES:
        if lowered.startswith(scheme):
            raise ValueError(f"Protocol {scheme} is not allowed")

    try:
        parsed = urlsplit(normalized)
        hostname = (parsed.hostname or "").lower()
    except ValueError as exc:
        raise ValueError("Invalid URL format") from exc
    if parsed.scheme not in ("http", "https"):
        raise ValueError("Only HTTP and HTTPS protocols are allowed")
    if not hostname:
        raise ValueError("URL must have a valid domain")

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        address = None

    if block_private:
        if hostname in BLOCKED_HOSTNAMES:
            raise ValueError("Localhost URLs are not allowed")
        if address is not None and (
            address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified
        ):
            raise ValueError("Private IP addresses are not allowed")

    if address is None:
        tld = hostname.rsplit(".", 1)[-1] if "." in hostname else ""
        if len(tld) < 2:
            raise ValueError("URL must have a valid domain")
    return normalized
