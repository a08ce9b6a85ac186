import hashlib
import ipaddress
from typing import Optional

MODE_HASH = "hash"
MODE_SUBNET = "subnet"
VALID_MODES = (MODE_HASH, MODE_SUBNET)


class IpMasker:
    """
    Reduces a client address to a privacy-preserving value before it is stored.

    hash:   sha256(address + salt), hex
    subnet: IPv4 with the last octet zeroed (a.b.c.0); other families -> None

    Unparseable or empty input maps to None instead of raising.
    """

    def __init__(self, mode: str = MODE_SUBNET, salt: str = ""):
        if mode not in VALID_MODES:
            raise ValueError(f"AUDIT_IP_MODE must be one of {VALID_MODES}, got {mode!r}")
        self.mode = mode
        self.salt = salt or ""

    def mask(self, address: Optional[str]) -> Optional[str]:
        ip = _parse(address)
        if ip is None:
            return None

        if self.mode == MODE_HASH:
            return hashlib.sha256((str(ip) + self.salt).encode("utf-8")).hexdigest()

        if isinstance(ip, ipaddress.IPv6Address):
            if ip.ipv4_mapped is None:
                return None
            ip = ip.ipv4_mapped
        network = ipaddress.ip_network(f"{ip}/24", strict=False)
        return str(network.network_address)


def _parse(address: Optional[str]):
    raw = (address or "").strip()
    if not raw:
        return None
    # "[::1]:443" / "1.2.3.4:5678" as sometimes seen in proxy headers
    if raw.startswith("[") and "]" in raw:
        raw = raw[1:raw.index("]")]
    elif raw.count(":") == 1:
        raw = raw.split(":", 1)[0]
    try:
        ip = ipaddress.ip_address(raw.split("%", 1)[0])
    except ValueError:
        return None
    # Normalise IPv4-mapped IPv6 so both modes see the same address
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip
