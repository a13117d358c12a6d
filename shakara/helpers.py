import time
import secrets
import string
import hmac
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Union


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


_B36 = string.digits + string.ascii_lowercase


def to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def generate_tx_ref(prefix: str = "shakara") -> str:
    # <prefix>-<ms since epoch, base36>-<6 random base36 chars>
    ms = int(time.time() * 1000)
    tail = "".join(secrets.choice(_B36) for _ in range(6))
    return f"{prefix}-{to_base36(ms)}-{tail}"


def normalize_dates(
        value: Union[None, str, Iterable[str]]
) -> List[str]:
    """Accept a list or a comma separated string; return unique sorted dates."""
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return sorted({str(d).strip() for d in items if str(d).strip()})


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def same_amount(a: Union[int, float, str, Decimal],
                b: Union[int, float, str, Decimal]) -> bool:
    # gateways report 80000, 80000.0 or "80000.00" for the same money
    try:
        return Decimal(str(a)) == Decimal(str(b))
    except ArithmeticError:
        return False
