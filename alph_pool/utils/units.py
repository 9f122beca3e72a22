import time

# 1 ALPH = 10^18 smallest units
ALPH_DECIMALS = 18
ALPH_BASE_UNITS = 10**ALPH_DECIMALS


def to_alph(amount) -> float:
    """Convert an amount in the smallest unit to ALPH"""
    return float(amount) / ALPH_BASE_UNITS


def now_millis() -> int:
    return int(time.time() * 1000)
