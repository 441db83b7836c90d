"""资产代码与时间周期归一化。

纯函数，无副作用。无法识别的输入返回 None 而非抛异常，
是否构成错误由调用方（校验器）决定。
"""

import re

# 规范时间周期枚举
TIMEFRAMES: tuple[str, ...] = ("1m", "5m", "15m", "30m", "H1", "H4", "D1", "W1", "MN")

# 同义词表：小写、去空白后的输入 → 规范周期
_TIMEFRAME_SYNONYMS: dict[str, str] = {
    "1min": "1m", "1minute": "1m", "1m": "1m",
    "5min": "5m", "5minutes": "5m", "5m": "5m",
    "15min": "15m", "15minutes": "15m", "15m": "15m",
    "30min": "30m", "30minutes": "30m", "30m": "30m", "30": "30m",
    "1hour": "H1", "h1": "H1", "1h": "H1", "60min": "H1",
    "4hours": "H4", "h4": "H4", "4h": "H4", "240min": "H4",
    "daily": "D1", "d1": "D1", "diario": "D1",
    "weekly": "W1", "w1": "W1", "semanal": "W1",
    "monthly": "MN", "mn": "MN", "mensual": "MN",
}

_ASSET_RE = re.compile(r"^[A-Z]{3}/[A-Z]{3}$")
_SIX_LETTERS_RE = re.compile(r"^[A-Z]{6}$")

# 规范周期 → Alpha Vantage (interval, time_period)
_PROVIDER_INTERVALS: dict[str, tuple[str, str]] = {
    "1m": ("1min", "14"),
    "5m": ("5min", "14"),
    "15m": ("15min", "14"),
    "30m": ("30min", "14"),
    "H1": ("60min", "14"),
    "H4": ("daily", "20"),   # Alpha Vantage 无 4 小时周期，用日线 + 更长周期近似
    "D1": ("daily", "14"),
    "W1": ("weekly", "14"),
    "MN": ("monthly", "14"),
}


def normalize_asset(raw: object) -> str | None:
    """归一化资产代码为 LLL/LLL 格式。

    eurusd -> EUR/USD；EUR-USD -> EUR/USD；EUR / usd -> EUR/USD；EU-R/USD -> None

    连字符仅在没有 "/" 时视为分隔符去除，两种分隔符混用视为无法识别。
    """
    if not isinstance(raw, str):
        return None
    normalized = re.sub(r"\s+", "", raw.upper())
    if "/" not in normalized:
        normalized = normalized.replace("-", "")
    if _SIX_LETTERS_RE.match(normalized):
        normalized = f"{normalized[:3]}/{normalized[3:]}"
    return normalized if _ASSET_RE.match(normalized) else None


def normalize_timeframe(raw: object) -> str | None:
    """归一化时间周期为规范枚举值，无法识别时返回 None。"""
    if not isinstance(raw, str):
        return None
    key = re.sub(r"\s+", "", raw.lower())
    candidate = _TIMEFRAME_SYNONYMS.get(key, raw.upper())
    return candidate if candidate in TIMEFRAMES else None


def asset_currencies(asset: str) -> list[str]:
    """EUR/USD -> ["EUR", "USD"]。"""
    return asset.split("/")


def provider_symbol(asset: str) -> str:
    """EUR/USD -> EURUSD（行情接口使用无分隔符代码）。"""
    return asset.replace("/", "")


def provider_interval(timeframe: str | None) -> tuple[str, str]:
    """规范周期 → 行情接口 (interval, time_period)，未知周期按日线处理。"""
    return _PROVIDER_INTERVALS.get(timeframe or "", _PROVIDER_INTERVALS["D1"])
