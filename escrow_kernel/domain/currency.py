"""
Currency -- ISO 4217 codes a booking may be priced in.

Each code maps to its minor-unit exponent, which fixes both the rounding
precision of commissions and the integer scale bookings are stored at
(GHS 95.00 is stored as 9500 pesewas).
"""

from typing import ClassVar, NamedTuple


class CurrencyInfo(NamedTuple):
    code: str
    decimal_places: int
    name: str


def _table(*rows: tuple[str, int, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, places, name in rows}


class CurrencyRegistry:
    """Known currencies and their minor-unit exponents."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = _table(
        ("GHS", 2, "Ghanaian Cedi"),
        ("NGN", 2, "Nigerian Naira"),
        ("KES", 2, "Kenyan Shilling"),
        ("ZAR", 2, "South African Rand"),
        ("TZS", 2, "Tanzanian Shilling"),
        ("UGX", 0, "Ugandan Shilling"),
        ("RWF", 0, "Rwandan Franc"),
        ("XOF", 0, "West African CFA Franc"),
        ("XAF", 0, "Central African CFA Franc"),
        ("USD", 2, "US Dollar"),
        ("EUR", 2, "Euro"),
        ("GBP", 2, "Pound Sterling"),
        ("JPY", 0, "Japanese Yen"),
        ("KWD", 3, "Kuwaiti Dinar"),
    )

    @staticmethod
    def _normalize(code: object) -> str | None:
        if not isinstance(code, str):
            return None
        return code.strip().upper() or None

    @classmethod
    def is_valid(cls, code: object) -> bool:
        return cls._normalize(code) in cls._CURRENCIES

    @classmethod
    def validate(cls, code: object) -> str:
        """Return the normalized code, or raise ValueError if it is unknown."""
        normalized = cls._normalize(code)
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return normalized

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        return cls._CURRENCIES[cls.validate(code)].decimal_places
