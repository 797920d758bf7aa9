"""Derived analytic metrics shared by every provider transformer."""

from __future__ import annotations

import hashlib
import random
import re

from trade_insight.core.models import CompetitionLevel

MATERIALITY_THRESHOLD = 1_000_000.0
TARIFF_CEILING = 50.0

DEVELOPED_ECONOMIES = frozenset({"USA", "DEU", "JPN", "GBR", "FRA", "CAN", "AUS"})
EMERGING_ECONOMIES = frozenset({"CHN", "IND", "BRA", "RUS", "MEX", "ZAF"})

# Placeholder tariff bands (low, high) in percent
DEVELOPED_BAND = (0.0, 5.0)
EMERGING_BAND = (5.0, 20.0)
OTHER_BAND = (10.0, 35.0)
UNREPORTED_BAND = (0.0, 15.0)

_VALUE_TIERS = ((1e9, 30), (1e8, 20), (1e7, 10))
_GROWTH_TIERS = ((20.0, 20), (10.0, 15), (5.0, 10), (0.0, 5))

_CATEGORY_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("machinery", "Machinery"),
    ("electrical", "Electronics"),
    ("vehicle", "Automotive"),
    ("textile", "Textiles"),
    ("chemical", "Chemicals"),
    ("food", "Food & Beverages"),
    ("medical", "Medical Devices"),
    ("pharmaceutical", "Medical Devices"),
    ("software", "Software"),
    ("computer", "Electronics"),
)

_CATEGORY_ALIASES: dict[str, str] = {
    "electronic": "Electronics",
    "electronics": "Electronics",
    "technology": "Electronics",
    "machinery": "Machinery",
    "machine": "Machinery",
    "automotive": "Automotive",
    "automobile": "Automotive",
    "vehicle": "Automotive",
    "textile": "Textiles",
    "textiles": "Textiles",
    "clothing": "Textiles",
    "apparel": "Textiles",
    "chemical": "Chemicals",
    "chemicals": "Chemicals",
    "pharmaceutical": "Medical Devices",
    "medical": "Medical Devices",
    "food": "Food & Beverages",
    "beverage": "Food & Beverages",
    "agriculture": "Food & Beverages",
    "software": "Software",
    "it": "Software",
    "energy": "Energy Equipment",
    "construction": "Construction Materials",
}

# HS chapters per product category
HS_CHAPTERS: dict[str, tuple[str, ...]] = {
    "Electronics": ("84", "85"),
    "Machinery": ("84", "86", "87"),
    "Automotive": ("87",),
    "Textiles": tuple(f"{n:02d}" for n in range(50, 64)),
    "Chemicals": tuple(f"{n:02d}" for n in range(28, 39)),
    "Food & Beverages": tuple(f"{n:02d}" for n in range(1, 25)),
    "Medical Devices": ("30", "90"),
    "Energy Equipment": ("84", "85", "27"),
}

_ISO2_TO_ISO3: dict[str, str] = {
    "US": "USA", "UK": "GBR", "GB": "GBR", "CN": "CHN", "JP": "JPN",
    "DE": "DEU", "FR": "FRA", "IT": "ITA", "ES": "ESP", "CA": "CAN",
    "AU": "AUS", "IN": "IND", "BR": "BRA", "RU": "RUS", "KR": "KOR",
    "MX": "MEX", "ID": "IDN", "NL": "NLD", "SA": "SAU", "TR": "TUR",
    "TW": "TWN",
}

_BASE_REQUIREMENTS = (
    "Valid export license",
    "Product certification",
    "Quality compliance documentation",
)


def round1(value: float) -> float:
    return round(value, 1)


def growth_rate(latest: float, previous: float) -> float:
    """Year-over-year change in percent; 0 when there is no usable base."""
    if not previous:
        return 0.0
    return (latest - previous) / previous * 100


def competition_level(exports: float, imports: float) -> CompetitionLevel:
    """Classify competition from trade-balance symmetry.

    A lopsided relationship implies fewer competing suppliers.
    """
    total = exports + imports
    if total == 0:
        return CompetitionLevel.LOW
    ratio = abs(exports - imports) / total
    if ratio > 0.5:
        return CompetitionLevel.LOW
    if ratio > 0.2:
        return CompetitionLevel.MEDIUM
    return CompetitionLevel.HIGH


def opportunity_score(value: float, growth: float | None = None) -> float:
    """Base 50, plus value and growth bonuses, clamped to [0, 100].

    `growth=None` means fewer than two periods were available.
    """
    score = 50.0
    for floor, points in _VALUE_TIERS:
        if value > floor:
            score += points
            break
    if growth is not None:
        for floor, points in _GROWTH_TIERS:
            if growth > floor:
                score += points
                break
    return min(100.0, max(0.0, score))


def cif_fob_spread(cif_values: list[float], fob_values: list[float]) -> float | None:
    """Average CIF/FOB markup in percent, or None without both sides."""
    cif = [v for v in cif_values if v and v > 0]
    fob = [v for v in fob_values if v and v > 0]
    if not cif or not fob:
        return None
    avg_cif = sum(cif) / len(cif)
    avg_fob = sum(fob) / len(fob)
    return (avg_cif - avg_fob) / avg_fob * 100


def clamp_tariff(rate: float) -> float:
    return min(TARIFF_CEILING, max(0.0, rate))


def tariff_band(country_code: str) -> tuple[float, float]:
    code = country_code.upper()
    if code in DEVELOPED_ECONOMIES:
        return DEVELOPED_BAND
    if code in EMERGING_ECONOMIES:
        return EMERGING_BAND
    return OTHER_BAND


def placeholder_tariff(
    country_code: str,
    category: str,
    band: tuple[float, float] | None = None,
) -> float:
    """Deterministic stand-in tariff within `band`.

    Seeded from the (country, category) pair so the same inputs always give
    the same value. Callers must tag the result as a placeholder.
    """
    low, high = band if band is not None else tariff_band(country_code)
    rng = random.Random(_seed(country_code.upper(), category))
    return round1(low + rng.random() * (high - low))


def category_for_description(description: str) -> str:
    """Map a commodity description to a product category by keyword."""
    lowered = description.lower()
    for keyword, category in _CATEGORY_KEYWORDS:
        if keyword in lowered:
            return category
    return "Other"


def normalize_category(category: str) -> str:
    """Canonical spelling of a caller-supplied product category."""
    lowered = category.lower().strip()
    if lowered in _CATEGORY_ALIASES:
        return _CATEGORY_ALIASES[lowered]
    return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), category.strip())


def normalize_country_code(code: str) -> str:
    """Upper-case a country code, mapping common ISO alpha-2 codes to alpha-3."""
    upper = code.strip().upper()
    return _ISO2_TO_ISO3.get(upper, upper)


def requirements_for(description: str) -> list[str]:
    """Compliance checklist for exporting a commodity."""
    lowered = description.lower()
    requirements = list(_BASE_REQUIREMENTS)
    if "food" in lowered or "agricultural" in lowered:
        requirements += ["Food safety certification", "Phytosanitary certificate"]
    if "medical" in lowered or "pharmaceutical" in lowered:
        requirements += ["FDA approval", "Medical device registration"]
    if "chemical" in lowered:
        requirements += ["Chemical safety data sheet", "Hazardous material certification"]
    return requirements


def stable_id(*parts: object) -> str:
    """Short deterministic identifier built from `parts`."""
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return digest[:16]


def format_compact(amount: float) -> str:
    """$1.2B-style display string."""
    for divisor, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if abs(amount) >= divisor:
            return f"${amount / divisor:.1f}{suffix}"
    return f"${amount:.0f}"


def _seed(*parts: str) -> int:
    digest = hashlib.sha256(":".join(parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")
