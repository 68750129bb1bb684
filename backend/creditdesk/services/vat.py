from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from creditdesk.core.config import settings
from creditdesk.core.errors import VatServiceError
from creditdesk.core.logging_setup import logger

REVERSE_CHARGE_NOTE = "VAT reverse charged pursuant to Article 138 of Directive 2006/112/EC"
EXPORT_NOTE = "VAT-exempt export of services outside the EU – Article 6(2) Dutch VAT Act"

EU_COUNTRY_CODES = frozenset(
    {
        "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
        "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
    }
)

COUNTRY_CODES: dict[str, str] = {
    # EU member states
    "austria": "AT",
    "belgium": "BE",
    "bulgaria": "BG",
    "croatia": "HR",
    "cyprus": "CY",
    "czechia": "CZ",
    "czech republic": "CZ",
    "denmark": "DK",
    "estonia": "EE",
    "finland": "FI",
    "france": "FR",
    "germany": "DE",
    "greece": "GR",
    "hungary": "HU",
    "ireland": "IE",
    "italy": "IT",
    "latvia": "LV",
    "lithuania": "LT",
    "luxembourg": "LU",
    "malta": "MT",
    "netherlands": "NL",
    "the netherlands": "NL",
    "holland": "NL",
    "poland": "PL",
    "portugal": "PT",
    "romania": "RO",
    "slovakia": "SK",
    "slovenia": "SI",
    "spain": "ES",
    "sweden": "SE",
    # Rest of the world
    "albania": "AL",
    "argentina": "AR",
    "australia": "AU",
    "bangladesh": "BD",
    "bosnia and herzegovina": "BA",
    "brazil": "BR",
    "canada": "CA",
    "chile": "CL",
    "china": "CN",
    "colombia": "CO",
    "egypt": "EG",
    "hong kong": "HK",
    "iceland": "IS",
    "india": "IN",
    "indonesia": "ID",
    "israel": "IL",
    "japan": "JP",
    "kenya": "KE",
    "liechtenstein": "LI",
    "malaysia": "MY",
    "mexico": "MX",
    "monaco": "MC",
    "morocco": "MA",
    "new zealand": "NZ",
    "nigeria": "NG",
    "north macedonia": "MK",
    "norway": "NO",
    "pakistan": "PK",
    "philippines": "PH",
    "qatar": "QA",
    "russia": "RU",
    "russian federation": "RU",
    "saudi arabia": "SA",
    "serbia": "RS",
    "singapore": "SG",
    "south africa": "ZA",
    "south korea": "KR",
    "korea, republic of": "KR",
    "switzerland": "CH",
    "taiwan": "TW",
    "thailand": "TH",
    "turkey": "TR",
    "türkiye": "TR",
    "ukraine": "UA",
    "united arab emirates": "AE",
    "uae": "AE",
    "united kingdom": "GB",
    "uk": "GB",
    "great britain": "GB",
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "vietnam": "VN",
    "viet nam": "VN",
}

COUNTRY_CURRENCIES: dict[str, str] = {
    "Pakistan": "pkr",
    "United States": "usd",
    "United Kingdom": "gbp",
    "Germany": "eur",
    "France": "eur",
    "Netherlands": "eur",
    "India": "inr",
    "United Arab Emirates": "aed",
    "Canada": "cad",
}

# VIES uses EL for Greece.
_REGISTRY_PREFIXES = {"GR": "EL"}


def get_country_code(country_name: str | None) -> str | None:
    if not country_name:
        return None
    normalized = " ".join(country_name.split()).casefold()
    if len(normalized) == 2 and normalized.upper() in set(COUNTRY_CODES.values()):
        return normalized.upper()
    return COUNTRY_CODES.get(normalized)


def is_eu_country(country_code: str | None) -> bool:
    return bool(country_code) and country_code.upper() in EU_COUNTRY_CODES


def currency_for_country(country_name: str | None) -> str:
    return COUNTRY_CURRENCIES.get((country_name or "").strip(), settings.default_currency)


def normalize_vat_number(vat_number: str | None) -> str | None:
    if not vat_number:
        return None
    cleaned = re.sub(r"[\s.\-]", "", vat_number).upper()
    return cleaned or None


@dataclass
class VatDetermination:
    vat_rate: Decimal
    is_reverse_charge: bool
    vat_note: str
    is_valid_vat: bool
    is_eu: bool
    country_code: str | None


class VatRegistry(Protocol):
    def is_valid(self, vat_number: str, country_code: str) -> bool:
        ...


class ViesClient:
    """HTTP client for the EU VIES VAT-number validation service."""

    def __init__(self, base_url: str | None = None, *, timeout_seconds: float | None = None) -> None:
        self._base_url = (base_url or settings.vat_service_url).rstrip("/")
        self._timeout = timeout_seconds or settings.vat_timeout_seconds

    def is_valid(self, vat_number: str, country_code: str) -> bool:
        prefix = _REGISTRY_PREFIXES.get(country_code.upper(), country_code.upper())
        number = normalize_vat_number(vat_number) or ""
        for candidate in {country_code.upper(), prefix}:
            if number.startswith(candidate):
                number = number[len(candidate):]
                break
        url = f"{self._base_url}/ms/{prefix}/vat/{number}"
        try:
            response = httpx.get(url, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise VatServiceError(details={"countryCode": country_code}) from exc
        return bool(payload.get("isValid") or payload.get("valid"))


class VatService:
    def __init__(self, registry: VatRegistry, *, standard_rate: Decimal | None = None) -> None:
        self.registry = registry
        self.standard_rate = standard_rate if standard_rate is not None else settings.standard_vat_rate

    def validate_number(self, vat_number: str, country_code: str) -> bool:
        """Ask the registry directly; registry failures propagate as VatServiceError."""
        try:
            return self.registry.is_valid(vat_number, country_code)
        except VatServiceError:
            logger.exception("VAT registry lookup failed country=%s", country_code)
            raise

    def determine(
        self,
        country_name: str | None,
        vat_number: str | None = None,
        *,
        strict: bool = True,
    ) -> VatDetermination:
        """Compute the VAT treatment for a billing country and optional VAT number.

        With ``strict=False`` a registry failure is treated as an invalid number so the
        caller falls back to the standard rate instead of failing.
        """
        country_code = get_country_code(country_name)
        normalized_vat = normalize_vat_number(vat_number)

        if not is_eu_country(country_code):
            return VatDetermination(
                vat_rate=Decimal("0"),
                is_reverse_charge=False,
                vat_note=EXPORT_NOTE,
                is_valid_vat=False,
                is_eu=False,
                country_code=country_code,
            )

        is_valid_vat = False
        if normalized_vat:
            try:
                is_valid_vat = self.validate_number(normalized_vat, country_code)
            except VatServiceError:
                if strict:
                    raise
                logger.warning(
                    "VAT registry unavailable, applying standard rate country=%s vat=%s",
                    country_code,
                    normalized_vat,
                )

        if is_valid_vat:
            return VatDetermination(
                vat_rate=Decimal("0"),
                is_reverse_charge=True,
                vat_note=REVERSE_CHARGE_NOTE,
                is_valid_vat=True,
                is_eu=True,
                country_code=country_code,
            )
        return VatDetermination(
            vat_rate=self.standard_rate,
            is_reverse_charge=False,
            vat_note="",
            is_valid_vat=False,
            is_eu=True,
            country_code=country_code,
        )
