"""
Identity Extraction

Pulls tax ID, secondary tax code, business identifier and legal address out
of the free-form attribute bag attached to a record. Absence of a value is a
normal outcome and is reported as an empty string, never as an exception.
"""

import logging
import re
from typing import Any, Iterator, Mapping, Optional, Sequence, Tuple, Union

from ..models import IdentityBearing, IdentityFields, Record

logger = logging.getLogger(__name__)

TAX_ID_FIELDS = ("ИНН", "ИННКонтрагента", "ИННЮридическогоЛица", "inn", "tax_id")
SECONDARY_CODE_FIELDS = ("КПП", "КППКонтрагента", "kpp", "secondary_code")
BUSINESS_ID_FIELDS = (
    "БИН",
    "БИНКонтрагента",
    "БИНЮридическогоЛица",
    "БизнесИдентификационныйНомер",
    "bin",
    "business_id",
)
ADDRESS_FIELDS = (
    "АдресЮридический",
    "ЮридическийАдрес",
    "Адрес",
    "legal_address",
    "address",
)

TAX_ID_PATTERN = re.compile(r"\b(?:инн|inn)\w*[\s:>\"'=]*(\d{12}|\d{10})(?!\d)", re.IGNORECASE)
SECONDARY_CODE_PATTERN = re.compile(r"\b(?:кпп|kpp)\w*[\s:>\"'=]*(\d{9})(?!\d)", re.IGNORECASE)
BUSINESS_ID_PATTERN = re.compile(
    r"\b(?:бин|bin|бизнес[\s\-]*идентификационный[\s\-]*номер)\w*[\s:>\"'=]*(\d{12})(?!\d)",
    re.IGNORECASE,
)
ADDRESS_PATTERN = re.compile(
    r"(?:юридический\s*адрес|адрес\s*юридический|legal\s*address)[\s:>\"'=]*([^<\n]+)",
    re.IGNORECASE,
)

MIN_ADDRESS_LENGTH = 10


def _normalize_digits(value: str) -> str:
    return re.sub(r"[\s\-]", "", value)


def _is_tax_id(value: str) -> bool:
    return value.isdigit() and len(value) in (10, 12)


def _is_secondary_code(value: str) -> bool:
    return value.isdigit() and len(value) == 9


def _is_business_id(value: str) -> bool:
    return value.isdigit() and len(value) == 12


def _is_address(value: str) -> bool:
    return len(value) > MIN_ADDRESS_LENGTH


def _scalar_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        return str(value).strip()
    if isinstance(value, float):
        # Spreadsheet exports turn 7701234567 into 7701234567.0
        return str(int(value)) if value.is_integer() else str(value)
    return None


def _walk(attributes: Mapping[str, Any]) -> Iterator[Tuple[str, Any]]:
    """Yield (key, value) pairs depth-first through nested mappings."""
    for key, value in attributes.items():
        if isinstance(value, Mapping):
            yield from _walk(value)
        else:
            yield str(key), value


class IdentityExtractor:
    """Extracts identity fields from a record's attribute bag."""

    def __init__(
        self,
        tax_id_fields: Sequence[str] = TAX_ID_FIELDS,
        secondary_code_fields: Sequence[str] = SECONDARY_CODE_FIELDS,
        business_id_fields: Sequence[str] = BUSINESS_ID_FIELDS,
        address_fields: Sequence[str] = ADDRESS_FIELDS,
    ):
        self.tax_id_fields = {name.lower() for name in tax_id_fields}
        self.secondary_code_fields = {name.lower() for name in secondary_code_fields}
        self.business_id_fields = {name.lower() for name in business_id_fields}
        self.address_fields = {name.lower() for name in address_fields}

    def extract(self, record: Union[Record, IdentityBearing]) -> IdentityFields:
        """Return the identity fields for a record; missing values are empty strings."""
        if isinstance(record, IdentityBearing):
            return record.identity_fields()

        attributes = getattr(record, "attributes", None)
        if not isinstance(attributes, Mapping) or not attributes:
            return IdentityFields()

        tax_id = self._named_value(attributes, self.tax_id_fields, _is_tax_id, digits=True)
        secondary = self._named_value(attributes, self.secondary_code_fields, _is_secondary_code, digits=True)
        business_id = self._named_value(attributes, self.business_id_fields, _is_business_id, digits=True)
        address = self._named_value(attributes, self.address_fields, _is_address)

        # Free-text values such as "ИНН: 7701234567, КПП: 770101001"
        if not (tax_id and secondary and business_id and address):
            texts = []
            for _, value in _walk(attributes):
                text = _scalar_text(value)
                if text:
                    texts.append(text)
            tax_id = tax_id or self._pattern_value(texts, TAX_ID_PATTERN)
            secondary = secondary or self._pattern_value(texts, SECONDARY_CODE_PATTERN)
            business_id = business_id or self._pattern_value(texts, BUSINESS_ID_PATTERN)
            address = address or self._address_from_text(texts)

        return IdentityFields(
            tax_id=tax_id,
            secondary_code=secondary,
            business_id=business_id,
            legal_address=address,
        )

    def _named_value(self, attributes, field_names, validator, digits: bool = False) -> str:
        for key, value in _walk(attributes):
            if key.lower() not in field_names:
                continue
            text = _scalar_text(value)
            if not text:
                continue
            if digits:
                text = _normalize_digits(text)
            if validator(text):
                return text
            logger.debug(f"Ignoring malformed identity value for '{key}': {text!r}")
        return ""

    @staticmethod
    def _pattern_value(texts: Sequence[str], pattern: "re.Pattern[str]") -> str:
        for text in texts:
            match = pattern.search(text)
            if match:
                return match.group(1)
        return ""

    @staticmethod
    def _address_from_text(texts: Sequence[str]) -> str:
        for text in texts:
            match = ADDRESS_PATTERN.search(text)
            if match:
                address = match.group(1).strip()
                if _is_address(address):
                    return address
        return ""


_default_extractor = IdentityExtractor()


def extract_identity(record: Union[Record, IdentityBearing]) -> IdentityFields:
    """Extract identity fields with the default field lists."""
    return _default_extractor.extract(record)
