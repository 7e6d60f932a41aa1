"""
Field Validators

Pure functions that check one raw form field each. Every validator returns a
ValidationResult: accepted results carry the normalized value, rejected ones
carry one message per violated rule. Validators never raise for malformed
input; the services turn rejected results into a ValidationError.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


EMAIL_PATTERN = re.compile(r'^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$', re.IGNORECASE | re.ASCII)
EMAIL_TLD_TYPOS = ("con", "cmo", "xom", "co", "cm")

PHONE_SEPARATORS = re.compile(r'[\s\-()]')
CARD_SEPARATORS = re.compile(r'[\s\-]')
SSN_SEPARATORS = re.compile(r'[\s\-]')

AMOUNT_PATTERN = re.compile(r'^(0|[1-9][0-9]*)(\.[0-9]{0,2})?$')

PASSWORD_SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
COMMON_PASSWORDS = frozenset({
    "password", "12345678", "qwerty", "password123", "admin123",
})

# 50 states, DC and the five inhabited territories
US_STATE_CODES = frozenset({
    'AL', 'AK', 'AZ', 'AR', 'CA', 'CO', 'CT', 'DE', 'FL', 'GA',
    'HI', 'ID', 'IL', 'IN', 'IA', 'KS', 'KY', 'LA', 'ME', 'MD',
    'MA', 'MI', 'MN', 'MS', 'MO', 'MT', 'NE', 'NV', 'NH', 'NJ',
    'NM', 'NY', 'NC', 'ND', 'OH', 'OK', 'OR', 'PA', 'RI', 'SC',
    'SD', 'TN', 'TX', 'UT', 'VT', 'VA', 'WA', 'WV', 'WI', 'WY',
    'DC', 'AS', 'GU', 'MP', 'PR', 'VI',
})

FUNDING_SOURCE_TYPES = ("card", "bank")


class CardNetwork(Enum):
    """Card networks recognised by leading-digit prefix"""
    VISA = "Visa"
    MASTERCARD = "Mastercard"
    AMERICAN_EXPRESS = "American Express"
    DISCOVER = "Discover"
    DINERS_CLUB = "Diners Club"
    JCB = "JCB"


# Discover's 622126-622925 range is approximated by the bare 622 prefix
CARD_NETWORK_PREFIXES: Tuple[Tuple[CardNetwork, re.Pattern], ...] = (
    (CardNetwork.VISA, re.compile(r'^4')),
    (CardNetwork.MASTERCARD, re.compile(r'^(5[1-5]|2(22[1-9]|2[3-9][0-9]|[3-6][0-9]{2}|7[01][0-9]|720))')),
    (CardNetwork.AMERICAN_EXPRESS, re.compile(r'^3[47]')),
    (CardNetwork.DISCOVER, re.compile(r'^(6011|65|64[4-9]|622)')),
    (CardNetwork.DINERS_CLUB, re.compile(r'^(30[0-5]|36|38)')),
    (CardNetwork.JCB, re.compile(r'^35(2[89]|[3-8][0-9])')),
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a single field"""
    field: str
    is_valid: bool
    value: Any = field(default=None, repr=False)
    errors: Tuple[str, ...] = ()
    normalized: bool = False  # True when value differs from the raw input

    @property
    def message(self) -> Optional[str]:
        """First rejection reason, if any"""
        return self.errors[0] if self.errors else None


def _accept(field_name: str, value: Any, raw: Any = None) -> ValidationResult:
    normalized = raw is not None and value != raw
    return ValidationResult(field=field_name, is_valid=True, value=value, normalized=normalized)


def _reject(field_name: str, *errors: str) -> ValidationResult:
    return ValidationResult(field=field_name, is_valid=False, errors=tuple(errors))


def collect_errors(results: Iterable[ValidationResult]) -> Dict[str, List[str]]:
    """Group the messages of every rejected result by field name"""
    errors: Dict[str, List[str]] = {}
    for result in results:
        if not result.is_valid:
            errors.setdefault(result.field, []).extend(result.errors)
    return errors


# Contact details

def validate_email(value: Optional[str]) -> ValidationResult:
    """Email shape plus a deny-list of mistyped top-level domains"""
    if not value or not value.strip():
        return _reject("email", "Email is required")

    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        return _reject("email", "Invalid email address")

    tld = normalized.rsplit(".", 1)[-1]
    if tld in EMAIL_TLD_TYPOS:
        return _reject("email", f"Email domain '.{tld}' looks like a typo")

    return _accept("email", normalized, value)


def validate_phone(value: Optional[str]) -> ValidationResult:
    if not value:
        return _reject("phone", "Phone number is required")

    digits = PHONE_SEPARATORS.sub("", value)
    if not re.fullmatch(r'[0-9]{10}', digits):
        return _reject("phone", "Phone number must be 10 digits")
    if digits == "0" * 10:
        return _reject("phone", "Invalid phone number")

    return _accept("phone", digits, value)


def validate_state(value: Optional[str]) -> ValidationResult:
    if not value:
        return _reject("state", "State is required")

    code = value.strip().upper()
    if code not in US_STATE_CODES:
        return _reject("state", "Invalid US state or territory code")

    return _accept("state", code, value)


# Identity

def calculate_age(birth_date: date, today: date) -> int:
    """Whole years between birth_date and today, counting the birthday itself"""
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def validate_date_of_birth(value: Union[str, date, None], today: Optional[date] = None,
                           min_age: int = 18, max_age: int = 120) -> ValidationResult:
    """
    Date of birth must not be in the future and must give an age in
    [min_age, max_age].

    Args:
        value: ISO date string (YYYY-MM-DD) or a date
        today: Reference date, defaults to the current date
    """
    if not value:
        return _reject("date_of_birth", "Date of birth is required")

    if isinstance(value, datetime):
        birth_date = value.date()
    elif isinstance(value, date):
        birth_date = value
    else:
        try:
            birth_date = date.fromisoformat(value.strip())
        except ValueError:
            return _reject("date_of_birth", "Invalid date of birth")

    today = today or date.today()
    if birth_date > today:
        return _reject("date_of_birth", "Date of birth cannot be in the future")

    age = calculate_age(birth_date, today)
    if age < min_age:
        return _reject("date_of_birth", f"You must be at least {min_age} years old")
    if age > max_age:
        return _reject("date_of_birth", "Please enter a valid date of birth")

    return _accept("date_of_birth", birth_date)


def validate_ssn(value: Optional[str]) -> ValidationResult:
    if not value:
        return _reject("ssn", "SSN is required")

    digits = SSN_SEPARATORS.sub("", value)
    if not re.fullmatch(r'[0-9]{9}', digits):
        return _reject("ssn", "SSN must be 9 digits")

    return _accept("ssn", digits)


def validate_password(value: Optional[str], min_length: int = 8) -> ValidationResult:
    """Report every rule the password breaks, not just the first"""
    if not value:
        return _reject("password", "Password is required")

    errors = []
    if len(value) < min_length:
        errors.append(f"Password must be at least {min_length} characters")
    if not re.search(r'[A-Z]', value):
        errors.append("Password must contain an uppercase letter")
    if not re.search(r'[a-z]', value):
        errors.append("Password must contain a lowercase letter")
    if not re.search(r'[0-9]', value):
        errors.append("Password must contain a number")
    if not any(c in PASSWORD_SPECIAL_CHARACTERS for c in value):
        errors.append("Password must contain a special character")
    if value.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common")

    if errors:
        return _reject("password", *errors)
    return _accept("password", value)


# Money

def parse_amount(value: Union[str, int, Decimal, None]) -> Optional[Decimal]:
    """Decimal for a well-formed amount string, None otherwise"""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not AMOUNT_PATTERN.match(text):
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def validate_amount(value: Union[str, int, Decimal, None], require_positive: bool = False,
                    maximum: Optional[Decimal] = None) -> ValidationResult:
    """
    Amount text with no leading zeros and at most two decimal places.

    Args:
        require_positive: Reject zero (funding operations)
        maximum: Inclusive upper bound
    """
    if value is None or str(value).strip() == "":
        return _reject("amount", "Amount is required")

    amount = parse_amount(value)
    if amount is None:
        return _reject("amount", "Invalid amount format (no leading zeros, at most 2 decimal places)")
    if require_positive and amount <= 0:
        return _reject("amount", "Amount must be greater than $0.00")
    if maximum is not None and amount > maximum:
        return _reject("amount", f"Amount cannot exceed ${maximum:,.2f}")

    return _accept("amount", amount)


# Cards and bank details

def luhn_valid(digits: str) -> bool:
    """Luhn checksum over a string of digits"""
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def luhn_check_digit(partial: str) -> str:
    """Digit that makes ``partial + digit`` pass the Luhn check"""
    for candidate in "0123456789":
        if luhn_valid(partial + candidate):
            return candidate
    raise ValueError(f"No Luhn check digit for {partial!r}")


def detect_card_network(card_number: str) -> Optional[CardNetwork]:
    """Network for the card's leading digits, or None when unrecognised"""
    digits = re.sub(r'[^0-9]', '', card_number or "")
    for network, pattern in CARD_NETWORK_PREFIXES:
        if pattern.match(digits):
            return network
    return None


@dataclass(frozen=True)
class CardCheck:
    """Independent results of the card checks"""
    digits: str
    has_valid_length: bool
    luhn_valid: bool
    network: Optional[CardNetwork]

    @property
    def is_valid(self) -> bool:
        return self.has_valid_length and self.luhn_valid and self.network is not None


def check_card(card_number: str) -> CardCheck:
    digits = CARD_SEPARATORS.sub("", card_number or "")
    has_valid_length = bool(re.fullmatch(r'[0-9]{16}', digits))
    return CardCheck(
        digits=digits,
        has_valid_length=has_valid_length,
        luhn_valid=has_valid_length and luhn_valid(digits),
        network=detect_card_network(digits) if re.fullmatch(r'[0-9]+', digits) else None,
    )


def validate_card_number(value: Optional[str]) -> ValidationResult:
    """16-digit card that passes Luhn and belongs to a recognised network"""
    if not value:
        return _reject("account_number", "Card number is required")

    card = check_card(value)
    if not card.has_valid_length:
        return _reject("account_number", "Card number must be 16 digits")

    errors = []
    if card.network is None:
        errors.append("Card number is not recognized as a valid card type")
    if not card.luhn_valid:
        errors.append("Invalid card number (failed checksum validation)")
    if errors:
        return _reject("account_number", *errors)

    return _accept("account_number", card)


def validate_bank_account_number(value: Optional[str]) -> ValidationResult:
    if not value:
        return _reject("account_number", "Account number is required")
    if not re.fullmatch(r'[0-9]+', value.strip()):
        return _reject("account_number", "Invalid account number")
    return _accept("account_number", value.strip())


def validate_routing_number(value: Optional[str], funding_type: str) -> ValidationResult:
    """Required, 9 digits and not all zeros when funding from a bank"""
    if funding_type != "bank":
        return _accept("routing_number", None)

    if not value:
        return _reject("routing_number", "Routing number is required for bank transfers")
    value = value.strip()
    if not re.fullmatch(r'[0-9]{9}', value):
        return _reject("routing_number", "Routing number must be exactly 9 digits")
    if value == "0" * 9:
        return _reject("routing_number", "Invalid routing number")

    return _accept("routing_number", value)


def validate_funding_source(funding_type: Optional[str], account_number: Optional[str],
                            routing_number: Optional[str] = None) -> List[ValidationResult]:
    """Results for every funding-source field of a card or bank submission"""
    if funding_type not in FUNDING_SOURCE_TYPES:
        return [_reject("funding_type", "Funding type must be 'card' or 'bank'")]

    if funding_type == "card":
        number_result = validate_card_number(account_number)
    else:
        number_result = validate_bank_account_number(account_number)

    return [
        _accept("funding_type", funding_type),
        number_result,
        validate_routing_number(routing_number, funding_type),
    ]
