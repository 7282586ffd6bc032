"""
CardSnap — Business Card Field Extractor
=========================================

What:  Assigns lines of OCR text to contact fields.
How:   Deterministic heuristics, no learned model. Pure function: the same
       text always yields the same ExtractedFields, and it never raises.

Precedence:
    1. email / phone / website are pattern matches over the whole text and
       are independent of line roles
    2. name    → first line of 2-3 plain words
    3. title   → line right after the name, unless it is contact info
    4. company → first remaining line that is not contact info
    5. notes   → every line not equal to and not containing an assigned value

Example:
    Jane Doe                    → name
    Software Engineer           → title
    Acme Corp                   → company
    jane.doe@acme.com           → email
    (415) 555-0134              → phone
"""

import re
from typing import List, Optional

from cardsnap.capture.models import ExtractedFields

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Optional +country code, optional opening parenthesis, then digits mixed with
# - . ( ) and spaces; must start and end on a digit. Newlines never join.
PHONE_CANDIDATE_RE = re.compile(r"\+?\(?\d[\d ().-]*\d")
MIN_PHONE_DIGITS = 10

# US ZIP or ZIP+4 that can sit right before a phone number on an address line
POSTAL_CODE_RE = re.compile(r"\d{5}(?:-\d{4})?")

# Optional scheme, optional www., one or more labels, alphabetic TLD, optional
# path. The lookbehind keeps it from starting inside another token.
WEBSITE_RE = re.compile(
    r"(?<![\w.@-])"
    r"(?:https?://)?"
    r"(?:www\.)?"
    r"[a-z0-9](?:[a-z0-9-]*[a-z0-9])?"
    r"(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*"
    r"\.[a-z]{2,}\b"
    r"(?:/[\w\-./?%&=#~+]*)?",
    re.IGNORECASE,
)

NAME_FORBIDDEN_RE = re.compile(r"[@\d()]")


def _split_lines(text: str) -> List[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def find_email(text: str) -> Optional[str]:
    match = EMAIL_RE.search(text)
    return match.group(0).lower() if match else None


def _digit_count(value: str) -> int:
    return sum(ch.isdigit() for ch in value)


def _strip_postal_code(candidate: str) -> str:
    head, _, rest = candidate.partition(" ")
    rest = rest.lstrip()
    if rest and POSTAL_CODE_RE.fullmatch(head) and _digit_count(rest) >= MIN_PHONE_DIGITS:
        return rest
    return candidate


def find_phone(text: str) -> Optional[str]:
    for match in PHONE_CANDIDATE_RE.finditer(text):
        candidate = _strip_postal_code(match.group(0))
        if _digit_count(candidate) >= MIN_PHONE_DIGITS:
            return candidate
    return None


def find_website(text: str) -> Optional[str]:
    # Domains inside email addresses are not websites
    masked = EMAIL_RE.sub(lambda m: " " * len(m.group(0)), text)
    match = WEBSITE_RE.search(masked)
    if not match:
        return None
    return match.group(0).rstrip(".,;:/").lower()


def is_contact_line(line: str) -> bool:
    """True when the line matches the email, phone or website pattern."""
    return bool(EMAIL_RE.search(line) or find_phone(line) or find_website(line))


def looks_like_name(line: str) -> bool:
    words = line.split()
    if not 2 <= len(words) <= 3:
        return False
    if any(len(word) <= 1 for word in words):
        return False
    return not NAME_FORBIDDEN_RE.search(line)


def _is_covered(line: str, values: List[str]) -> bool:
    folded = line.casefold()
    return any(folded == value or value in folded for value in values)


def extract(text: str) -> ExtractedFields:
    """
    Extract contact fields from recognized card text.

    Args:
        text: Raw OCR output, possibly multi-line, possibly empty.

    Returns:
        ExtractedFields; every field absent when nothing matches.
    """
    if not text or not text.strip():
        return ExtractedFields()

    lines = _split_lines(text)

    email = find_email(text)
    phone = find_phone(text)
    website = find_website(text)

    name_index: Optional[int] = None
    for index, line in enumerate(lines):
        if looks_like_name(line):
            name_index = index
            break

    title_index: Optional[int] = None
    if name_index is not None and name_index + 1 < len(lines):
        if not is_contact_line(lines[name_index + 1]):
            title_index = name_index + 1

    company_index: Optional[int] = None
    for index, line in enumerate(lines):
        if index in (name_index, title_index):
            continue
        if not is_contact_line(line):
            company_index = index
            break

    name = lines[name_index] if name_index is not None else None
    title = lines[title_index] if title_index is not None else None
    company = lines[company_index] if company_index is not None else None

    assigned = [
        value.casefold()
        for value in (name, title, company, email, phone, website)
        if value
    ]
    notes = "\n".join(line for line in lines if not _is_covered(line, assigned))

    return ExtractedFields(
        name=name,
        title=title,
        company=company,
        email=email,
        phone=phone,
        website=website,
        notes=notes,
    )
