"""
Text patterns for bank-statement line classification.

Everything printed on a statement page that is not a transaction row:
page headers and footers, account details, summaries, section headings,
reading instructions, bank addresses and legal disclaimers. Also the
opening/closing balance markers and the column-header vocabulary.
"""
import re
from typing import Dict, List, Optional, Pattern

PAGE_HEADER_PATTERNS: List[Pattern] = [
    re.compile(r"^page\s*\d+", re.I),
    re.compile(r"^\d+\s*of\s*\d+$", re.I),
    re.compile(r"^statement\s+(of\s+)?account", re.I),
    re.compile(r"^account\s+statement", re.I),
    re.compile(r"^transaction\s+(history|detail)", re.I),
    re.compile(r"^account\s+activity", re.I),
    re.compile(r"^(checking|savings)\s+(account\s+)?summary", re.I),
    re.compile(r"^credit\s+card\s+statement", re.I),
]

PAGE_FOOTER_PATTERNS: List[Pattern] = [
    re.compile(r"^this\s+statement\s+is", re.I),
    re.compile(r"^please\s+(examine|review)", re.I),
    re.compile(r"^thank\s+you\s+for\s+(banking|your\s+business)", re.I),
    re.compile(r"^member\s+fdic", re.I),
    re.compile(r"^equal\s+housing\s+lender", re.I),
    re.compile(r"^registered\s+(in\s+england|office)", re.I),
    re.compile(r"^continued\s+(on\s+next\s+page|from\s+previous)", re.I),
]

ACCOUNT_INFO_PATTERNS: List[Pattern] = [
    re.compile(r"^(account|a/c)\s*(number|#|no\.?)", re.I),
    re.compile(r"^account\s+holder", re.I),
    re.compile(r"^customer\s+(name|id)", re.I),
    re.compile(r"^branch\s+(name|code)", re.I),
    re.compile(r"^(sort|ifsc|swift)\s+code", re.I),
    re.compile(r"^(iban|bic)\b", re.I),
    re.compile(r"^routing\s+number", re.I),
    re.compile(r"^statement\s+(period|date)", re.I),
    re.compile(r"^from\s+\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\s+to\s+\d{1,2}", re.I),
]

SUMMARY_PATTERNS: List[Pattern] = [
    re.compile(r"^(sub)?total", re.I),
    re.compile(r"^(balance|account)\s+summary", re.I),
    re.compile(r"^summary\s+of\s+(charges|transactions)", re.I),
    re.compile(r"^daily\s+balance\s+summary", re.I),
    re.compile(r"^(minimum|average)\s+(daily\s+)?balance", re.I),
    re.compile(r"^interest\s+(earned|charged|rate)", re.I),
    re.compile(r"^(service\s+charge|monthly\s+fee|fees?\s+charged)", re.I),
]

SECTION_HEADER_PATTERNS: List[Pattern] = [
    re.compile(r"^deposits?\s+and\s+(other\s+)?(additions?|credits?)", re.I),
    re.compile(r"^withdrawals?\s+and\s+(other\s+)?(subtractions?|debits?)", re.I),
    re.compile(r"^electronic\s+(withdrawals?|deposits?)", re.I),
    re.compile(r"^atm\s+(&|and)\s+debit\s+card", re.I),
    re.compile(r"^checks?\s+(paid|cleared)", re.I),
    re.compile(r"^other\s+(transactions?|activity)", re.I),
    re.compile(r"^(pending|posted)\s+transactions?", re.I),
    re.compile(r"^(debit|credit)\s+card\s+transactions?", re.I),
    re.compile(r"^wire\s+transfers?", re.I),
    re.compile(r"^ach\s+transactions?", re.I),
]

INSTRUCTION_PATTERNS: List[Pattern] = [
    re.compile(r"^how\s+to\s+read", re.I),
    re.compile(r"^important\s+(notice|information)", re.I),
    re.compile(r"^please\s+note", re.I),
    re.compile(r"^(note|remarks?|legend|key|abbreviations?):", re.I),
    re.compile(r"^(dr|cr)\s*=\s*(debit|credit)", re.I),
]

ADDRESS_PATTERNS: List[Pattern] = [
    re.compile(r"\b(toll\s*free|helpline|customer\s*care)\b", re.I),
    re.compile(r"\b(phone|tel|fax|email)\s*[:.]?\s*[\d\-()+]{5,}", re.I),
    re.compile(r"\b(registered\s+)?office\s*:", re.I),
    re.compile(r"\b(pin\s*code|postal\s*code|zip)\s*[:\-]?\s*\d+", re.I),
    re.compile(r"\b(address|location)\s*:", re.I),
    re.compile(r"\bwww\.\w+\.(com|in|org|net|co)", re.I),
    re.compile(r"\b(city|state|district)\s*:", re.I),
    re.compile(r"\bterms\s+(and|&)\s+conditions", re.I),
    re.compile(r"\bdisclaimer\b", re.I),
    re.compile(r"\b(head|corporate|main)\s+office", re.I),
    re.compile(r"\bregd\.?\s*(office|address)", re.I),
    re.compile(r"\b(gstin|gst\s*no\.?)\s*[:.\-]?\s*\w+", re.I),
    re.compile(r"\bfor\s+(any|your)\s+(queries?|complaints?|assistance)", re.I),
    re.compile(r"\bthis\s+is\s+an?\s+(electronic|computer|system)\s+generated", re.I),
    re.compile(r"\bauthori[sz]ed\s+signator", re.I),
    re.compile(r"\bdoes\s+not\s+require\s+(a\s+)?signature", re.I),
    re.compile(r"\bcontact\s+us\b", re.I),
    re.compile(r"\b(customer\s+service|bank\s+address|branch\s+address|website\s*:)", re.I),
    re.compile(r"\bpincode\s*\d{6}", re.I),
]

NOISE_PATTERNS: List[Pattern] = [
    re.compile(r"^[-=*_\s]+$"),
    re.compile(r"^[\d\s/\-]+$"),
]

ALL_SKIP_PATTERNS: List[Pattern] = (
    PAGE_HEADER_PATTERNS
    + PAGE_FOOTER_PATTERNS
    + ACCOUNT_INFO_PATTERNS
    + SUMMARY_PATTERNS
    + SECTION_HEADER_PATTERNS
    + INSTRUCTION_PATTERNS
    + ADDRESS_PATTERNS
    + NOISE_PATTERNS
)

OPENING_BALANCE_PATTERNS: List[Pattern] = [
    re.compile(r"opening\s*balance", re.I),
    re.compile(r"brought\s*forward", re.I),
    re.compile(r"\bb/f\b", re.I),
    re.compile(r"previous\s*balance", re.I),
    re.compile(r"beginning\s*balance", re.I),
]

CLOSING_BALANCE_PATTERNS: List[Pattern] = [
    re.compile(r"closing\s*balance", re.I),
    re.compile(r"carried\s*forward", re.I),
    re.compile(r"\bc/f\b", re.I),
    re.compile(r"ending\s*balance", re.I),
]

# Column-header vocabulary, longest phrases first
HEADER_KEYWORDS: Dict[str, List[str]] = {
    "value_date": ["value date", "value dt"],
    "date": ["transaction date", "txn date", "posting date", "post date", "date"],
    "description": ["description", "particulars", "narration", "details", "transaction details", "remarks"],
    "reference": ["reference", "ref no", "ref", "cheque no", "chq no", "chq", "check no"],
    "debit": ["withdrawals", "withdrawal", "debits", "debit", "paid out", "money out", "dr"],
    "credit": ["deposits", "deposit", "credits", "credit", "paid in", "money in", "cr"],
    "amount": ["transaction amount", "amount", "value"],
    "balance": ["running balance", "balance"],
}

DESCRIPTION_ABBREVIATIONS: Dict[str, str] = {
    "TRF": "Transfer",
    "PYMT": "Payment",
    "DEP": "Deposit",
    "WDL": "Withdrawal",
    "CHQ": "Cheque",
}


def is_boilerplate(text: str) -> bool:
    """Check whether a statement line is page furniture rather than data."""
    stripped = text.strip()
    if not stripped:
        return True
    return any(pattern.search(stripped) for pattern in ALL_SKIP_PATTERNS)


def is_opening_balance(text: str) -> bool:
    return any(pattern.search(text) for pattern in OPENING_BALANCE_PATTERNS)


def is_closing_balance(text: str) -> bool:
    return any(pattern.search(text) for pattern in CLOSING_BALANCE_PATTERNS)


def match_header_keyword(text: str) -> Optional[str]:
    """
    Map a column-header cell to a column role.

    Matching is whole-phrase so "Credit" does not fire inside "Credit Card
    Payment" descriptions.
    """
    normalized = " ".join(re.sub(r"[^a-z\s]", " ", text.lower()).split())
    if not normalized:
        return None
    for role, keywords in HEADER_KEYWORDS.items():
        if normalized in keywords:
            return role
    return None


def is_column_header_line(text: str) -> bool:
    """True when a line reads like the column-header row of a transaction table."""
    normalized = " " + " ".join(re.sub(r"[^a-z\s]", " ", text.lower()).split()) + " "
    roles = set()
    for role, keywords in HEADER_KEYWORDS.items():
        if any(f" {keyword} " in normalized for keyword in keywords if len(keyword) > 2):
            roles.add(role)
    return "date" in roles and len(roles) >= 3


def clean_description(text: str) -> str:
    """Collapse whitespace and expand the common bank abbreviations."""
    words = text.split()
    expanded = [DESCRIPTION_ABBREVIATIONS.get(word.upper(), word) for word in words]
    return " ".join(expanded)


CREDIT_KEYWORD_PATTERNS: List[Pattern] = [
    re.compile(r"\b(deposits?|salary|refund|reversal|cashback|credited)\b", re.I),
    re.compile(r"\b(interest\s+(credit|paid)|payment\s+received|received\s+from|transfer\s+from)\b", re.I),
    re.compile(r"\b(by\s+transfer|neft\s+cr|imps\s+cr|direct\s+credit)\b", re.I),
]

DEBIT_KEYWORD_PATTERNS: List[Pattern] = [
    re.compile(r"\b(withdrawals?|atm|purchase|pos|debited|fees?|charges?|emi)\b", re.I),
    re.compile(r"\b(payment\s+to|transfer\s+to|to\s+transfer|bill\s+pay(ment)?|cheque\s+paid)\b", re.I),
    re.compile(r"\b(direct\s+debit|standing\s+order|card\s+payment)\b", re.I),
]


def keyword_direction(text: str) -> Optional[str]:
    """
    Guess "credit" or "debit" from description wording.

    Credit wording is checked first so "ATM deposit" reads as a credit.
    """
    if any(pattern.search(text) for pattern in CREDIT_KEYWORD_PATTERNS):
        return "credit"
    if any(pattern.search(text) for pattern in DEBIT_KEYWORD_PATTERNS):
        return "debit"
    return None
