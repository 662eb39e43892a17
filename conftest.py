"""
Shared pytest fixtures: positioned-token statement builders.
"""
from typing import Dict, List, Optional

import pytest

from ledgerline.pipeline.models import ExtractedDocument, PageTokens, PositionedToken


class StatementBuilder:
    """
    Lays out statement text the way pdfplumber reports it.

    Every word becomes one token, CHAR_WIDTH points per character. Amount
    columns are right-aligned on fixed edges; each line sits ROW_HEIGHT
    below the previous one on its page.
    """

    CHAR_WIDTH = 5.0
    ROW_HEIGHT = 20.0
    FIRST_TOP = 50.0
    WORD_GAP = 4.0

    DATE_X = 40.0
    DESCRIPTION_X = 110.0
    DEBIT_RIGHT = 370.0
    CREDIT_RIGHT = 450.0
    BALANCE_RIGHT = 530.0

    def __init__(self, file_name: str = "statement.pdf"):
        self.file_name = file_name
        self._pages: Dict[int, List[PositionedToken]] = {1: []}
        self._tops: Dict[int, float] = {1: self.FIRST_TOP}
        self._page = 1

    @property
    def current_top(self) -> float:
        return self._tops[self._page]

    def token(
        self,
        text: str,
        x0: float,
        top: Optional[float] = None,
        confidence: float = 1.0,
        from_ocr: bool = False,
    ) -> PositionedToken:
        top = self.current_top if top is None else top
        return PositionedToken(
            text=text,
            x0=x0,
            x1=x0 + len(text) * self.CHAR_WIDTH,
            top=top,
            bottom=top + 10.0,
            page=self._page,
            confidence=confidence,
            from_ocr=from_ocr,
        )

    def _words(self, text: str, x0: float, **kwargs) -> List[PositionedToken]:
        tokens = []
        x = x0
        for word in text.split():
            token = self.token(word, x, **kwargs)
            tokens.append(token)
            x = token.x1 + self.WORD_GAP
        return tokens

    def _right_aligned(self, text: str, right: float, **kwargs) -> PositionedToken:
        return self.token(text, right - len(text) * self.CHAR_WIDTH, **kwargs)

    def _advance(self, tokens: List[PositionedToken]) -> "StatementBuilder":
        self._pages[self._page].extend(tokens)
        self._tops[self._page] += self.ROW_HEIGHT
        return self

    def text_line(self, text: str, x0: float = DATE_X) -> "StatementBuilder":
        """A free-text line such as a bank name or account detail."""
        return self._advance(self._words(text, x0))

    def header_row(self) -> "StatementBuilder":
        """Date / Description / Debit / Credit / Balance column headers."""
        return self._advance(
            self._words("Date", self.DATE_X)
            + self._words("Description", self.DESCRIPTION_X)
            + [
                self._right_aligned("Debit", self.DEBIT_RIGHT),
                self._right_aligned("Credit", self.CREDIT_RIGHT),
                self._right_aligned("Balance", self.BALANCE_RIGHT),
            ]
        )

    def row(
        self,
        date: Optional[str],
        description: str,
        debit: Optional[str] = None,
        credit: Optional[str] = None,
        balance: Optional[str] = None,
        confidence: float = 1.0,
        from_ocr: bool = False,
    ) -> "StatementBuilder":
        """A transaction row in the five-column layout."""
        extra = {"confidence": confidence, "from_ocr": from_ocr}
        tokens: List[PositionedToken] = []
        if date:
            tokens.extend(self._words(date, self.DATE_X, **extra))
        tokens.extend(self._words(description, self.DESCRIPTION_X, **extra))
        if debit:
            tokens.append(self._right_aligned(debit, self.DEBIT_RIGHT, **extra))
        if credit:
            tokens.append(self._right_aligned(credit, self.CREDIT_RIGHT, **extra))
        if balance:
            tokens.append(self._right_aligned(balance, self.BALANCE_RIGHT, **extra))
        return self._advance(tokens)

    def continuation(self, text: str) -> "StatementBuilder":
        """A wrapped description line under the previous row."""
        return self._advance(self._words(text, self.DESCRIPTION_X))

    def space(self, points: float) -> "StatementBuilder":
        """Extra vertical whitespace before the next line."""
        self._tops[self._page] += points
        return self

    def new_page(self) -> "StatementBuilder":
        self._page += 1
        self._pages[self._page] = []
        self._tops[self._page] = self.FIRST_TOP
        return self

    def build(self) -> ExtractedDocument:
        return ExtractedDocument(
            file_name=self.file_name,
            pages=[
                PageTokens(page=number, tokens=list(tokens), width=612.0, height=792.0)
                for number, tokens in sorted(self._pages.items())
            ],
        )


def january_statement(file_name: str = "january.pdf") -> StatementBuilder:
    """One balanced month: opening 1,000.00, four rows, closing 1,100.00."""
    return (
        StatementBuilder(file_name)
        .text_line("HDFC Bank")
        .text_line("Account Holder: Jane Doe")
        .text_line("Account Number: 50100123456789")
        .text_line("Statement Period: From 01/01/2025 To 31/01/2025")
        .header_row()
        .row("01/01/2025", "Opening Balance", balance="1,000.00")
        .row("02/01/2025", "Salary ACME Corp", credit="200.00", balance="1,200.00")
        .row("05/01/2025", "ATM Withdrawal", debit="50.00", balance="1,150.00")
        .row("10/01/2025", "Grocery Store", debit="30.00", balance="1,120.00")
        .row("15/01/2025", "Card Payment", debit="20.00", balance="1,100.00")
        .row("31/01/2025", "Closing Balance", balance="1,100.00")
    )


@pytest.fixture
def statement_builder() -> StatementBuilder:
    """Empty statement builder."""
    return StatementBuilder()


@pytest.fixture
def january_builder() -> StatementBuilder:
    """Builder holding the balanced January statement, open for more rows."""
    return january_statement()


@pytest.fixture
def sample_statement() -> ExtractedDocument:
    """A balanced single-page statement."""
    return january_statement().build()
