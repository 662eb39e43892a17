"""
Pydantic schemas for export validation endpoints.
"""
import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ledgerline.pipeline.models import ExportedRow, ParsedTransaction


class LedgerRow(BaseModel):
    """A ledger row as sent by the client."""

    date: Optional[dt.date] = Field(None, description="Transaction date (ISO 8601)")
    description: str = Field("", description="Transaction description")
    debit: Optional[Decimal] = Field(None, ge=0, description="Money out")
    credit: Optional[Decimal] = Field(None, ge=0, description="Money in")
    balance: Optional[Decimal] = Field(None, description="Running balance")


class SourceTransaction(LedgerRow):
    """A transaction from a processed statement."""

    @model_validator(mode="after")
    def check_single_side(self) -> "SourceTransaction":
        if self.debit is not None and self.credit is not None:
            raise ValueError("A transaction cannot carry both debit and credit")
        return self

    def to_transaction(self, row_index: int) -> ParsedTransaction:
        return ParsedTransaction(
            date=self.date,
            description=self.description,
            debit=self.debit,
            credit=self.credit,
            balance=self.balance,
            row_index=row_index,
        )


class ExportValidationRequest(BaseModel):
    """Request body for export validation."""

    source: List[SourceTransaction] = Field(..., description="Transactions extracted from the PDF")
    exported_rows: List[LedgerRow] = Field(..., description="Rows read back from the export file")
    pdf_pages: int = Field(0, ge=0, description="Page count of the source PDF")

    def source_transactions(self) -> List[ParsedTransaction]:
        return [row.to_transaction(index) for index, row in enumerate(self.source)]

    def exported(self) -> List[ExportedRow]:
        return [
            ExportedRow(
                date=row.date,
                description=row.description,
                debit=row.debit,
                credit=row.credit,
                balance=row.balance,
            )
            for row in self.exported_rows
        ]
