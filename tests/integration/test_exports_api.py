"""
Integration tests for export validation endpoint.
"""
import pytest
from fastapi.testclient import TestClient

SOURCE = [
    {"date": "2025-01-02", "description": "Salary ACME Corp", "credit": "200.00", "balance": "1200.00"},
    {"date": "2025-01-05", "description": "ATM Withdrawal", "debit": "50.00", "balance": "1150.00"},
    {"date": "2025-01-10", "description": "Grocery Store", "debit": "30.00", "balance": "1120.00"},
]


class TestValidateExport:
    """Tests for POST /api/v1/exports/validate."""

    @pytest.fixture
    def url(self) -> str:
        return "/api/v1/exports/validate"

    def test_complete_export(self, client: TestClient, url):
        """Test an identical export passes."""
        response = client.post(url, json={"source": SOURCE, "exported_rows": SOURCE, "pdf_pages": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["verdict"] == "EXPORT_COMPLETE"
        assert data["confidence_score"] == 1.0
        assert data["blocked"] is False
        assert data["block_reasons"] == []
        assert data["export_validation"]["pdf_pages"] == 1
        assert data["summary"].endswith("EXPORT_COMPLETE")

    def test_missing_row_blocks_export(self, client: TestClient, url):
        """Test a dropped row is reported and blocks the export."""
        response = client.post(url, json={"source": SOURCE, "exported_rows": SOURCE[:2]})

        data = response.json()
        assert data["verdict"] == "EXPORT_INCOMPLETE"
        assert data["blocked"] is True
        assert "1 transaction(s) missing from export" in data["block_reasons"]
        assert data["missing_transactions"][0]["description"] == "Grocery Store"
        assert data["missing_transactions"][0]["amount"] == -30.0

    def test_enforced_block_is_conflict(self, client: TestClient, url):
        """Test enforce mode refuses a blocked export."""
        response = client.post(url, params={"enforce": "true"}, json={"source": SOURCE, "exported_rows": SOURCE[:2]})

        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "LDG-500"
        assert "1 transaction(s) missing from export" in data["details"]["reasons"]

    def test_enforce_passes_clean_export(self, client: TestClient, url):
        response = client.post(url, params={"enforce": "true"}, json={"source": SOURCE, "exported_rows": SOURCE})

        assert response.status_code == 200

    def test_column_shift_reported(self, client: TestClient, url):
        exported = [dict(row) for row in SOURCE]
        exported[1] = {"date": "2025-01-05", "description": "ATM Withdrawal", "credit": "50.00", "balance": "1150.00"}

        data = client.post(url, json={"source": SOURCE, "exported_rows": exported}).json()

        assert data["corrupted_transactions"][0]["corruption_type"] == "column_shift"
        assert data["export_validation"]["corrupted_rows"] == 1

    def test_both_sides_rejected(self, client: TestClient, url):
        """Test a source row with debit and credit is invalid input."""
        bad = [{"date": "2025-01-02", "description": "Odd", "debit": "1.00", "credit": "2.00"}]

        response = client.post(url, json={"source": bad, "exported_rows": []})

        assert response.status_code == 422

    def test_negative_amount_rejected(self, client: TestClient, url):
        bad = [{"date": "2025-01-02", "description": "Odd", "debit": "-1.00"}]

        response = client.post(url, json={"source": [], "exported_rows": bad})

        assert response.status_code == 422
