"""Tests unitaires pour la traduction des erreurs métier en RFC 9457."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1.errors import consent_core_error_handler, to_problem
from app.core.exceptions import (
    BulkValidationError,
    CodeDeliveryError,
    ConsentConflictError,
    ConsentCoreError,
    ConsentNotFoundError,
    ConsentStateError,
    EmailAlreadyInUseError,
    IdentityNotFoundError,
    InvalidCodeError,
    InvalidStatusError,
    StorageError,
    TooManyAttemptsError,
)


class TestToProblem:
    """Tests pour to_problem."""

    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (IdentityNotFoundError("U1"), 404),
            (ConsentNotFoundError("c1"), 404),
            (InvalidStatusError("banned", ["active"]), 400),
            (BulkValidationError("1 identity id(s) not found", ["U9"]), 400),
            (InvalidCodeError(), 400),
            (ConsentStateError("c1", "REVOKED", "grant"), 409),
            (ConsentConflictError("c1", "ACTIVE"), 409),
            (EmailAlreadyInUseError(), 409),
            (TooManyAttemptsError(5, 10), 429),
            (CodeDeliveryError("email"), 502),
            (StorageError("connection reset"), 503),
            (ConsentCoreError("unexpected"), 500),
        ],
    )
    def test_status_codes(self, exc, status_code):
        assert to_problem(exc, "/api/v1/x").status_code == status_code

    def test_not_found_carries_resource(self):
        problem = to_problem(IdentityNotFoundError("U1"), "/api/v1/admin/users/U1")
        assert problem.problem_detail.instance == "/api/v1/admin/users/U1"
        assert "U1" in problem.problem_detail.detail

    def test_storage_detail_is_not_leaked(self):
        """Le détail technique de stockage n'est pas renvoyé au client."""
        problem = to_problem(StorageError("duplicate key value violates unique constraint"))
        assert "duplicate key" not in problem.problem_detail.detail


class TestHandler:
    """Tests pour consent_core_error_handler."""

    def test_handler_returns_problem_json(self):
        app = FastAPI()
        app.add_exception_handler(ConsentCoreError, consent_core_error_handler)

        @app.get("/consents/{consent_id}")
        async def endpoint(consent_id: str):
            raise ConsentNotFoundError(consent_id)

        response = TestClient(app).get("/consents/c42")

        assert response.status_code == 404
        assert response.headers["content-type"].startswith("application/problem+json")
        assert "c42" in response.text
