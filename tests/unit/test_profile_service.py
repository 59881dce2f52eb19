"""Tests unitaires pour profile_service.py (changement d'email par code)."""

import pytest

from app.core.exceptions import EmailAlreadyInUseError, IdentityNotFoundError, InvalidCodeError
from app.services.profile_service import ProfileService, normalize_email
from app.services.verification_service import CodeVerificationEngine

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def profiles(store, audit, delivery, clock) -> ProfileService:
    store.add_identity("U1", email="old@x.com")
    store.add_identity("U2", email="taken@x.com")
    codes = CodeVerificationEngine(store, delivery, audit=audit, clock=clock)
    return ProfileService(store, audit, codes)


def test_normalize_email():
    assert normalize_email("  A@X.Com ") == "a@x.com"


class TestEmailChange:
    """Tests pour ProfileService."""

    @pytest.mark.asyncio
    async def test_request_sends_code_to_new_address(self, store, delivery, profiles):
        await profiles.request_email_change("U1", "New@X.com")

        address, _ = delivery.sent[0]
        assert address == "new@x.com"
        assert store.codes.codes[0].target_value == "new@x.com"
        assert store.identities.identities["U1"].email == "old@x.com"

    @pytest.mark.asyncio
    async def test_request_rejects_address_of_another_identity(self, store, profiles):
        with pytest.raises(EmailAlreadyInUseError):
            await profiles.request_email_change("U1", "taken@x.com")
        assert store.codes.codes == []

    @pytest.mark.asyncio
    async def test_request_for_unknown_identity(self, profiles):
        with pytest.raises(IdentityNotFoundError):
            await profiles.request_email_change("ghost", "new@x.com")

    @pytest.mark.asyncio
    async def test_confirm_updates_email_after_valid_code(self, store, delivery, profiles):
        """L'email n'est remplacé qu'après un code valide, avec un audit."""
        await profiles.request_email_change("U1", "new@x.com")

        identity = await profiles.confirm_email_change("U1", "new@x.com", delivery.last_code)

        assert identity.email == "new@x.com"
        entry = store.audit.entries[-1]
        assert entry.action == "EMAIL_UPDATED"
        assert entry.details == {"previousEmail": "old@x.com", "newEmail": "new@x.com"}

    @pytest.mark.asyncio
    async def test_confirm_with_wrong_code_keeps_email(self, store, delivery, profiles):
        await profiles.request_email_change("U1", "new@x.com")
        wrong = "111111" if delivery.last_code != "111111" else "222222"

        with pytest.raises(InvalidCodeError):
            await profiles.confirm_email_change("U1", "new@x.com", wrong)

        assert store.identities.identities["U1"].email == "old@x.com"

    @pytest.mark.asyncio
    async def test_confirm_fails_if_address_taken_meanwhile(self, store, delivery, profiles):
        """Adresse prise entre l'émission et la confirmation: conflit."""
        await profiles.request_email_change("U1", "new@x.com")
        store.identities.identities["U2"].email = "new@x.com"

        with pytest.raises(EmailAlreadyInUseError):
            await profiles.confirm_email_change("U1", "new@x.com", delivery.last_code)

        assert store.identities.identities["U1"].email == "old@x.com"
