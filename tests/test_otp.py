"""Tests for the OTP challenge store"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from tempsocial.config import settings
from tempsocial.db.models import OTPChallenge
from tempsocial.errors import DependencyError, ValidationError
from tempsocial.services.otp import OTPService, VerifyStatus, generate_code
from tempsocial.utils.time import utcnow


class FailingNotifier:
    def __init__(self):
        self.calls = 0

    async def send(self, phone_number: str, text: str) -> str | None:
        self.calls += 1
        raise DependencyError("SMS provider is down")


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestIssue:
    @pytest.fixture
    def otp_service(self, test_db, notifier):
        return OTPService(test_db, notifier)

    async def test_issue_sends_code(self, otp_service, notifier):
        challenge = await otp_service.issue("+15550001")

        assert len(challenge.code) == 6
        assert challenge.attempts == 0
        assert not challenge.verified
        assert challenge.expires_at - challenge.created_at == timedelta(minutes=10)
        assert notifier.sent[0][0] == "+15550001"
        assert challenge.code in notifier.sent[0][1]

    async def test_new_challenge_supersedes_previous(self, otp_service, test_db):
        await otp_service.issue("+15550001")
        second = await otp_service.issue("+15550001")

        result = await test_db.execute(
            select(OTPChallenge).where(OTPChallenge.phone_number == "+15550001")
        )
        challenges = result.scalars().all()
        assert [c.id for c in challenges] == [second.id]

    async def test_other_numbers_unaffected(self, otp_service, test_db):
        await otp_service.issue("+15550001")
        await otp_service.issue("+15550009")

        result = await test_db.execute(select(OTPChallenge))
        assert len(result.scalars().all()) == 2

    @pytest.mark.parametrize("phone_number", [None, "", "abc", "+0123", "12345678901234567"])
    async def test_invalid_phone_rejected(self, otp_service, phone_number):
        with pytest.raises(ValidationError):
            await otp_service.issue(phone_number)

    async def test_notifier_failure_tolerated_in_development(self, test_db):
        failing = FailingNotifier()
        challenge = await OTPService(test_db, failing).issue("+15550001")

        assert challenge.id is not None
        assert failing.calls == 2  # one retry

    async def test_notifier_failure_raises_in_production(self, test_db, monkeypatch):
        monkeypatch.setattr(settings, "app_env", "production")
        with pytest.raises(DependencyError):
            await OTPService(test_db, FailingNotifier()).issue("+15550001")

    def test_generated_codes_are_six_digits(self):
        for _ in range(200):
            code = generate_code()
            assert code.isdigit() and len(code) == 6
            assert 100000 <= int(code) <= 999999


class TestVerify:
    @pytest.fixture
    def otp_service(self, test_db, notifier):
        return OTPService(test_db, notifier)

    async def test_two_wrong_then_correct_succeeds(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        bad = wrong_code(challenge.code)

        first = await otp_service.verify("+15550001", bad)
        second = await otp_service.verify("+15550001", bad)
        third = await otp_service.verify("+15550001", challenge.code)

        assert first.status is VerifyStatus.MISMATCH
        assert first.remaining_attempts == 2
        assert second.remaining_attempts == 1
        assert third.success
        assert challenge.attempts == 3
        assert challenge.verified

    async def test_attempts_exhausted_after_three_failures(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        bad = wrong_code(challenge.code)

        for _ in range(3):
            result = await otp_service.verify("+15550001", bad)
            assert result.status is VerifyStatus.MISMATCH

        result = await otp_service.verify("+15550001", challenge.code)
        assert result.status is VerifyStatus.ATTEMPTS_EXHAUSTED
        assert challenge.attempts == 3
        assert not challenge.verified

    async def test_attempt_counter_strictly_increases(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        bad = wrong_code(challenge.code)

        seen = []
        for _ in range(3):
            await otp_service.verify("+15550001", bad)
            seen.append(challenge.attempts)
        assert seen == [1, 2, 3]

    async def test_expired_challenge(self, otp_service, test_db):
        challenge = await otp_service.issue("+15550001")
        challenge.expires_at = utcnow() - timedelta(seconds=1)
        await test_db.commit()

        result = await otp_service.verify("+15550001", challenge.code)
        assert result.status is VerifyStatus.EXPIRED
        assert challenge.attempts == 0

    async def test_superseded_code_no_longer_accepted(self, otp_service):
        old = await otp_service.issue("+15550001")
        new = await otp_service.issue("+15550001")
        if old.code == new.code:
            pytest.skip("codes collided")

        result = await otp_service.verify("+15550001", old.code)
        assert result.status is VerifyStatus.MISMATCH

    async def test_not_found(self, otp_service):
        result = await otp_service.verify("+15550001", "123456")
        assert result.status is VerifyStatus.NOT_FOUND
        assert result.message == "No OTP found for this phone number"

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef"])
    async def test_malformed_code_rejected(self, otp_service, code):
        await otp_service.issue("+15550001")
        with pytest.raises(ValidationError):
            await otp_service.verify("+15550001", code)

    async def test_verified_challenge_cannot_be_reused(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        assert (await otp_service.verify("+15550001", challenge.code)).success

        result = await otp_service.verify("+15550001", challenge.code)
        assert result.status is VerifyStatus.NOT_FOUND

    async def test_claim_verified_is_single_use(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        await otp_service.verify("+15550001", challenge.code)

        assert await otp_service.claim_verified("+15550001", wrong_code(challenge.code)) is False
        assert await otp_service.claim_verified("+15550001", challenge.code) is True
        assert await otp_service.claim_verified("+15550001", challenge.code) is False

    async def test_consume_removes_verified_challenge(self, otp_service):
        challenge = await otp_service.issue("+15550001")
        await otp_service.verify("+15550001", challenge.code)

        assert await otp_service.consume("+15550001") == 1
        assert await otp_service.claim_verified("+15550001", challenge.code) is False
