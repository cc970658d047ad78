"""Tests for the OTP login and session endpoints"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from tempsocial.services.relay import SESSION_ENDED_CLOSE_CODE


async def send_otp(client: AsyncClient, phone_number: str) -> str:
    response = await client.post("/api/auth/send-otp", json={"phoneNumber": phone_number})
    assert response.status_code == 200
    return response.json()["otp"]


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestSendOTP:
    async def test_send_otp(self, client: AsyncClient, notifier):
        response = await client.post("/api/auth/send-otp", json={"phoneNumber": "+15550001"})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "OTP sent successfully"
        assert "expiresAt" in data
        assert len(data["otp"]) == 6  # echoed in development
        assert notifier.sent[-1][0] == "+15550001"

    @pytest.mark.parametrize("body,error", [
        ({}, "Phone number is required"),
        ({"phoneNumber": "hello"}, "Invalid phone number format"),
    ])
    async def test_send_otp_validation(self, client: AsyncClient, body, error):
        response = await client.post("/api/auth/send-otp", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": error}


class TestVerifyOTP:
    async def test_new_user_needs_username_then_registers(self, client: AsyncClient):
        code = await send_otp(client, "+15550002")

        response = await client.post(
            "/api/auth/verify-otp", json={"phoneNumber": "+15550002", "otp": code}
        )
        assert response.status_code == 400
        assert response.json() == {
            "error": "Username is required for new users",
            "newUserRequired": True,
        }

        response = await client.post(
            "/api/auth/verify-otp",
            json={"phoneNumber": "+15550002", "otp": code, "username": "alice"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Login successful"
        assert data["token"]
        assert data["user"]["username"] == "alice"
        assert data["user"]["sessionTimeRemaining"]["hours"] == 4
        assert data["user"]["sessionTimeRemaining"]["expired"] is False
        assert data["user"]["followersCount"] == 0

    async def test_two_wrong_codes_then_correct(self, client: AsyncClient, make_user):
        await make_user("existing", "+15550001")
        code = await send_otp(client, "+15550001")
        body = {"phoneNumber": "+15550001", "otp": wrong_code(code)}

        first = await client.post("/api/auth/verify-otp", json=body)
        second = await client.post("/api/auth/verify-otp", json=body)
        third = await client.post("/api/auth/verify-otp", json={**body, "otp": code})

        assert first.json() == {"error": "Invalid OTP. 2 attempts remaining"}
        assert second.json() == {"error": "Invalid OTP. 1 attempts remaining"}
        assert third.status_code == 200

    async def test_exhausted_challenge(self, client: AsyncClient):
        code = await send_otp(client, "+15550001")
        body = {"phoneNumber": "+15550001", "otp": wrong_code(code)}
        for _ in range(3):
            await client.post("/api/auth/verify-otp", json=body)

        response = await client.post("/api/auth/verify-otp", json={**body, "otp": code})

        assert response.status_code == 400
        assert response.json() == {"error": "Maximum attempts exceeded"}

    async def test_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/auth/verify-otp", json={"phoneNumber": "+15550001"})

        assert response.status_code == 400
        assert response.json()["error"] == "Phone number and OTP are required"

    async def test_username_taken(self, client: AsyncClient, make_user):
        await make_user("alice", "+15550009")
        code = await send_otp(client, "+15550002")

        response = await client.post(
            "/api/auth/verify-otp",
            json={"phoneNumber": "+15550002", "otp": code, "username": "alice"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Username already taken"}

    async def test_used_code_cannot_log_in_again(self, client: AsyncClient, make_user):
        await make_user("alice", "+15550002")
        code = await send_otp(client, "+15550002")
        body = {"phoneNumber": "+15550002", "otp": code}

        first = await client.post("/api/auth/verify-otp", json=body)
        assert first.status_code == 200

        replay = await client.post("/api/auth/verify-otp", json={**body, "username": "whatever"})
        assert replay.status_code == 400
        assert "token" not in replay.json()

        replay = await client.post("/api/auth/verify-otp", json=body)
        assert replay.status_code == 400

    async def test_registration_code_is_single_use(self, client: AsyncClient):
        code = await send_otp(client, "+15550002")
        body = {"phoneNumber": "+15550002", "otp": code}

        needs_username = await client.post("/api/auth/verify-otp", json=body)
        assert needs_username.json()["newUserRequired"] is True

        registered = await client.post("/api/auth/verify-otp", json={**body, "username": "alice"})
        assert registered.status_code == 200

        replay = await client.post("/api/auth/verify-otp", json={**body, "username": "alice2"})
        assert replay.status_code == 400
        assert replay.json() == {"error": "No OTP found for this phone number"}

    async def test_existing_user_session_reset(self, client: AsyncClient, make_user):
        await make_user("alice", "+15550002", session_left=timedelta(minutes=5))
        code = await send_otp(client, "+15550002")

        response = await client.post(
            "/api/auth/verify-otp", json={"phoneNumber": "+15550002", "otp": code}
        )

        assert response.status_code == 200
        assert response.json()["user"]["sessionTimeRemaining"]["hours"] == 4


class TestSessionEndpoints:
    async def test_me(self, client: AsyncClient, make_user, auth_headers):
        alice = await make_user("alice", "+15550002", upi_id="alice@upi")

        response = await client.get("/api/auth/me", headers=auth_headers(alice))

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["id"] == str(alice.id)
        assert user["upiId"] == "alice@upi"
        assert set(user["socialLinks"]) == {"instagram", "discord", "reddit", "snapchat", "twitter"}
        assert "sessionEndTime" in user

    async def test_me_requires_token(self, client: AsyncClient):
        response = await client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json() == {"error": "Access token required"}

    async def test_expired_session_rejected(self, client: AsyncClient, make_user, auth_headers):
        alice = await make_user("alice", "+15550002", session_left=timedelta(seconds=-1))

        response = await client.get("/api/auth/me", headers=auth_headers(alice))

        assert response.status_code == 401
        assert response.json() == {"error": "Session expired"}

    async def test_extend_session(self, client: AsyncClient, make_user, auth_headers):
        alice = await make_user("alice", "+15550002", session_left=timedelta(minutes=15))

        response = await client.post("/api/auth/extend-session", headers=auth_headers(alice))

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Session extended successfully"
        assert data["sessionTimeRemaining"]["hours"] == 4
        assert data["token"]

    async def test_logout_invalidates_token(self, client: AsyncClient, make_user, auth_headers):
        alice = await make_user("alice", "+15550002")
        headers = auth_headers(alice)

        response = await client.post("/api/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"message": "Logged out successfully"}

        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 401

    async def test_token_of_purged_identity(self, client: AsyncClient, make_user, auth_headers, test_db):
        alice = await make_user("alice", "+15550002")
        headers = auth_headers(alice)
        await test_db.delete(alice)
        await test_db.commit()

        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 401

    async def test_logout_drops_relay_connection(
        self, client: AsyncClient, make_user, auth_headers, relay, presence, connection_factory
    ):
        alice = await make_user("alice", "+15550002")
        connection = connection_factory(authenticated_id=alice.id)
        await relay.join(connection, str(alice.id))

        response = await client.post("/api/auth/logout", headers=auth_headers(alice))

        assert response.status_code == 200
        assert connection.events("sessionExpired") == [{"message": "You have been logged out"}]
        assert connection.close_code == SESSION_ENDED_CLOSE_CODE
        assert not presence.is_present(alice.id)
