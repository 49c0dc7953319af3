"""
Wallet Authentication Flow Tests

Tests the Solana sign-in flow end to end:
- Challenge issuance
- Signature verification
- Token refresh and rotation
- Logout and session revocation
"""

import time

import pytest

from sim import db_storage


def request_challenge(client, wallet_key, **extra):
    payload = {"publicKey": wallet_key.address}
    payload.update(extra)
    return client.post("/api/auth/challenge", json=payload)


def submit_signature(client, wallet_key, message, signature=None):
    return client.post(
        "/api/auth/solana",
        json={
            "publicKey": wallet_key.address,
            "signature": signature if signature is not None else wallet_key.sign(message),
            "message": message,
        },
    )


class TestChallenge:
    """Test challenge issuance."""

    def test_challenge_issued(self, client, wallet):
        response = request_challenge(client, wallet, redirect="/advisors/ada")

        assert response.status_code == 200
        data = response.get_json()
        assert wallet.address in data["message"]
        assert data["nonce"] in data["message"]
        assert data["expiresAt"] > time.time()
        assert set(data["deepLinks"]) == {"phantom", "solflare"}
        assert "phantom.app" in data["deepLinks"]["phantom"]

    def test_challenge_stored_for_wallet(self, client, wallet):
        data = request_challenge(client, wallet).get_json()

        stored = db_storage.get_wallet_challenge(wallet.address)
        assert stored["message"] == data["message"]
        assert stored["nonce"] == data["nonce"]

    @pytest.mark.parametrize("public_key", ["", "not-a-wallet", "0OIl" * 10])
    def test_invalid_public_key(self, client, public_key):
        response = client.post("/api/auth/challenge", json={"publicKey": public_key})

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_public_key"


class TestSolanaSignIn:
    """Test signature verification and session issuance."""

    def test_sign_in_success(self, client, wallet):
        message = request_challenge(client, wallet).get_json()["message"]

        response = submit_signature(client, wallet, message)

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        session = data["session"]
        assert session["token_type"] == "Bearer"
        assert session["access_token"]
        assert session["refresh_token"]
        assert session["expires_in"] > 0
        assert session["user"]["wallet_address"] == wallet.address
        assert session["user"]["plan"] == "free"

    def test_sign_in_reuses_profile(self, login, wallet):
        _, first = login(wallet)
        _, second = login(wallet)

        assert first["user"]["id"] == second["user"]["id"]

    def test_username_is_abbreviated_address(self, auth_session, wallet):
        username = auth_session["user"]["username"]

        assert username.startswith(wallet.address[:4])
        assert username.endswith(wallet.address[-4:])

    def test_missing_fields(self, client, wallet):
        response = client.post("/api/auth/solana", json={"publicKey": wallet.address})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Missing required fields"

    def test_unknown_challenge(self, client, wallet):
        response = submit_signature(client, wallet, "a message nobody issued")

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_challenge"

    def test_signature_from_other_wallet(self, client, wallet, other_wallet):
        message = request_challenge(client, wallet).get_json()["message"]

        response = submit_signature(client, wallet, message, signature=other_wallet.sign(message))

        assert response.status_code == 401
        assert response.get_json()["message"] == "Invalid signature"

    def test_malformed_signature(self, client, wallet):
        message = request_challenge(client, wallet).get_json()["message"]

        response = submit_signature(client, wallet, message, signature="not-base58-0OIl")

        assert response.status_code == 400

    def test_challenge_is_single_use(self, client, wallet):
        message = request_challenge(client, wallet).get_json()["message"]
        assert submit_signature(client, wallet, message).status_code == 200

        replay = submit_signature(client, wallet, message)

        assert replay.status_code == 400
        assert replay.get_json()["error"] == "invalid_challenge"

    def test_expired_challenge(self, client, wallet):
        challenge = request_challenge(client, wallet).get_json()
        db_storage.store_wallet_challenge(
            wallet.address,
            {"message": challenge["message"], "nonce": challenge["nonce"], "expires_at": int(time.time()) - 1},
            300,
        )

        response = submit_signature(client, wallet, challenge["message"])

        assert response.status_code == 400
        assert response.get_json()["message"] == "Challenge expired"
        assert db_storage.get_wallet_challenge(wallet.address) is None


class TestSessionLifecycle:
    """Test /me, refresh and logout."""

    def test_me_with_bearer_token(self, app, auth_session, wallet):
        fresh_client = app.test_client()
        headers = {"Authorization": f"Bearer {auth_session['access_token']}"}

        response = fresh_client.get("/api/auth/me", headers=headers)

        assert response.status_code == 200
        assert response.get_json()["user"]["wallet_address"] == wallet.address

    def test_me_with_cookie_session(self, client, auth_session):
        response = client.get("/api/auth/me")

        assert response.status_code == 200
        assert response.get_json()["user"]["id"] == auth_session["user"]["id"]

    def test_me_requires_auth(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthorized"

    def test_me_rejects_garbage_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})

        assert response.status_code == 401
        assert response.get_json()["error"] == "invalid_token"

    def test_refresh_rotates_token(self, client, auth_session):
        response = client.post("/api/auth/refresh", json={"refresh_token": auth_session["refresh_token"]})

        assert response.status_code == 200
        rotated = response.get_json()["session"]
        assert rotated["refresh_token"] != auth_session["refresh_token"]
        assert rotated["user"]["id"] == auth_session["user"]["id"]

        reused = client.post("/api/auth/refresh", json={"refresh_token": auth_session["refresh_token"]})
        assert reused.status_code == 401

    def test_refresh_requires_token(self, client):
        response = client.post("/api/auth/refresh", json={})

        assert response.status_code == 400

    def test_logout_clears_session_and_revokes_token(self, app, client, auth_session):
        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["cleared"] == ["auth_session_id", "profile_id", "wallet_address"]

        assert client.get("/api/auth/me").status_code == 401

        headers = {"Authorization": f"Bearer {auth_session['access_token']}"}
        revoked = app.test_client().get("/api/auth/me", headers=headers)
        assert revoked.status_code == 401
        assert revoked.get_json()["error"] == "invalid_token"

    def test_logout_clears_cached_payment_sessions(self, client, auth_session, paid_advisor):
        advisor, _ = paid_advisor
        created = client.post(
            "/api/payments/sessions",
            json={
                "sessionId": "x402_logout_session_01",
                "walletAddress": "0x8ba1f109551bD432803012645Ac136ddd64DBA72",
                "signature": "4" * 88,
                "amount": 5,
                "agentId": advisor["id"],
            },
        )
        assert created.status_code == 201

        response = client.post("/api/auth/logout")

        assert "x402_sessions" in response.get_json()["cleared"]

        conversation = client.post(f"/api/advisors/{advisor['id']}/conversations").get_json()["conversation"]
        message = client.post(f"/api/conversations/{conversation['id']}/messages", json={"content": "Hello"})
        assert message.status_code == 402

    def test_logout_with_bearer_only(self, app, auth_session):
        headers = {"Authorization": f"Bearer {auth_session['access_token']}"}
        fresh_client = app.test_client()

        response = fresh_client.post("/api/auth/logout", headers=headers)

        assert response.status_code == 200
        assert response.get_json()["cleared"] == []
        assert fresh_client.get("/api/auth/me", headers=headers).status_code == 401

    def test_logout_without_session(self, client):
        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.get_json()["cleared"] == []
