from datetime import timedelta

import pytest
from jose import jwt

from studyplanner import auth, config, models
from studyplanner.utils import utcnow

from conftest import WEB, bearer, login, signup


def test_signup_creates_user_with_hashed_password(client, db):
    resp = signup(client, "a@b.com", "pw1")
    assert resp.status_code == 201
    assert resp.json() == {"message": "User created"}

    user = db.query(models.User).filter_by(email="a@b.com").one()
    assert user.hashed_password != "pw1"
    assert auth.verify_password("pw1", user.hashed_password)


def test_signup_twice_conflicts(client):
    assert signup(client, "a@b.com", "pw1").status_code == 201
    resp = signup(client, "a@b.com", "something-else")
    assert resp.status_code == 409


def test_signup_rejects_bad_email_and_blank_password(client):
    assert signup(client, "not-an-email", "pw1").status_code == 400
    assert signup(client, "", "pw1").status_code == 400
    assert client.post("/auth/signup", json={"password": "pw1"}).status_code == 400
    assert signup(client, "a@b.com", "   ").status_code == 400
    assert client.post("/auth/signup", json={"email": "a@b.com"}).status_code == 400


def test_signup_does_not_log_in(client):
    resp = signup(client)
    assert "accessToken" not in resp.json()
    assert "set-cookie" not in resp.headers


def test_login_body_channel_returns_both_tokens(client):
    signup(client)
    resp = login(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["accessToken"] and body["refreshToken"]
    assert body["user"]["email"] == "a@b.com"
    assert "set-cookie" not in resp.headers


def test_login_web_channel_sets_cookie(client):
    signup(client)
    resp = login(client, headers=WEB)
    assert resp.status_code == 200
    body = resp.json()
    assert "refreshToken" not in body
    assert body["accessToken"]

    cookie = resp.headers["set-cookie"]
    assert cookie.startswith("refreshToken=")
    assert "HttpOnly" in cookie
    assert "SameSite=strict" in cookie or "SameSite=Strict" in cookie
    assert f"Max-Age={30 * 24 * 60 * 60}" in cookie
    assert "Secure" not in cookie


def test_web_cookie_is_secure_in_production(client, monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    signup(client)
    resp = login(client, headers=WEB)
    assert resp.status_code == 200
    assert "Secure" in resp.headers["set-cookie"]

    resp = client.post("/auth/logout", headers=WEB)
    assert "Secure" in resp.headers["set-cookie"]


def test_login_failures_are_uniform(client):
    signup(client)
    unknown = login(client, "nobody@b.com", "pw1")
    wrong = login(client, "a@b.com", "wrong")
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {"detail": "Invalid credentials"}


def test_login_persists_refresh_token(client, db):
    signup(client)
    tokens = login(client).json()
    assert db.query(models.RefreshToken).filter_by(token=tokens["refreshToken"]).count() == 1


def test_multiple_sessions_per_user(client, db):
    signup(client)
    first = login(client).json()
    second = login(client).json()
    assert first["refreshToken"] != second["refreshToken"]
    assert db.query(models.RefreshToken).count() == 2


def test_userdata_with_access_token(client, user_tokens):
    resp = client.get("/auth/userdata", headers=bearer(user_tokens["accessToken"]))
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "a@b.com"


def test_userdata_rejects_missing_and_bad_tokens(client, user_tokens):
    assert client.get("/auth/userdata").status_code == 401
    assert client.get("/auth/userdata", headers=bearer("garbage")).status_code == 401
    # refresh tokens are signed with a different secret
    assert client.get("/auth/userdata", headers=bearer(user_tokens["refreshToken"])).status_code == 401


def test_expired_access_token_is_rejected(client, user_tokens):
    expired = auth.create_access_token(user_tokens["user"]["id"], expires_delta=timedelta(seconds=-5))
    assert client.get("/auth/userdata", headers=bearer(expired)).status_code == 401


def test_refresh_rotates_and_blocks_replay(client, user_tokens):
    old = user_tokens["refreshToken"]
    resp = client.post("/auth/refresh", json={"refreshToken": old})
    assert resp.status_code == 200
    new = resp.json()
    assert new["accessToken"] and new["refreshToken"]
    assert new["refreshToken"] != old

    replay = client.post("/auth/refresh", json={"refreshToken": old})
    assert replay.status_code == 403

    again = client.post("/auth/refresh", json={"refreshToken": new["refreshToken"]})
    assert again.status_code == 200


def test_refresh_without_token_is_unauthenticated(client):
    assert client.post("/auth/refresh", json={}).status_code == 401
    assert client.post("/auth/refresh").status_code == 401


def test_refresh_with_unknown_token_is_forbidden(client, user_tokens):
    forged = auth.create_refresh_token(user_tokens["user"]["id"])
    assert client.post("/auth/refresh", json={"refreshToken": forged}).status_code == 403
    assert client.post("/auth/refresh", json={"refreshToken": "junk"}).status_code == 403


def test_refresh_with_expired_stored_token_is_forbidden(client, db, user_tokens):
    user_id = user_tokens["user"]["id"]
    expired = jwt.encode(
        {"sub": str(user_id), "type": "refresh", "jti": "x", "exp": utcnow() - timedelta(days=1)},
        config.REFRESH_TOKEN_SECRET,
        algorithm=config.JWT_ALGORITHM,
    )
    db.add(models.RefreshToken(user_id=user_id, token=expired))
    db.commit()
    assert client.post("/auth/refresh", json={"refreshToken": expired}).status_code == 403


def test_web_refresh_uses_cookie(client):
    signup(client)
    login(client, headers=WEB)
    old_cookie = client.cookies.get("refreshToken")
    assert old_cookie

    resp = client.post("/auth/refresh", headers=WEB)
    assert resp.status_code == 200
    assert list(resp.json()) == ["accessToken"]
    assert client.cookies.get("refreshToken") != old_cookie

    # the old cookie value cannot be redeemed through the body channel either
    assert client.post("/auth/refresh", json={"refreshToken": old_cookie}).status_code == 403


def test_logout_revokes_body_token(client, db, user_tokens):
    resp = client.post("/auth/logout", json={"refreshToken": user_tokens["refreshToken"]})
    assert resp.status_code == 204
    assert db.query(models.RefreshToken).count() == 0
    assert client.post("/auth/refresh", json={"refreshToken": user_tokens["refreshToken"]}).status_code == 403


def test_logout_is_always_no_content(client):
    assert client.post("/auth/logout").status_code == 204
    assert client.post("/auth/logout", json={"refreshToken": "never-issued"}).status_code == 204


def test_logout_web_clears_cookie(client, db):
    signup(client)
    login(client, headers=WEB)
    resp = client.post("/auth/logout", headers=WEB)
    assert resp.status_code == 204
    assert "refreshToken=" in resp.headers["set-cookie"]
    assert db.query(models.RefreshToken).count() == 0


def test_change_password(client, user_tokens):
    headers = bearer(user_tokens["accessToken"])
    resp = client.post(
        "/auth/change-password",
        json={"currentPassword": "pw1", "newPassword": "pw2"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert login(client, "a@b.com", "pw1").status_code == 401
    assert login(client, "a@b.com", "pw2").status_code == 200


def test_change_password_failures(client, db, user_tokens):
    headers = bearer(user_tokens["accessToken"])
    body = {"currentPassword": "pw1", "newPassword": "pw2"}
    assert client.post("/auth/change-password", json=body).status_code == 401

    wrong = {"currentPassword": "nope", "newPassword": "pw2"}
    assert client.post("/auth/change-password", json=wrong, headers=headers).status_code == 401

    blank = {"currentPassword": "pw1", "newPassword": "  "}
    assert client.post("/auth/change-password", json=blank, headers=headers).status_code == 400

    db.query(models.RefreshToken).delete()
    db.query(models.User).delete()
    db.commit()
    assert client.post("/auth/change-password", json=body, headers=headers).status_code == 404


def test_end_to_end_session(client):
    assert signup(client, "a@b.com", "pw1").status_code == 201
    tokens = login(client, "a@b.com", "pw1").json()

    me = client.get("/auth/userdata", headers=bearer(tokens["accessToken"]))
    assert me.json()["user"]["email"] == "a@b.com"

    rotated = client.post("/auth/refresh", json={"refreshToken": tokens["refreshToken"]}).json()
    assert client.post("/auth/refresh", json={"refreshToken": tokens["refreshToken"]}).status_code == 403

    assert client.post("/auth/logout", json={"refreshToken": rotated["refreshToken"]}).status_code == 204
    for token in (tokens["refreshToken"], rotated["refreshToken"]):
        assert client.post("/auth/refresh", json={"refreshToken": token}).status_code == 403


def test_rotate_refresh_token_is_single_use(db):
    user = models.User(email="x@y.com", hashed_password=auth.get_password_hash("pw"))
    db.add(user)
    db.commit()
    _, refresh = auth.issue_token_pair(db, user.id)

    auth.rotate_refresh_token(db, refresh)
    with pytest.raises(auth.TokenRejected):
        auth.rotate_refresh_token(db, refresh)
