"""Tests for signup/login and bearer token handling."""
from __future__ import annotations

import pytest

from src.auth import _verify, create_tokens, hash_password, verify_password


def test_password_hash_round_trip():
    stored = hash_password("hunter22")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)


def test_tokens_verify():
    tokens = create_tokens("user-1")
    payload = _verify(tokens["access_token"])
    assert payload["sub"] == "user-1"
    assert payload["type"] == "access"
    assert _verify(tokens["access_token"] + "x") is None


@pytest.mark.asyncio
async def test_signup_and_login(client):
    resp = await client.post("/api/v1/auth/signup", json={"email": "Maker@Example.com", "password": "s3cret!"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["email"] == "maker@example.com"
    assert data["user"]["subscription_status"] == "free"
    assert data["user"]["trial_used"] is False

    resp = await client.post("/api/v1/auth/login", json={"email": "maker@example.com", "password": "s3cret!"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    resp = await client.get("/api/v1/subscriptions/my-subscription", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_duplicate_signup(client):
    body = {"email": "dup@example.com", "password": "x"}
    await client.post("/api/v1/auth/signup", json=body)
    resp = await client.post("/api/v1/auth/signup", json=body)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_bad_login(client):
    resp = await client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": "x"})
    assert resp.status_code == 401
