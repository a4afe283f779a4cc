"""Tests for idempotency key resolution and checkout input helpers."""

import uuid

import pytest

from ledger.errors import ValidationError
from ledger.services.checkout_service import (
    replacement_session_key,
    validate_idempotency_key,
    validate_items,
)
from ledger.services.idempotency import MAX_KEY_LENGTH, resolve_idempotency_key


class TestResolveIdempotencyKey:

    def test_supplied_key_passes_through(self):
        assert resolve_idempotency_key("client-key") == "client-key"

    @pytest.mark.parametrize("supplied", [None, ""])
    def test_absent_key_generates_uuid4(self, supplied):
        key = resolve_idempotency_key(supplied)
        assert uuid.UUID(key).version == 4

    def test_generated_keys_are_unique(self):
        keys = {resolve_idempotency_key() for _ in range(1000)}
        assert len(keys) == 1000


class TestValidateIdempotencyKey:

    @pytest.mark.parametrize("key", [None, "", "k", "k" * MAX_KEY_LENGTH])
    def test_accepted(self, key):
        validate_idempotency_key(key)

    @pytest.mark.parametrize("key", [123, ["k"], {"k": 1}, "k" * (MAX_KEY_LENGTH + 1)])
    def test_rejected(self, key):
        with pytest.raises(ValidationError):
            validate_idempotency_key(key)


class TestValidateItems:

    def test_normalizes_snapshot(self):
        snapshot = validate_items([
            {"id": "p1", "name": "Widget", "price": 500, "quantity": 2, "extra": "dropped"},
            {"id": "p2", "price": 0, "quantity": 1},
        ])
        assert snapshot == [
            {"id": "p1", "name": "Widget", "price": 500, "quantity": 2},
            {"id": "p2", "name": "p2", "price": 0, "quantity": 1},
        ]

    def test_too_many_items(self):
        items = [{"id": f"p{i}", "price": 1, "quantity": 1} for i in range(101)]
        with pytest.raises(ValidationError):
            validate_items(items)

    @pytest.mark.parametrize("item", [
        "p1",
        {"id": "   ", "price": 1, "quantity": 1},
        {"id": 7, "price": 1, "quantity": 1},
        {"id": "p1", "price": 1, "quantity": -3},
        {"id": "p1", "price": 1, "quantity": "2"},
        {"id": "p1", "price": True, "quantity": 1},
        {"id": "p1", "price": 1, "quantity": 1, "name": 42},
    ])
    def test_rejected_item(self, item):
        with pytest.raises(ValidationError):
            validate_items([item])


class TestReplacementSessionKey:

    def test_derived_from_key_and_stale_session(self):
        assert replacement_session_key("key-1", "cs_test_old") == "key-1:cs_test_old"

    def test_differs_per_stale_session(self):
        assert replacement_session_key("k", "cs_a") != replacement_session_key("k", "cs_b")

    def test_long_keys_are_hashed_to_fit(self):
        derived = replacement_session_key("k" * MAX_KEY_LENGTH, "cs_test_old")
        assert len(derived) == 64
        assert derived == replacement_session_key("k" * MAX_KEY_LENGTH, "cs_test_old")
