"""Tests for settlement idempotency keys."""

from uuid import UUID

import pytest

from split_kernel.utils.idempotency import generate_settlement_key, parse_settlement_key


class TestSettlementKeys:
    def test_format(self):
        key = generate_settlement_key("settle_own_debt", "exp-1", "bob", "req-9")
        assert key == "settle_own_debt:exp-1:bob:req-9"

    def test_uuid_parts(self):
        request = UUID("12345678-1234-5678-1234-567812345678")
        key = generate_settlement_key("record_payments_received", "exp-1", "alice", request)
        assert parse_settlement_key(key) == (
            "record_payments_received",
            "exp-1",
            "alice",
            str(request),
        )

    def test_request_id_may_contain_separator(self):
        key = generate_settlement_key("settle_own_debt", "e", "p", "msg:42")
        assert parse_settlement_key(key)[3] == "msg:42"

    @pytest.mark.parametrize("key", ["", "a:b:c", "a::c:d", "settle_own_debt:e:p:"])
    def test_malformed(self, key):
        with pytest.raises(ValueError):
            parse_settlement_key(key)
