"""
Hashing Engine tests.

Verifies:
- The exact pre-image format and SHA-256 digest of a block
- Canonical JSON: sorted keys, fixed separators, fixed number encoding
- Determinism and avalanche sensitivity (property-based)
- verify_block_hash soundness for matching and mismatched inputs
"""

import hashlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from audit_chain.exceptions import HashComputationError, InvalidPayloadError
from audit_chain.utils import hashing
from audit_chain.utils.hashing import (
    GENESIS_PREVIOUS_HASH,
    build_block_hash_input,
    canonical_timestamp,
    canonicalize_json,
    compute_block_hash,
    compute_payload_digest,
    verify_block_hash,
)

CREATED_AT = datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

json_scalars = (
    st.none()
    | st.booleans()
    | st.integers(min_value=-(2**53), max_value=2**53)
    | st.floats(allow_nan=False, allow_infinity=False)
    | st.text(max_size=20)
)
json_values = st.recursive(
    json_scalars,
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=12,
)
payloads = st.dictionaries(st.text(min_size=1, max_size=8), json_values, max_size=6)


class TestCanonicalEncoding:
    def test_keys_sorted_without_whitespace(self):
        assert canonicalize_json({"b": 1, "a": [1, 2], "c": {"z": 0, "y": None}}) == (
            '{"a":[1,2],"b":1,"c":{"y":null,"z":0}}'
        )

    def test_insertion_order_does_not_matter(self):
        first = {"walletId": 123, "action": "WALLET_CREATED"}
        second = {"action": "WALLET_CREATED", "walletId": 123}
        assert canonicalize_json(first) == canonicalize_json(second)

    def test_non_ascii_escaped(self):
        assert canonicalize_json({"name": "café"}) == '{"name":"caf\\u00e9"}'

    def test_decimal_normalized_to_fixed_point(self):
        assert canonicalize_json({"amount": Decimal("100.00")}) == '{"amount":"100"}'
        assert canonicalize_json({"amount": Decimal("1.50")}) == '{"amount":"1.5"}'

    def test_uuid_and_date_encoded_as_strings(self):
        value = UUID("12345678-1234-5678-1234-567812345678")
        assert canonicalize_json({"id": value}) == f'{{"id":"{value}"}}'

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            canonicalize_json({"x": float("nan")})

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})


class TestCanonicalTimestamp:
    def test_utc_with_microseconds_and_no_offset(self):
        assert canonical_timestamp(CREATED_AT) == "2024-01-01T12:00:00.123456"

    def test_whole_seconds_keep_microsecond_field(self):
        value = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert canonical_timestamp(value) == "2024-01-01T12:00:00.000000"

    def test_offset_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        local = datetime(2024, 1, 1, 14, 0, 0, 123456, tzinfo=plus_two)
        assert canonical_timestamp(local) == canonical_timestamp(CREATED_AT)

    def test_naive_taken_as_utc(self):
        naive = CREATED_AT.replace(tzinfo=None)
        assert canonical_timestamp(naive) == canonical_timestamp(CREATED_AT)


class TestComputeBlockHash:
    def test_pre_image_format(self):
        pre_image = build_block_hash_input(
            1, GENESIS_PREVIOUS_HASH, {"walletId": 123, "action": "WALLET_CREATED"}, CREATED_AT, 0
        )
        assert pre_image == (
            f"BLOCK:1|PREV:{'0' * 64}"
            '|DATA:{"action":"WALLET_CREATED","walletId":123}'
            "|TIME:2024-01-01T12:00:00.123456"
            "|NONCE:0"
        )

    def test_digest_is_sha256_of_pre_image(self):
        data = {"walletId": 123, "action": "WALLET_CREATED"}
        expected = hashlib.sha256(
            build_block_hash_input(1, GENESIS_PREVIOUS_HASH, data, CREATED_AT, 0).encode("utf-8")
        ).hexdigest()

        assert compute_block_hash(1, GENESIS_PREVIOUS_HASH, data, CREATED_AT, 0) == expected

    def test_hash_is_64_lowercase_hex(self):
        value = compute_block_hash(5, "a" * 64, {"x": 1}, CREATED_AT, 0)
        assert len(value) == 64
        assert value == value.lower()
        int(value, 16)

    def test_none_payload_hashes_as_empty_object(self):
        assert compute_block_hash(1, "a" * 64, None, CREATED_AT) == compute_block_hash(
            1, "a" * 64, {}, CREATED_AT
        )

    @pytest.mark.parametrize(
        "field,changed",
        [
            ("block_number", 2),
            ("previous_hash", "b" * 64),
            ("created_at", CREATED_AT + timedelta(microseconds=1)),
            ("nonce", 1),
        ],
    )
    def test_every_header_field_is_covered(self, field, changed):
        base = dict(
            block_number=1,
            previous_hash="a" * 64,
            event_data={"x": 1},
            created_at=CREATED_AT,
            nonce=0,
        )
        altered = dict(base, **{field: changed})
        assert compute_block_hash(**base) != compute_block_hash(**altered)

    def test_unencodable_payload_raises_invalid_payload(self):
        with pytest.raises(InvalidPayloadError):
            compute_block_hash(1, "a" * 64, {"x": float("inf")}, CREATED_AT)

    def test_missing_algorithm_raises_hash_computation_error(self, monkeypatch):
        monkeypatch.setattr(hashing, "HASH_ALGORITHM", "no-such-digest")
        with pytest.raises(HashComputationError) as exc_info:
            compute_block_hash(1, "a" * 64, {}, CREATED_AT)
        assert exc_info.value.code == "HASH_COMPUTATION_FAILURE"


class TestPayloadDigest:
    def test_merkle_root_is_sha256_of_canonical_json(self):
        data = {"walletId": 123, "action": "WALLET_CREATED"}
        expected = hashlib.sha256(canonicalize_json(data).encode("utf-8")).hexdigest()
        assert compute_payload_digest(data) == expected

    def test_digest_independent_of_key_order(self):
        assert compute_payload_digest({"a": 1, "b": 2}) == compute_payload_digest({"b": 2, "a": 1})


class TestVerifyBlockHash:
    def test_matching_inputs_verify(self):
        stored = compute_block_hash(3, "c" * 64, {"amount": "10"}, CREATED_AT, 7)
        assert verify_block_hash(stored, 3, "c" * 64, {"amount": "10"}, CREATED_AT, 7)

    def test_mismatched_payload_fails(self):
        stored = compute_block_hash(3, "c" * 64, {"amount": "10"}, CREATED_AT, 7)
        assert not verify_block_hash(stored, 3, "c" * 64, {"amount": "11"}, CREATED_AT, 7)

    def test_no_partial_credit_for_case(self):
        stored = compute_block_hash(3, "c" * 64, {}, CREATED_AT, 0)
        assert not verify_block_hash(stored.upper(), 3, "c" * 64, {}, CREATED_AT, 0)


class TestHashProperties:
    @settings(max_examples=100)
    @given(
        block_number=st.integers(min_value=0, max_value=10**9),
        event_data=payloads,
        nonce=st.integers(min_value=0, max_value=10**6),
    )
    def test_determinism(self, block_number, event_data, nonce):
        first = compute_block_hash(block_number, "f" * 64, event_data, CREATED_AT, nonce)
        again = compute_block_hash(block_number, "f" * 64, dict(event_data), CREATED_AT, nonce)
        assert first == again

    @settings(max_examples=100)
    @given(event_data=payloads.filter(bool), data=st.data())
    def test_avalanche_on_single_field_change(self, event_data, data):
        key = data.draw(st.sampled_from(sorted(event_data)))
        replacement = data.draw(json_values.filter(lambda v: v != event_data[key]))
        altered = dict(event_data, **{key: replacement})
        if canonicalize_json(altered) == canonicalize_json(event_data):
            # e.g. 0 vs 0.0 style encodings that are equal by value
            return

        assert compute_block_hash(1, "f" * 64, event_data, CREATED_AT) != compute_block_hash(
            1, "f" * 64, altered, CREATED_AT
        )
