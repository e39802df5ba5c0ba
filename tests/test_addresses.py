"""Tests for metaserve.addresses: canonical address form."""

import pytest

from metaserve.addresses import canonicalize, same_address, to_checksum
from metaserve.errors import InvalidAddress, ValidationError

CHECKSUMMED = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
LOWER = CHECKSUMMED.lower()


class TestCanonicalize:
    def test_lowercases(self):
        assert canonicalize(CHECKSUMMED) == LOWER

    def test_strips_whitespace(self):
        assert canonicalize(f"  {CHECKSUMMED}\n") == LOWER

    def test_idempotent(self):
        assert canonicalize(canonicalize(CHECKSUMMED)) == LOWER

    def test_uppercase_prefix_accepted(self):
        assert canonicalize("0X" + LOWER[2:].upper()) == LOWER

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            None,
            "1234567890abcdef1234567890abcdef12345678",  # no prefix
            "0x1234",  # too short
            LOWER + "00",  # too long
            "0x" + "g" * 40,  # not hex
            42,
        ],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(InvalidAddress):
            canonicalize(raw)

    def test_invalid_address_is_validation_error(self):
        with pytest.raises(ValidationError):
            canonicalize("nope")


class TestSameAddress:
    def test_case_insensitive(self):
        assert same_address(CHECKSUMMED, LOWER)

    def test_different(self):
        assert not same_address(LOWER, "0x" + "0" * 40)

    def test_invalid_side_is_false(self):
        assert not same_address(LOWER, "garbage")
        assert not same_address(None, LOWER)


class TestToChecksum:
    def test_roundtrips_eip55(self):
        assert to_checksum(LOWER) == CHECKSUMMED

    def test_rejects_malformed(self):
        with pytest.raises(InvalidAddress):
            to_checksum("0x1234")
