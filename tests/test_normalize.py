"""Tests for identifier and fingerprint normalization."""
import pytest

from orderguard.models.signals import IdentifierType
from orderguard.services.normalize import (
    ip_matches,
    is_valid_bd_mobile,
    normalize_address,
    normalize_identifier,
    normalize_ip,
    normalize_name,
    normalize_phone,
)


class TestPhoneNormalization:

    @pytest.mark.parametrize("raw", [
        "01712345678",
        "+8801712345678",
        "8801712345678",
        "1712345678",
        "+880 1712-345678",
        "(017) 1234 5678",
    ])
    def test_bangladeshi_formats_collapse_to_local_form(self, raw):
        assert normalize_phone(raw) == "01712345678"

    def test_foreign_number_keeps_digits(self):
        assert normalize_phone("+1 (415) 555-0100") == "14155550100"

    def test_no_digits_normalizes_to_empty(self):
        assert normalize_phone("call me") == ""

    @pytest.mark.parametrize("raw", [
        "01712345678",
        "+8801712345678",
        "8801712345678",
        "(017) 1234 5678",
        "+880 1712-345678",
    ])
    def test_valid_bangladeshi_mobile(self, raw):
        assert is_valid_bd_mobile(raw)

    @pytest.mark.parametrize("raw", [
        "",
        "1712345678",
        "01212345678",
        "0171234567",
        "+1 (415) 555-0100",
        "017-abc-45678",
    ])
    def test_invalid_bangladeshi_mobile(self, raw):
        assert not is_valid_bd_mobile(raw)


class TestIpNormalization:

    def test_ipv4_is_stripped(self):
        assert normalize_ip("  203.0.113.10 ") == "203.0.113.10"

    def test_ipv6_is_compressed(self):
        assert normalize_ip("2001:0db8:0000:0000:0000:0000:0000:0001") == "2001:db8::1"

    def test_garbage_normalizes_to_empty(self):
        assert normalize_ip("not-an-ip") == ""

    def test_cidr_match(self):
        assert ip_matches("10.1.2.3", "10.0.0.0/8")
        assert not ip_matches("11.1.2.3", "10.0.0.0/8")

    def test_exact_match(self):
        assert ip_matches("203.0.113.10", "203.0.113.10")
        assert not ip_matches("203.0.113.11", "203.0.113.10")


class TestIdempotence:

    @pytest.mark.parametrize("identifier_type,raw", [
        (IdentifierType.PHONE, "+880 1712-345678"),
        (IdentifierType.PHONE, "+1 (415) 555-0100"),
        (IdentifierType.IP, "2001:0db8::0001"),
        (IdentifierType.IP, "bogus"),
        (IdentifierType.DEVICE, "  dev-abc  "),
    ])
    def test_normalizing_twice_changes_nothing(self, identifier_type, raw):
        once = normalize_identifier(identifier_type, raw)
        assert normalize_identifier(identifier_type, once) == once

    def test_name_normalization_is_idempotent(self):
        once = normalize_name("  Md.  Rahim   UDDIN ")
        assert once == "md rahim uddin"
        assert normalize_name(once) == once


class TestAddressNormalization:

    def test_split_and_single_line_forms_match(self):
        split = normalize_address("123 Main St.", "Dhaka", "1200")
        single = normalize_address("123 main st, dhaka, 1200")
        assert split == single == "123 main st dhaka 1200"

    def test_whitespace_and_case_collapse(self):
        assert normalize_address("  123   MAIN st ", "DHAKA") == "123 main st dhaka"

    def test_empty_parts_are_skipped(self):
        assert normalize_address("", "", "") == ""
