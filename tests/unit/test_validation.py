"""Unit tests for the validation module."""

import pytest

from v6sync.core.validation import (
    NetworkPrefix,
    normalize_prefix,
    validate_prefix_length,
    validate_host_ref,
    validate_object_name,
    MAX_OBJECT_NAME_LENGTH,
)
from v6sync.core.exceptions import ValidationError


class TestNetworkPrefix:
    """Tests for NetworkPrefix parsing and normalisation."""

    def test_parse_compresses(self):
        """Expanded notation should normalise to compressed form."""
        prefix = NetworkPrefix.parse("2001:0DB8:0000:0001:0000:0000:0000:0000/64")
        assert str(prefix) == "2001:db8:0:1::/64"

    def test_host_bits_cleared(self):
        """Host bits should be cleared rather than rejected."""
        assert str(NetworkPrefix.parse("2001:db8:1:2::1/64")) == "2001:db8:1:2::/64"

    def test_equality_of_normalised_values(self):
        """Different spellings of one network should compare equal."""
        assert NetworkPrefix.parse("2001:DB8::/64") == NetworkPrefix.parse("2001:db8:0::/64")
        assert NetworkPrefix.parse("2001:db8::/64") != NetworkPrefix.parse("2001:db8:0:1::/64")

    def test_length(self):
        assert NetworkPrefix.parse("2001:db8::/56").length == 56

    def test_whitespace_stripped(self):
        assert str(NetworkPrefix.parse("  2001:db8::/64\n")) == "2001:db8::/64"

    def test_missing_length(self):
        """A bare address is not a prefix."""
        with pytest.raises(ValidationError) as exc:
            NetworkPrefix.parse("2001:db8::1")
        assert "no length" in str(exc.value)

    def test_ipv4_rejected(self):
        with pytest.raises(ValidationError) as exc:
            NetworkPrefix.parse("192.0.2.0/24")
        assert "Not an IPv6" in str(exc.value)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            NetworkPrefix.parse("not-a-prefix/64")

    def test_hashable(self):
        """Prefixes should be usable in sets."""
        values = {NetworkPrefix.parse("2001:db8::/64"), NetworkPrefix.parse("2001:DB8::/64")}
        assert len(values) == 1


class TestNormalizePrefix:
    """Tests for normalize_prefix."""

    def test_ipv6_normalised(self):
        assert normalize_prefix("2001:DB8:0::/64") == "2001:db8::/64"

    def test_non_ipv6_passthrough(self):
        """Foreign values are kept so they never match a discovered prefix."""
        assert normalize_prefix(" 0.0.0.0/0 ") == "0.0.0.0/0"
        assert normalize_prefix("garbage") == "garbage"


class TestValidatePrefixLength:
    """Tests for validate_prefix_length."""

    def test_bounds(self):
        assert validate_prefix_length(1) == 1
        assert validate_prefix_length(64) == 64
        assert validate_prefix_length(128) == 128

    @pytest.mark.parametrize("value", [0, 129, -1])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationError):
            validate_prefix_length(value)


class TestValidateHostRef:
    """Tests for SSH host identity validation."""

    def test_valid_hosts(self):
        assert validate_host_ref("m1") == "m1"
        assert validate_host_ref("root@msm") == "root@msm"
        assert validate_host_ref("admin@host.example.com") == "admin@host.example.com"

    def test_local_reserved(self):
        assert validate_host_ref("local") == "local"

    def test_strips_whitespace(self):
        assert validate_host_ref(" m2 ") == "m2"

    def test_option_injection_rejected(self):
        """Values starting with '-' would be parsed by ssh as options."""
        with pytest.raises(ValidationError):
            validate_host_ref("-oProxyCommand=evil")

    @pytest.mark.parametrize("value", ["", "host name", "host;rm", "user@", "@host", "a$b"])
    def test_invalid_hosts(self, value):
        with pytest.raises(ValidationError):
            validate_host_ref(value)


class TestValidateObjectName:
    """Tests for firewalld object name validation."""

    def test_valid_names(self):
        assert validate_object_name("home6") == "home6"
        assert validate_object_name("public") == "public"
        assert validate_object_name("my_set.v6-1") == "my_set.v6-1"

    def test_empty(self):
        with pytest.raises(ValidationError) as exc:
            validate_object_name("", "ipset name")
        assert "Empty ipset name" in str(exc.value)

    def test_too_long(self):
        with pytest.raises(ValidationError) as exc:
            validate_object_name("a" * (MAX_OBJECT_NAME_LENGTH + 1))
        assert "too long" in str(exc.value)

    def test_max_length(self):
        name = "a" * MAX_OBJECT_NAME_LENGTH
        assert validate_object_name(name) == name

    @pytest.mark.parametrize("value", ["-set", "set name", "set/x", "set;x", 'a"b'])
    def test_invalid_characters(self, value):
        with pytest.raises(ValidationError):
            validate_object_name(value)
