"""Tests for predicate parsing and three-valued evaluation."""

import pytest

from fleetsync.exceptions import PredicateError
from fleetsync.predicate import (
    Always,
    And,
    Compare,
    In,
    Not,
    NotIn,
    Or,
    fact_equals,
    parse_predicate,
)
from fleetsync.types import Facts

DEBIAN = Facts(os_family="Debian", distribution="Ubuntu", architecture="x86_64", platform="Linux/UNIX")
REDHAT = Facts(os_family="RedHat", distribution="Amazon", architecture="arm64")
UNKNOWN = Facts()


class TestEvaluation:
    """Tests for predicate evaluation."""

    def test_compare_equal(self):
        """Test exact equality."""
        predicate = Compare("os_family", "==", "Debian")

        assert predicate.evaluate(DEBIAN) is True
        assert predicate.evaluate(REDHAT) is False
        assert predicate.evaluate(UNKNOWN) is None

    def test_compare_is_case_sensitive(self):
        """Test that value comparison is exact."""
        assert Compare("os_family", "==", "debian").evaluate(DEBIAN) is False

    def test_glob_match(self):
        """Test =~ glob matching."""
        assert Compare("distribution", "=~", "Ubu*").evaluate(DEBIAN) is True
        assert Compare("distribution", "=~", "Ubu*").evaluate(REDHAT) is False

    def test_in_and_not_in(self):
        """Test membership predicates."""
        assert In("os_family", ("RedHat", "Suse")).evaluate(REDHAT) is True
        assert In("os_family", ("RedHat", "Suse")).evaluate(DEBIAN) is False
        assert NotIn("os_family", ("RedHat",)).evaluate(DEBIAN) is True
        assert NotIn("os_family", ("RedHat",)).evaluate(UNKNOWN) is None

    def test_not_of_unknown_is_unknown(self):
        """Test that negating a missing fact never selects the resource."""
        predicate = Not(fact_equals("os_family", "Debian"))

        assert predicate.evaluate(UNKNOWN) is None
        assert predicate.matches(UNKNOWN) is False
        assert predicate.matches(REDHAT) is True

    def test_kleene_and(self):
        """Test And with unknown operands."""
        known_false = Compare("architecture", "==", "sparc")
        unknown = Compare("kernel", "==", "6.1")

        assert And((unknown, known_false)).evaluate(DEBIAN) is False
        assert And((unknown, Always())).evaluate(DEBIAN) is None

    def test_kleene_or(self):
        """Test Or with unknown operands."""
        known_true = Compare("os_family", "==", "Debian")
        unknown = Compare("kernel", "==", "6.1")

        assert Or((unknown, known_true)).evaluate(DEBIAN) is True
        assert Or((unknown, Not(Always()))).evaluate(DEBIAN) is None

    def test_operators(self):
        """Test the &, | and ~ shortcuts."""
        debian = fact_equals("os_family", "Debian")
        arm = fact_equals("architecture", "arm64")

        assert (debian | arm).matches(REDHAT)
        assert not (debian & arm).matches(DEBIAN)
        assert (~debian).matches(REDHAT)

    def test_ansible_prefixed_fact(self):
        """Test that ansible_ prefixed names refer to the same fact."""
        assert fact_equals("ansible_os_family", "Debian").matches(DEBIAN)
        assert str(parse_predicate('ansible_os_family == "Debian"')) == 'os_family == "Debian"'

    def test_fact_names_not_aliased(self):
        """Test that other names are used as written, so a short name is an unknown fact."""
        predicate = parse_predicate('os == "Debian"')

        assert predicate.evaluate(DEBIAN) is None
        assert not predicate.matches(DEBIAN)

    def test_extra_facts(self):
        """Test predicates over facts outside the well-known set."""
        facts = Facts(extra={"kernel": "6.1"})
        assert parse_predicate('kernel == "6.1"').matches(facts)


class TestParsing:
    """Tests for parse_predicate()."""

    def test_simple_comparison(self):
        """Test parsing a comparison."""
        assert parse_predicate('os_family == "Debian"') == Compare("os_family", "==", "Debian")

    def test_ansible_facts_subscript(self):
        """Test playbook-style fact access."""
        predicate = parse_predicate("ansible_facts['os_family'] == 'Debian'")

        assert predicate == Compare("os_family", "==", "Debian")

    def test_bare_word_value(self):
        """Test unquoted values."""
        assert parse_predicate("os_family != RedHat") == Compare("os_family", "!=", "RedHat")

    def test_precedence(self):
        """Test that and binds tighter than or."""
        predicate = parse_predicate('os_family == "A" or os_family == "B" and architecture == "x"')

        assert isinstance(predicate, Or)
        assert isinstance(predicate.operands[1], And)

    def test_parentheses_and_not(self):
        """Test grouping and negation."""
        predicate = parse_predicate('not (os_family == "Windows" or platform =~ "*Windows*")')

        assert isinstance(predicate, Not)
        assert predicate.matches(DEBIAN)

    def test_lists(self):
        """Test in and not in lists."""
        assert parse_predicate('os_family in ["RedHat", "Suse"]') == In("os_family", ("RedHat", "Suse"))
        assert parse_predicate("os_family not in [Debian]") == NotIn("os_family", ("Debian",))

    def test_true_literal(self):
        """Test the always-true predicate."""
        assert parse_predicate("true").matches(UNKNOWN)

    def test_round_trip_rendering(self):
        """Test that rendered predicates parse back to the same tree."""
        text = 'not os_family == "Debian" and (distribution =~ "Ubuntu*" or architecture in ["arm64"])'
        predicate = parse_predicate(text)

        assert parse_predicate(str(predicate)) == predicate

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "os_family",
            'os_family = "Debian"',
            'os_family == "Debian" and',
            '(os_family == "Debian"',
            "os_family in []",
            "os_family in [a b]",
            '== "Debian"',
            'os_family == "Debian" extra',
        ],
    )
    def test_invalid_expressions(self, text):
        """Test that malformed expressions raise PredicateError."""
        with pytest.raises(PredicateError):
            parse_predicate(text)

    def test_error_reports_position(self):
        """Test that errors point at the offending token."""
        with pytest.raises(PredicateError) as exc_info:
            parse_predicate('os_family == "Debian" extra')

        assert exc_info.value.position == 22
