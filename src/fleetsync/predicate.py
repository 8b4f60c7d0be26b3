"""Typed predicates over resource facts.

A predicate decides whether a live resource belongs to an operation's
target set. Evaluation is three-valued: a comparison against a fact the
resource does not have is *unknown* (None), and unknown propagates through
``not``/``and``/``or`` with Kleene semantics. Only a definite True selects a
resource, so a host with no ``os_family`` fact can never be selected by a
predicate about ``os_family``, not even by ``not os_family == "Debian"``.

Expressions:
    os_family == "Debian"
    os_family != "RedHat" and architecture == "x86_64"
    distribution =~ "Ubuntu*"
    os_family in ["RedHat", "Suse"]
    not (os_family == "Windows" or platform =~ "*Windows*")
    ansible_facts['os_family'] == "Debian"

Fact names may be written bare, with an ``ansible_`` prefix, or as
``ansible_facts['name']``; all three refer to the same fact.
"""

import fnmatch
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .exceptions import PredicateError
from .types import Facts


class Predicate(ABC):
    """Base class for predicates over Facts."""

    @abstractmethod
    def evaluate(self, facts: Facts) -> bool | None:
        """Evaluate to True, False, or None when the answer is unknown."""

    def matches(self, facts: Facts) -> bool:
        """Check if the facts definitely satisfy the predicate."""
        return self.evaluate(facts) is True

    def __call__(self, facts: Facts) -> bool:
        return self.matches(facts)

    def __and__(self, other: "Predicate") -> "Predicate":
        return And((self, other))

    def __or__(self, other: "Predicate") -> "Predicate":
        return Or((self, other))

    def __invert__(self) -> "Predicate":
        return Not(self)


COMPARISON_OPS = ("==", "!=", "=~")


@dataclass(frozen=True)
class Compare(Predicate):
    """Compare one fact with a value.

    ``=~`` matches the fact against a glob pattern (fnmatch, case-sensitive).
    """

    fact: str
    op: str
    value: str

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPS:
            raise PredicateError(f"Unknown comparison operator: {self.op}")

    def evaluate(self, facts: Facts) -> bool | None:
        actual = facts.get(self.fact)
        if actual is None:
            return None
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        return fnmatch.fnmatchcase(actual, self.value)

    def __str__(self) -> str:
        return f"{self.fact} {self.op} {json.dumps(self.value)}"


@dataclass(frozen=True)
class In(Predicate):
    """Check whether a fact is (or is not) one of several values."""

    fact: str
    values: tuple[str, ...]
    negate: bool = False

    def evaluate(self, facts: Facts) -> bool | None:
        actual = facts.get(self.fact)
        if actual is None:
            return None
        return (actual in self.values) != self.negate

    def __str__(self) -> str:
        op = "not in" if self.negate else "in"
        values = ", ".join(json.dumps(v) for v in self.values)
        return f"{self.fact} {op} [{values}]"


@dataclass(frozen=True)
class NotIn(In):
    """Check that a fact is none of several values."""

    negate: bool = True


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def evaluate(self, facts: Facts) -> bool | None:
        result = self.operand.evaluate(facts)
        return None if result is None else not result

    def __str__(self) -> str:
        return f"not {_wrap(self.operand, (And, Or))}"


@dataclass(frozen=True)
class And(Predicate):
    operands: tuple[Predicate, ...]

    def evaluate(self, facts: Facts) -> bool | None:
        unknown = False
        for operand in self.operands:
            result = operand.evaluate(facts)
            if result is False:
                return False
            if result is None:
                unknown = True
        return None if unknown else True

    def __str__(self) -> str:
        return " and ".join(_wrap(o, (Or,)) for o in self.operands)


@dataclass(frozen=True)
class Or(Predicate):
    operands: tuple[Predicate, ...]

    def evaluate(self, facts: Facts) -> bool | None:
        unknown = False
        for operand in self.operands:
            result = operand.evaluate(facts)
            if result is True:
                return True
            if result is None:
                unknown = True
        return None if unknown else False

    def __str__(self) -> str:
        return " or ".join(_wrap(o, (And,)) for o in self.operands)


@dataclass(frozen=True)
class Always(Predicate):
    """Matches every resource, whatever its facts."""

    def evaluate(self, facts: Facts) -> bool | None:
        return True

    def __str__(self) -> str:
        return "true"


def _wrap(predicate: Predicate, kinds: tuple[type, ...]) -> str:
    text = str(predicate)
    return f"({text})" if isinstance(predicate, kinds) else text


def fact_equals(fact: str, value: str) -> Predicate:
    """Shorthand for ``Compare(fact, "==", value)``."""
    return Compare(normalize_fact_name(fact), "==", value)


def normalize_fact_name(name: str) -> str:
    """Strip the ``ansible_`` prefix used by playbook-style fact names."""
    if name.startswith("ansible_") and name != "ansible_facts":
        return name[len("ansible_"):]
    return name


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>==|!=|=~)
  | (?P<punct>[()\[\],])
  | (?P<number>-?\d[\w.\-]*)
  | (?P<word>[A-Za-z_][\w.\-]*)
    """,
    re.VERBOSE,
)

KEYWORDS = {"and", "or", "not", "in", "true"}


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise PredicateError(f"Unexpected character {text[pos]!r}", position=pos)
        kind = match.lastgroup or ""
        value = match.group()
        if kind == "string":
            tokens.append(_Token("string", _unquote(value), pos))
        elif kind == "word" and value.lower() in KEYWORDS:
            tokens.append(_Token(value.lower(), value, pos))
        elif kind != "ws":
            tokens.append(_Token(kind, value, pos))
        pos = match.end()
    tokens.append(_Token("end", "", len(text)))
    return tokens


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class _Parser:
    """Recursive-descent parser for predicate expressions."""

    def __init__(self, text: str) -> None:
        self.tokens = _tokenize(text)
        self.index = 0

    @property
    def current(self) -> _Token:
        return self.tokens[self.index]

    def advance(self) -> _Token:
        token = self.current
        self.index += 1
        return token

    def expect(self, kind: str, text: str | None = None) -> _Token:
        token = self.current
        if token.kind != kind or (text is not None and token.text != text):
            wanted = text or kind
            found = token.text or "end of expression"
            raise PredicateError(f"Expected {wanted!r}, found {found!r}", position=token.pos)
        return self.advance()

    def parse(self) -> Predicate:
        predicate = self.parse_or()
        if self.current.kind != "end":
            raise PredicateError(f"Unexpected {self.current.text!r}", position=self.current.pos)
        return predicate

    def parse_or(self) -> Predicate:
        operands = [self.parse_and()]
        while self.current.kind == "or":
            self.advance()
            operands.append(self.parse_and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def parse_and(self) -> Predicate:
        operands = [self.parse_not()]
        while self.current.kind == "and":
            self.advance()
            operands.append(self.parse_not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def parse_not(self) -> Predicate:
        if self.current.kind == "not":
            self.advance()
            return Not(self.parse_not())
        return self.parse_atom()

    def parse_atom(self) -> Predicate:
        token = self.current
        if token.kind == "punct" and token.text == "(":
            self.advance()
            inner = self.parse_or()
            self.expect("punct", ")")
            return inner
        if token.kind == "true":
            self.advance()
            return Always()
        if token.kind == "word":
            return self.parse_comparison()
        found = token.text or "end of expression"
        raise PredicateError(f"Expected a fact name, found {found!r}", position=token.pos)

    def parse_fact(self) -> str:
        name = self.advance().text
        if name == "ansible_facts":
            self.expect("punct", "[")
            name = self.expect("string").text
            self.expect("punct", "]")
        return normalize_fact_name(name)

    def parse_comparison(self) -> Predicate:
        fact = self.parse_fact()
        token = self.current
        if token.kind == "op":
            self.advance()
            return Compare(fact, token.text, self.parse_value())
        if token.kind == "in":
            self.advance()
            return In(fact, self.parse_list())
        if token.kind == "not":
            self.advance()
            self.expect("in")
            return NotIn(fact, self.parse_list())
        found = token.text or "end of expression"
        raise PredicateError(
            f"Expected a comparison after {fact!r}, found {found!r}", position=token.pos
        )

    def parse_value(self) -> str:
        token = self.current
        if token.kind in ("string", "word", "number"):
            return self.advance().text
        found = token.text or "end of expression"
        raise PredicateError(f"Expected a value, found {found!r}", position=token.pos)

    def parse_list(self) -> tuple[str, ...]:
        self.expect("punct", "[")
        values: list[str] = []
        while not (self.current.kind == "punct" and self.current.text == "]"):
            values.append(self.parse_value())
            if self.current.kind == "punct" and self.current.text == ",":
                self.advance()
            elif not (self.current.kind == "punct" and self.current.text == "]"):
                raise PredicateError(
                    f"Expected ',' or ']', found {self.current.text!r}", position=self.current.pos
                )
        self.advance()
        if not values:
            raise PredicateError("Empty value list", position=self.current.pos)
        return tuple(values)


def parse_predicate(text: str) -> Predicate:
    """Parse a predicate expression.

    Args:
        text: Expression such as ``os_family == "Debian"``

    Returns:
        Predicate tree

    Raises:
        PredicateError: If the expression is empty or malformed

    Example:
        >>> predicate = parse_predicate('os_family == "Debian"')
        >>> predicate.matches(Facts(os_family="Debian"))
        True
        >>> predicate.evaluate(Facts()) is None
        True
    """
    if not text or not text.strip():
        raise PredicateError("Empty predicate expression")
    return _Parser(text).parse()
