"""
Textual formula front end.

Turns R-style right-hand sides into Formula term trees; the core only
ever sees the trees.

    parse_formula("Surv(time, status) ~ age + rcs(chol, 4) + sex * treat + strata(site)")

Grammar:
    formula  := [lhs "~"] term ("+" term)*
    term     := factor (("*" | ":") factor)*
    factor   := NAME | "rcs(" NAME ["," INT] ")" | "strata(" NAME ")"

``a:b`` is the single interaction; ``a * b * c`` expands as in R to every
main effect and every sub-interaction. Interactions always bring their
main effects along when the design is built.
"""

from __future__ import annotations

import itertools
import re

from pysurvreg.core.exceptions import FormulaError
from pysurvreg.formula.terms import Formula, Interaction, Main, Spline, Strata, Term

_TOKEN = re.compile(r"\s*(?:(?P<num>\d+)|(?P<name>[A-Za-z_.][A-Za-z0-9_.]*)|(?P<op>[+*:(),]))")


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            raise FormulaError(f"cannot parse formula at {text[pos:]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self, kind: str, value: str | None = None) -> str:
        tok = self.peek()
        if tok is None or tok[0] != kind or (value is not None and tok[1] != value):
            found = "end of formula" if tok is None else repr(tok[1])
            expected = value if value is not None else kind
            raise FormulaError(f"in {self.text!r}: expected {expected}, found {found}")
        self.pos += 1
        return tok[1]

    def formula(self) -> list[Term]:
        terms = list(self.term())
        while self.peek() == ("op", "+"):
            self.take("op", "+")
            terms.extend(self.term())
        if self.peek() is not None:
            raise FormulaError(f"in {self.text!r}: unexpected {self.peek()[1]!r}")
        return terms

    def term(self) -> list[Term]:
        factors = [self.factor()]
        ops = []
        while self.peek() in (("op", "*"), ("op", ":")):
            ops.append(self.take("op"))
            factors.append(self.factor())
        if not ops:
            return factors
        if "*" not in ops:
            return [_nest(factors)]
        # R crossing: every non-empty subset, lower orders first
        out = []
        for order in range(1, len(factors) + 1):
            for combo in itertools.combinations(factors, order):
                out.append(_nest(list(combo)))
        return out

    def factor(self) -> Term:
        name = self.take("name")
        if self.peek() != ("op", "("):
            return Main(name)
        self.take("op", "(")
        if name == "rcs":
            var = self.take("name")
            knots = 4
            if self.peek() == ("op", ","):
                self.take("op", ",")
                knots = int(self.take("num"))
            self.take("op", ")")
            return Spline(var, knots)
        if name == "strata":
            var = self.take("name")
            self.take("op", ")")
            return Strata(var)
        raise FormulaError(
            f"in {self.text!r}: unknown function {name}(); use rcs() or strata()"
        )


def _nest(factors: list[Term]) -> Term:
    term = factors[0]
    for right in factors[1:]:
        term = Interaction(term, right)
    return term


def parse_formula(text: str) -> Formula:
    """Parse an R-style model formula into a Formula.

    Anything left of ``~`` (the ``Surv(time, status)`` response) is
    ignored; the outcome always comes from the Dataset.

    Raises
    ------
    FormulaError
        On syntax errors or unknown functions.
    """
    if not isinstance(text, str):
        raise FormulaError(f"formula text must be a str, got {type(text).__name__}")
    rhs = text.split("~", 1)[1] if "~" in text else text
    if not rhs.strip():
        raise FormulaError("formula must contain at least one term")
    terms = _Parser(rhs).formula()
    # Crossing can repeat a term (a*b + a); keep the first occurrence
    return Formula(terms=tuple(dict.fromkeys(terms)))
