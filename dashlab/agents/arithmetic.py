# =============================================================================
# Arithmetic Detection — Safe Expression Extraction and Evaluation
# =============================================================================
#
# Detects questions that are plain arithmetic ("2+2", "combien font 3 fois
# 4 ?") so they can be answered (or declined) without retrieval.
#
# EXTRACTION:
# 1. Lowercase, strip filler words ("combien font", "calcule", "égal", ...)
# 2. Map spoken operators to symbols (plus, moins, fois, divisé par, x, ×, ÷)
# 3. Fold decimal commas (2,5 → 2.5)
# 4. Reject anything longer than 80 characters or containing a character
#    outside 0-9 + - * / ( ) . and spaces
# 5. Require at least one binary operator between two operands
#
# EVALUATION: a recursive-descent parser over + - * / ( ), unary signs and
# decimals. User-derived text is never handed to eval().
#
#   expr   := term (("+" | "-") term)*
#   term   := factor (("*" | "/") factor)*
#   factor := ("+" | "-") factor | number | "(" expr ")"
# =============================================================================

from __future__ import annotations

import math
import re

MAX_EXPRESSION_LENGTH = 80

_FILLERS = (
    "quel est le résultat de",
    "quel est le resultat de",
    "le résultat de",
    "le resultat de",
    "résultat de",
    "resultat de",
    "peux-tu calculer",
    "tu peux calculer",
    "combien ça fait",
    "combien ca fait",
    "ça fait combien",
    "ca fait combien",
    "combien font",
    "combien fait",
    "calcule-moi",
    "calcule moi",
    "calculer",
    "calcule",
    "que font",
    "que fait",
    "how much is",
    "what is",
    "s'il te plaît",
    "s'il te plait",
    "stp",
    "svp",
    "combien",
    "égale",
    "égal",
    "egale",
    "egal",
    "=",
    "?",
    "!",
)

_WORD_OPERATORS = (
    (re.compile(r"\bdivis[ée]e?\s+par\b"), " / "),
    (re.compile(r"\bmultipli[ée]e?\s+par\b"), " * "),
    (re.compile(r"\bfois\b"), " * "),
    (re.compile(r"\bplus\b"), " + "),
    (re.compile(r"\bmoins\b"), " - "),
    (re.compile(r"(?<=[\d)])\s*x\s*(?=[\d(])"), " * "),
    (re.compile(r"×"), " * "),
    (re.compile(r"÷"), " / "),
)

_DECIMAL_COMMA_RE = re.compile(r"(?<=\d),(?=\d)")
_WHITELIST_RE = re.compile(r"^[0-9+\-*/().\s]+$")
_BINARY_OP_RE = re.compile(r"[\d)]\s*[-+*/]\s*[-+(\d.]")
_TOKEN_RE = re.compile(r"\s*(?:(\d+(?:\.\d*)?|\.\d+)|(.))")


class ExpressionError(ValueError):
    """Raised when an arithmetic expression cannot be parsed."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_math_expression(question: str) -> str | None:
    """
    Reduce a question to a bare arithmetic expression.

    Returns:
        The candidate expression, or None when the question is not
        arithmetic.
    """
    candidate = (question or "").lower().replace("’", "'").strip()

    for filler in _FILLERS:
        candidate = candidate.replace(filler, " ")
    for pattern, symbol in _WORD_OPERATORS:
        candidate = pattern.sub(symbol, candidate)
    candidate = _DECIMAL_COMMA_RE.sub(".", candidate)
    candidate = re.sub(r"\s+", " ", candidate).strip()

    if not candidate or len(candidate) > MAX_EXPRESSION_LENGTH:
        return None
    if not _WHITELIST_RE.match(candidate):
        return None
    if not _BINARY_OP_RE.search(candidate):
        return None
    return candidate


def evaluate_expression(expression: str) -> float:
    """
    Evaluate an arithmetic expression.

    Raises:
        ExpressionError: On any syntax error.
        ZeroDivisionError: On division by zero.
    """
    parser = _Parser(_tokenize(expression))
    value = parser.parse_expr()
    if parser.peek() is not None:
        raise ExpressionError(f"Unexpected token '{parser.peek()}'")
    return value


def evaluate_math_question(question: str) -> tuple[str, float] | None:
    """
    Extract and evaluate the arithmetic in a question.

    Returns:
        (expression, value), or None when the question is not arithmetic
        or the result is not a finite number.
    """
    expression = extract_math_expression(question)
    if expression is None:
        return None
    try:
        value = evaluate_expression(expression)
    except (ExpressionError, ZeroDivisionError, OverflowError):
        return None
    if not math.isfinite(value):
        return None
    return expression, value


def format_number(value: float) -> str:
    """French-style rendering: 4, 2,5, 0,3333333333."""
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return f"{value:.10g}".replace(".", ",")


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    for number, symbol in _TOKEN_RE.findall(expression):
        if number:
            tokens.append(number)
        elif symbol.strip():
            if symbol not in "+-*/()":
                raise ExpressionError(f"Invalid character '{symbol}'")
            tokens.append(symbol)
    return tokens


class _Parser:
    """Recursive-descent evaluator over a token list."""

    def __init__(self, tokens: list[str]) -> None:
        self._tokens = tokens
        self._pos = 0

    def peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> str:
        token = self.peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self._pos += 1
        return token

    def parse_expr(self) -> float:
        value = self._parse_term()
        while self.peek() in ("+", "-"):
            if self._next() == "+":
                value += self._parse_term()
            else:
                value -= self._parse_term()
        return value

    def _parse_term(self) -> float:
        value = self._parse_factor()
        while self.peek() in ("*", "/"):
            if self._next() == "*":
                value *= self._parse_factor()
            else:
                value /= self._parse_factor()
        return value

    def _parse_factor(self) -> float:
        token = self._next()
        if token == "+":
            return self._parse_factor()
        if token == "-":
            return -self._parse_factor()
        if token == "(":
            value = self.parse_expr()
            if self._next() != ")":
                raise ExpressionError("Missing closing parenthesis")
            return value
        if token in ("*", "/", ")"):
            raise ExpressionError(f"Unexpected token '{token}'")
        return float(token)
