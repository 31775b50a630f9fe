"""
Formula language for calculated and computed fields.

Grammar (keywords are case-insensitive):

    expr       := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := NUMBER | "(" expr ")" | "-" factor | aggregate | IDENT
    aggregate  := AGG "(" ("*" | IDENT | predicates) ["WHERE" predicates] ")"
    AGG        := SUM | COUNT | AVG | MIN | MAX
    predicates := predicate ("AND" predicate)*
    predicate  := IDENT OP literal
    OP         := = | != | > | >= | < | <= | contains | not_contains
    literal    := NUMBER | STRING | true | false | null

Dataset-level formulas work over a set of record rows; row-level formulas
(computed fields) work over a single record's extracted values and may not
contain aggregates.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from webhook_pipeline.core.exceptions import FormulaError
from webhook_pipeline.models.database.calculated_fields import FormulaType

MAX_FORMULA_LENGTH = 1000
MAX_NESTING_DEPTH = 32

AGGREGATE_FUNCTIONS = ("sum", "count", "avg", "min", "max")
COMPARISON_OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "contains", "not_contains")
_WORD_OPERATORS = ("contains", "not_contains")


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class FieldRef:
    name: str


@dataclass(frozen=True)
class Predicate:
    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class Aggregate:
    function: str
    field: Optional[str] = None  # None means COUNT(*) or COUNT(<predicates>)
    filters: Tuple[Predicate, ...] = ()


@dataclass(frozen=True)
class BinaryOp:
    operator: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Negate:
    operand: "Node"


@dataclass(frozen=True)
class Ratio:
    numerator: Aggregate
    denominator: Aggregate


Node = Union[Number, FieldRef, Aggregate, BinaryOp, Negate, Ratio]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

@dataclass
class Token:
    kind: str  # number, string, ident, op, punct, eof
    value: Any
    position: int = 0


def tokenize(source: str) -> List[Token]:
    """Split formula source into tokens."""
    tokens: List[Token] = []
    i = 0
    length = len(source)

    while i < length:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < length and source[i + 1].isdigit()):
            start = i
            while i < length and (source[i].isdigit() or source[i] == "."):
                i += 1
            text = source[start:i]
            try:
                value = float(text)
            except ValueError:
                raise FormulaError(f"Invalid number '{text}' at position {start}")
            if not math.isfinite(value):
                raise FormulaError(f"Number out of range at position {start}")
            tokens.append(Token("number", value, start))
            continue

        if ch in ("'", '"'):
            start = i
            quote = ch
            i += 1
            chars = []
            while i < length and source[i] != quote:
                if source[i] == "\\" and i + 1 < length:
                    i += 1
                chars.append(source[i])
                i += 1
            if i >= length:
                raise FormulaError(f"Unterminated string starting at position {start}")
            i += 1
            tokens.append(Token("string", "".join(chars), start))
            continue

        if ch.isalpha() or ch == "_":
            start = i
            while i < length and (source[i].isalnum() or source[i] in "_."):
                i += 1
            tokens.append(Token("ident", source[start:i], start))
            continue

        two = source[i:i + 2]
        if two in ("!=", ">=", "<=", "=="):
            tokens.append(Token("op", "=" if two == "==" else two, i))
            i += 2
            continue

        if ch in "=<>":
            tokens.append(Token("op", ch, i))
            i += 1
            continue

        if ch in "()+-*/,":
            tokens.append(Token("punct", ch, i))
            i += 1
            continue

        raise FormulaError(f"Unexpected character '{ch}' at position {i}")

    tokens.append(Token("eof", None, length))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    # Token helpers

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def at_punct(self, value: str) -> bool:
        token = self.peek()
        return token.kind == "punct" and token.value == value

    def at_keyword(self, word: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token.kind == "ident" and token.value.lower() == word

    def expect_punct(self, value: str) -> None:
        token = self.advance()
        if token.kind != "punct" or token.value != value:
            raise FormulaError(f"Expected '{value}' at position {token.position}")

    def _is_comparison(self, offset: int) -> bool:
        token = self.peek(offset)
        if token.kind == "op":
            return True
        return token.kind == "ident" and token.value.lower() in _WORD_OPERATORS

    # Grammar

    def parse(self) -> Node:
        node = self.expr()
        token = self.peek()
        if token.kind != "eof":
            raise FormulaError(f"Unexpected token '{token.value}' at position {token.position}")
        return node

    def expr(self) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise FormulaError("Formula is nested too deeply")
        try:
            node = self.term()
            while self.at_punct("+") or self.at_punct("-"):
                operator = self.advance().value
                node = BinaryOp(operator, node, self.term())
            return node
        finally:
            self.depth -= 1

    def term(self) -> Node:
        node = self.factor()
        while self.at_punct("*") or self.at_punct("/"):
            operator = self.advance().value
            node = BinaryOp(operator, node, self.factor())
        return node

    def factor(self) -> Node:
        token = self.peek()

        if token.kind == "number":
            self.advance()
            return Number(token.value)

        if token.kind == "punct" and token.value == "(":
            self.advance()
            node = self.expr()
            self.expect_punct(")")
            return node

        if token.kind == "punct" and token.value == "-":
            self.advance()
            self.depth += 1
            if self.depth > MAX_NESTING_DEPTH:
                raise FormulaError("Formula is nested too deeply")
            try:
                return Negate(self.factor())
            finally:
                self.depth -= 1

        if token.kind == "ident":
            name = token.value.lower()
            if name in AGGREGATE_FUNCTIONS and self.peek(1).kind == "punct" and self.peek(1).value == "(":
                return self.aggregate()
            self.advance()
            return FieldRef(token.value)

        if token.kind == "eof":
            raise FormulaError("Unexpected end of formula")
        raise FormulaError(f"Unexpected token '{token.value}' at position {token.position}")

    def aggregate(self) -> Aggregate:
        function = self.advance().value.lower()
        self.expect_punct("(")

        target: Optional[str] = None
        filters: List[Predicate] = []

        if self.at_punct("*"):
            self.advance()
            if function != "count":
                raise FormulaError(f"{function.upper()}(*) is not allowed; only COUNT(*)")
        elif self.peek().kind == "ident" and self._is_comparison(1):
            if function != "count":
                raise FormulaError(f"{function.upper()} needs a field to aggregate")
            filters.extend(self.predicates())
        elif self.peek().kind == "ident" and not self.at_keyword("where"):
            target = self.advance().value
        else:
            raise FormulaError(f"{function.upper()} expects a field, '*' or a condition")

        if self.at_keyword("where"):
            self.advance()
            filters.extend(self.predicates())

        self.expect_punct(")")
        return Aggregate(function, target, tuple(filters))

    def predicates(self) -> List[Predicate]:
        result = [self.predicate()]
        while self.at_keyword("and"):
            self.advance()
            result.append(self.predicate())
        return result

    def predicate(self) -> Predicate:
        token = self.advance()
        if token.kind != "ident":
            raise FormulaError(f"Expected field name at position {token.position}")

        op_token = self.advance()
        if op_token.kind == "op":
            operator = op_token.value
        elif op_token.kind == "ident" and op_token.value.lower() in _WORD_OPERATORS:
            operator = op_token.value.lower()
        else:
            raise FormulaError(f"Expected comparison operator at position {op_token.position}")

        return Predicate(token.value, operator, self.literal())

    def literal(self) -> Any:
        token = self.advance()
        if token.kind in ("number", "string"):
            return _as_int_if_whole(token.value) if token.kind == "number" else token.value
        if token.kind == "punct" and token.value == "-" and self.peek().kind == "number":
            return -_as_int_if_whole(self.advance().value)
        if token.kind == "ident":
            word = token.value.lower()
            if word == "true":
                return True
            if word == "false":
                return False
            if word == "null":
                return None
        raise FormulaError(f"Expected a literal value at position {token.position}")


def _as_int_if_whole(value: float) -> Union[int, float]:
    return int(value) if float(value).is_integer() else value


def _parse(source: str) -> Node:
    if source is None or not source.strip():
        raise FormulaError("Formula is empty")
    if len(source) > MAX_FORMULA_LENGTH:
        raise FormulaError(f"Formula exceeds {MAX_FORMULA_LENGTH} characters")
    return _Parser(tokenize(source)).parse()


def _walk(node: Node) -> Iterable[Node]:
    yield node
    if isinstance(node, BinaryOp):
        yield from _walk(node.left)
        yield from _walk(node.right)
    elif isinstance(node, Negate):
        yield from _walk(node.operand)
    elif isinstance(node, Ratio):
        yield node.numerator
        yield node.denominator


def parse_formula(formula_type: FormulaType, source: str) -> Node:
    """
    Parse a dataset-level formula and check it has the shape its type requires.

    Raises:
        FormulaError: Source does not parse or has the wrong shape
    """
    node = _parse(source)
    formula_type = FormulaType(formula_type)

    if formula_type == FormulaType.AGGREGATE:
        if not isinstance(node, Aggregate):
            raise FormulaError("Aggregate formulas must be a single aggregate, e.g. SUM(amount)")
        return node

    if formula_type == FormulaType.RATIO:
        if (
            isinstance(node, BinaryOp)
            and node.operator == "/"
            and isinstance(node.left, Aggregate)
            and isinstance(node.right, Aggregate)
        ):
            return Ratio(node.left, node.right)
        raise FormulaError("Ratio formulas must be aggregate / aggregate, e.g. SUM(won) / COUNT(*)")

    for child in _walk(node):
        if isinstance(child, FieldRef):
            raise FormulaError(
                f"Field '{child.name}' must be wrapped in an aggregate in a dataset formula"
            )
    return node


def parse_row_formula(source: str) -> Node:
    """Parse a computed-field formula evaluated against a single record."""
    node = _parse(source)
    for child in _walk(node):
        if isinstance(child, Aggregate):
            raise FormulaError("Computed field formulas cannot use aggregates")
    return node


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def to_number(value: Any) -> Optional[float]:
    """Numeric view of a value; None for anything that is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def compare(left: Any, operator: str, right: Any) -> bool:
    """
    Apply a comparison operator.

    Numbers (and numeric strings) compare numerically; other values compare
    as strings. Ordering comparisons against missing values are False.
    """
    if operator in ("contains", "not_contains"):
        if left is None:
            found = False
        elif isinstance(left, (list, tuple)):
            found = right in left
        else:
            found = str(right).lower() in str(left).lower()
        return found if operator == "contains" else not found

    if operator in ("=", "!="):
        equal = _equals(left, right)
        return equal if operator == "=" else not equal

    if left is None or right is None:
        return False

    left_num, right_num = to_number(left), to_number(right)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        return False

    if operator == ">":
        return a > b
    if operator == ">=":
        return a >= b
    if operator == "<":
        return a < b
    if operator == "<=":
        return a <= b
    raise FormulaError(f"Unknown operator '{operator}'")


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return left == right or str(left).lower() == str(right).lower()
    left_num, right_num = to_number(left), to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    return str(left) == str(right)


def matches(row: Dict[str, Any], filters: Iterable[Predicate]) -> bool:
    return all(compare(row.get(p.field), p.operator, p.value) for p in filters)


def evaluate_aggregate(aggregate: Aggregate, rows: Iterable[Dict[str, Any]]) -> Optional[float]:
    """
    Evaluate one aggregate over record rows.

    Empty input gives 0 for SUM and COUNT and None for AVG, MIN and MAX.
    """
    selected = [row for row in rows if matches(row, aggregate.filters)]

    if aggregate.function == "count":
        if aggregate.field is None:
            return len(selected)
        return sum(1 for row in selected if row.get(aggregate.field) is not None)

    values = [to_number(row.get(aggregate.field)) for row in selected]
    values = [v for v in values if v is not None]

    if aggregate.function == "sum":
        return _normalize(_finite(sum(values))) if values else 0
    if not values:
        return None
    if aggregate.function == "avg":
        total = _finite(sum(values))
        return None if total is None else total / len(values)
    if aggregate.function == "min":
        return _normalize(min(values))
    if aggregate.function == "max":
        return _normalize(max(values))
    raise FormulaError(f"Unknown aggregate function '{aggregate.function}'")


def _finite(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def _normalize(value: Optional[float]) -> Optional[Union[int, float]]:
    if value is None:
        return None
    return int(value) if float(value).is_integer() else value


def _arithmetic(operator: str, left: Optional[float], right: Optional[float]) -> Optional[float]:
    if left is None or right is None:
        return None
    if operator == "+":
        result = left + right
    elif operator == "-":
        result = left - right
    elif operator == "*":
        result = left * right
    elif operator == "/":
        if right == 0:
            return None
        result = left / right
    else:
        raise FormulaError(f"Unknown arithmetic operator '{operator}'")
    return result if math.isfinite(result) else None


def evaluate(node: Node, rows: List[Dict[str, Any]]) -> Optional[float]:
    """
    Evaluate a dataset-level formula over record rows.

    Missing operands and division by zero give None, never an exception.
    """
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Aggregate):
        return evaluate_aggregate(node, rows)
    if isinstance(node, Ratio):
        return _arithmetic("/", evaluate_aggregate(node.numerator, rows), evaluate_aggregate(node.denominator, rows))
    if isinstance(node, BinaryOp):
        return _arithmetic(node.operator, evaluate(node.left, rows), evaluate(node.right, rows))
    if isinstance(node, Negate):
        value = evaluate(node.operand, rows)
        return None if value is None else -value
    raise FormulaError(f"Cannot evaluate {type(node).__name__} over a dataset")


def evaluate_row(node: Node, row: Dict[str, Any]) -> Optional[float]:
    """Evaluate a computed-field formula against one record's values."""
    if isinstance(node, Number):
        return node.value
    if isinstance(node, FieldRef):
        return to_number(row.get(node.name))
    if isinstance(node, BinaryOp):
        return _arithmetic(node.operator, evaluate_row(node.left, row), evaluate_row(node.right, row))
    if isinstance(node, Negate):
        value = evaluate_row(node.operand, row)
        return None if value is None else -value
    raise FormulaError(f"Cannot evaluate {type(node).__name__} against a single record")
