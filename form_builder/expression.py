"""
Sandboxed expression language for derived-field formulas.

Formulas are user-authored text, so they are never handed to Python's own
evaluator. Text is tokenized, turned into an AST with a shunting-yard parser
and interpreted against an explicit map of named inputs. The interpreter has
no access to attributes, indexing, globals or I/O; the only callables are the
whitelisted functions in ``FUNCTIONS``.

Example formulas::

    age >= 18
    {price} * {quantity}
    years_between(birth_date, today())
    if(total > 100, "large", "small")
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union
import math
import re
import logging

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 500
MAX_DEPTH = 100
MAX_TEXT_LENGTH = 10_000

Clock = Callable[[], date]


class ExpressionError(Exception):
    """Base class for formula failures."""


class ExpressionSyntaxError(ExpressionError):
    """The formula text could not be tokenized or parsed."""

    def __init__(self, message: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message)


class ExpressionEvaluationError(ExpressionError):
    """The formula parsed but failed while being evaluated."""


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

NUMBER = 'number'
STRING = 'string'
LITERAL = 'literal'
NAME = 'name'
OPERATOR = 'operator'
LPAREN = '('
RPAREN = ')'
COMMA = ','


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int


_NUMBER_RE = re.compile(r'\d+(?:\.\d*)?|\.\d+')
_NAME_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_OPERATORS = ('===', '!==', '==', '!=', '<=', '>=', '&&', '||', '<', '>', '+', '-', '*', '/', '%', '!')
_KEYWORD_LITERALS = {'true': True, 'false': False, 'null': None}
_KEYWORD_OPERATORS = {'and': '&&', 'or': '||', 'not': '!'}
_OPERATOR_ALIASES = {'===': '==', '!==': '!='}
_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', "'": "'", '"': '"'}


def tokenize(text: str) -> List[Token]:
    """
    Split formula text into tokens.

    Raises:
        ExpressionSyntaxError: On an unexpected character or unterminated literal
    """
    tokens: List[Token] = []
    pos = 0
    length = len(text)

    while pos < length:
        char = text[pos]

        if char.isspace():
            pos += 1
            continue

        if char.isdigit() or (char == '.' and pos + 1 < length and text[pos + 1].isdigit()):
            match = _NUMBER_RE.match(text, pos)
            raw = match.group(0)
            value: Union[int, float] = float(raw) if '.' in raw else int(raw)
            tokens.append(Token(NUMBER, value, pos))
            pos = match.end()
            continue

        if char in ('"', "'"):
            value_text, end = _read_string(text, pos)
            tokens.append(Token(STRING, value_text, pos))
            pos = end
            continue

        if char == '{':
            end = text.find('}', pos + 1)
            if end == -1:
                raise ExpressionSyntaxError("Unterminated field reference", pos)
            name = text[pos + 1:end].strip()
            if not name:
                raise ExpressionSyntaxError("Empty field reference", pos)
            tokens.append(Token(NAME, name, pos))
            pos = end + 1
            continue

        match = _NAME_RE.match(text, pos)
        if match:
            word = match.group(0)
            if word in _KEYWORD_LITERALS:
                tokens.append(Token(LITERAL, _KEYWORD_LITERALS[word], pos))
            elif word in _KEYWORD_OPERATORS:
                tokens.append(Token(OPERATOR, _KEYWORD_OPERATORS[word], pos))
            else:
                tokens.append(Token(NAME, word, pos))
            pos = match.end()
            continue

        if char in '(),':
            tokens.append(Token(char, char, pos))
            pos += 1
            continue

        for symbol in _OPERATORS:
            if text.startswith(symbol, pos):
                tokens.append(Token(OPERATOR, _OPERATOR_ALIASES.get(symbol, symbol), pos))
                pos += len(symbol)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character {char!r}", pos)

    return tokens


def _read_string(text: str, start: int) -> Tuple[str, int]:
    quote = text[start]
    pos = start + 1
    chars: List[str] = []
    while pos < len(text):
        char = text[pos]
        if char == '\\' and pos + 1 < len(text):
            chars.append(_ESCAPES.get(text[pos + 1], text[pos + 1]))
            pos += 2
            continue
        if char == quote:
            return ''.join(chars), pos + 1
        chars.append(char)
        pos += 1
    raise ExpressionSyntaxError("Unterminated string", start)


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    depth: int = field(default=1, init=False, compare=False)

    def children(self) -> Tuple['Node', ...]:
        return ()

    def __post_init__(self):
        child_depths = [child.depth for child in self.children()]
        object.__setattr__(self, 'depth', 1 + max(child_depths, default=0))


@dataclass(frozen=True)
class Literal(Node):
    value: Any = None


@dataclass(frozen=True)
class Name(Node):
    name: str = ''


@dataclass(frozen=True)
class Unary(Node):
    op: str = ''
    operand: Optional[Node] = None

    def children(self):
        return (self.operand,)


@dataclass(frozen=True)
class Binary(Node):
    op: str = ''
    left: Optional[Node] = None
    right: Optional[Node] = None

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True)
class Call(Node):
    function: str = ''
    args: Tuple[Node, ...] = ()

    def children(self):
        return self.args


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

_BINARY_PRECEDENCE = {
    '||': 1,
    '&&': 2,
    '==': 3, '!=': 3,
    '<': 4, '<=': 4, '>': 4, '>=': 4,
    '+': 5, '-': 5,
    '*': 6, '/': 6, '%': 6,
}
_UNARY_PRECEDENCE = 7
_UNARY_OPERATORS = {'-', '+', '!'}


@dataclass
class _PendingOperator:
    symbol: str
    precedence: int
    unary: bool
    position: int


@dataclass
class _OpenParen:
    call: Optional[str]
    position: int
    arg_count: int = 0


def parse(tokens: List[Token]) -> Node:
    """
    Build an AST from tokens with the shunting-yard algorithm.

    Binary operators are left-associative; prefix operators bind tightest.
    A name immediately followed by ``(`` starts a function call.

    Raises:
        ExpressionSyntaxError: On any malformed input
    """
    if not tokens:
        raise ExpressionSyntaxError("Formula is empty")

    output: List[Node] = []
    stack: List[Union[_PendingOperator, _OpenParen]] = []
    expect_operand = True
    index = 0

    def reduce(item: _PendingOperator) -> None:
        needed = 1 if item.unary else 2
        if len(output) < needed:
            raise ExpressionSyntaxError(f"Missing operand for '{item.symbol}'", item.position)
        if item.unary:
            output.append(Unary(op=item.symbol, operand=output.pop()))
        else:
            right = output.pop()
            left = output.pop()
            output.append(Binary(op=item.symbol, left=left, right=right))
        if output[-1].depth > MAX_DEPTH:
            raise ExpressionSyntaxError("Formula is nested too deeply", item.position)

    def reduce_to_paren(position: int) -> _OpenParen:
        while stack and isinstance(stack[-1], _PendingOperator):
            reduce(stack.pop())
        if not stack:
            raise ExpressionSyntaxError("Unmatched ')'", position)
        return stack.pop()

    while index < len(tokens):
        token = tokens[index]

        if token.kind in (NUMBER, STRING, LITERAL):
            if not expect_operand:
                raise ExpressionSyntaxError("Unexpected value", token.position)
            output.append(Literal(value=token.value))
            expect_operand = False

        elif token.kind == NAME:
            if not expect_operand:
                raise ExpressionSyntaxError(f"Unexpected name '{token.value}'", token.position)
            is_call = index + 1 < len(tokens) and tokens[index + 1].kind == LPAREN
            if is_call:
                stack.append(_OpenParen(call=token.value, position=token.position))
                index += 2
                if index < len(tokens) and tokens[index].kind == RPAREN:
                    stack.pop()
                    output.append(Call(function=token.value, args=()))
                    expect_operand = False
                    index += 1
                continue
            output.append(Name(name=token.value))
            expect_operand = False

        elif token.kind == LPAREN:
            if not expect_operand:
                raise ExpressionSyntaxError("Unexpected '('", token.position)
            stack.append(_OpenParen(call=None, position=token.position))

        elif token.kind == COMMA:
            if expect_operand:
                raise ExpressionSyntaxError("Unexpected ','", token.position)
            while stack and isinstance(stack[-1], _PendingOperator):
                reduce(stack.pop())
            if not stack or stack[-1].call is None:
                raise ExpressionSyntaxError("',' outside of a function call", token.position)
            stack[-1].arg_count += 1
            expect_operand = True

        elif token.kind == RPAREN:
            if expect_operand:
                raise ExpressionSyntaxError("Unexpected ')'", token.position)
            paren = reduce_to_paren(token.position)
            if paren.call is not None:
                count = paren.arg_count + 1
                args = tuple(output[-count:])
                del output[-count:]
                output.append(Call(function=paren.call, args=args))
                if output[-1].depth > MAX_DEPTH:
                    raise ExpressionSyntaxError("Formula is nested too deeply", paren.position)
            expect_operand = False

        elif token.kind == OPERATOR:
            symbol = token.value
            if expect_operand:
                if symbol not in _UNARY_OPERATORS:
                    raise ExpressionSyntaxError(f"Unexpected operator '{symbol}'", token.position)
                stack.append(_PendingOperator(symbol, _UNARY_PRECEDENCE, True, token.position))
                index += 1
                continue
            if symbol == '!':
                raise ExpressionSyntaxError("Unexpected operator '!'", token.position)
            precedence = _BINARY_PRECEDENCE[symbol]
            while (stack and isinstance(stack[-1], _PendingOperator)
                   and stack[-1].precedence >= precedence):
                reduce(stack.pop())
            stack.append(_PendingOperator(symbol, precedence, False, token.position))
            expect_operand = True

        index += 1

    if expect_operand:
        raise ExpressionSyntaxError("Unexpected end of formula")

    while stack:
        item = stack.pop()
        if isinstance(item, _OpenParen):
            raise ExpressionSyntaxError("Unmatched '('", item.position)
        reduce(item)

    if len(output) != 1:
        raise ExpressionSyntaxError("Malformed formula")
    return output[0]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

_NUMERIC_TEXT = re.compile(r'^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$')


def _type_name(value: Any) -> str:
    if value is None:
        return 'empty'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, date):
        return 'date'
    if isinstance(value, str):
        return 'text'
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> Union[int, float]:
    """Coerce a value to a number; numeric text is accepted, booleans are not."""
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC_TEXT.match(text):
            return float(text) if '.' in text else int(text)
        raise ExpressionEvaluationError(f"'{value}' is not a number")
    raise ExpressionEvaluationError(f"Expected a number, got {_type_name(value)}")


def to_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        return str(_normalize_number(value))
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date_parser.parse(value.strip()).date()
        except (ValueError, OverflowError) as e:
            raise ExpressionEvaluationError(f"'{value}' is not a date") from e
    raise ExpressionEvaluationError(f"Expected a date, got {_type_name(value)}")


def is_truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (bool, int, float, str)):
        return bool(value)
    return True


def _normalize_number(value: Union[int, float]) -> Union[int, float]:
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ExpressionEvaluationError("Result is not a finite number")
        if value.is_integer():
            return int(value)
    return value


def _check_text(value: str) -> str:
    if len(value) > MAX_TEXT_LENGTH:
        raise ExpressionEvaluationError(f"Text result exceeds {MAX_TEXT_LENGTH} characters")
    return value


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------

def _round(value: Any, digits: Any = 0) -> Union[int, float]:
    number = to_number(value)
    places = int(to_number(digits))
    if not 0 <= places <= 10:
        raise ExpressionEvaluationError("round() digits must be between 0 and 10")
    factor = 10 ** places
    # half away from zero
    rounded = math.floor(abs(number) * factor + 0.5) / factor
    return _normalize_number(math.copysign(rounded, number))


def _years_between(start: Any, end: Any) -> int:
    first, second = to_date(start), to_date(end)
    years = second.year - first.year
    if (second.month, second.day) < (first.month, first.day):
        years -= 1
    return years


def _make_date(*args: Any) -> date:
    if len(args) == 1:
        return to_date(args[0])
    if len(args) == 3:
        try:
            return date(*(int(to_number(arg)) for arg in args))
        except ValueError as e:
            raise ExpressionEvaluationError(str(e)) from e
    raise ExpressionEvaluationError("date() takes 1 or 3 arguments")


def _numbers(args: Tuple[Any, ...]) -> List[Union[int, float]]:
    return [to_number(arg) for arg in args]


# name -> (min args, max args or None, implementation)
FUNCTIONS: Dict[str, Tuple[int, Optional[int], Callable[..., Any]]] = {
    'abs': (1, 1, lambda x: abs(to_number(x))),
    'min': (1, None, lambda *xs: min(_numbers(xs))),
    'max': (1, None, lambda *xs: max(_numbers(xs))),
    'round': (1, 2, _round),
    'floor': (1, 1, lambda x: math.floor(to_number(x))),
    'ceil': (1, 1, lambda x: math.ceil(to_number(x))),
    'len': (1, 1, lambda x: len(to_text(x))),
    'upper': (1, 1, lambda x: to_text(x).upper()),
    'lower': (1, 1, lambda x: to_text(x).lower()),
    'trim': (1, 1, lambda x: to_text(x).strip()),
    'concat': (1, None, lambda *xs: _check_text(''.join(to_text(x) for x in xs))),
    'number': (1, 1, to_number),
    'text': (1, 1, to_text),
    'date': (1, 3, _make_date),
    'year': (1, 1, lambda d: to_date(d).year),
    'month': (1, 1, lambda d: to_date(d).month),
    'day': (1, 1, lambda d: to_date(d).day),
    'days_between': (2, 2, lambda a, b: (to_date(b) - to_date(a)).days),
    'years_between': (2, 2, _years_between),
}


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------

class _Interpreter:
    def __init__(self, inputs: Mapping[str, Any], clock: Clock):
        self.inputs = inputs
        self.clock = clock

    def evaluate(self, node: Node) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Name):
            if node.name not in self.inputs:
                raise ExpressionEvaluationError(f"Unknown name '{node.name}'")
            return self.inputs[node.name]
        if isinstance(node, Unary):
            return self._unary(node.op, self.evaluate(node.operand))
        if isinstance(node, Binary):
            if node.op in ('&&', '||'):
                left = self.evaluate(node.left)
                if node.op == '&&':
                    return self.evaluate(node.right) if is_truthy(left) else left
                return left if is_truthy(left) else self.evaluate(node.right)
            return self._binary(node.op, self.evaluate(node.left), self.evaluate(node.right))
        if isinstance(node, Call):
            return self._call(node)
        raise ExpressionEvaluationError(f"Unsupported node {type(node).__name__}")

    def _call(self, node: Call) -> Any:
        name = node.function
        if name == 'if':
            self._check_arity(name, node.args, 3, 3)
            condition = self.evaluate(node.args[0])
            return self.evaluate(node.args[1] if is_truthy(condition) else node.args[2])
        if name == 'today':
            self._check_arity(name, node.args, 0, 0)
            return self.clock()
        if name not in FUNCTIONS:
            raise ExpressionEvaluationError(f"Unknown function '{name}'")
        minimum, maximum, implementation = FUNCTIONS[name]
        self._check_arity(name, node.args, minimum, maximum)
        args = [self.evaluate(arg) for arg in node.args]
        return implementation(*args)

    @staticmethod
    def _check_arity(name: str, args: Tuple[Node, ...], minimum: int, maximum: Optional[int]) -> None:
        count = len(args)
        if count < minimum or (maximum is not None and count > maximum):
            raise ExpressionEvaluationError(f"Wrong number of arguments for {name}()")

    @staticmethod
    def _unary(op: str, value: Any) -> Any:
        if op == '!':
            return not is_truthy(value)
        number = to_number(value)
        return -number if op == '-' else number

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op in ('==', '!='):
            equal = _loose_equals(left, right)
            return equal if op == '==' else not equal
        if op in ('<', '<=', '>', '>='):
            return _compare(op, left, right)
        if op == '+':
            if isinstance(left, str) or isinstance(right, str):
                return _check_text(to_text(left) + to_text(right))
            if isinstance(left, date) and _is_number(right):
                return left + timedelta(days=right)
            return _normalize_number(to_number(left) + to_number(right))
        if op == '-':
            if isinstance(left, date) and isinstance(right, date):
                return (to_date(left) - to_date(right)).days
            if isinstance(left, date):
                return left - timedelta(days=to_number(right))
            return _normalize_number(to_number(left) - to_number(right))
        a, b = to_number(left), to_number(right)
        if op == '*':
            return _normalize_number(a * b)
        if b == 0:
            raise ExpressionEvaluationError("Division by zero")
        if op == '/':
            return _normalize_number(a / b)
        return _normalize_number(a % b)


def _loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and isinstance(right, str) or isinstance(left, str) and _is_number(right):
        try:
            return to_number(left) == to_number(right)
        except ExpressionEvaluationError:
            return False
    if isinstance(left, date) and isinstance(right, str) or isinstance(left, str) and isinstance(right, date):
        try:
            return to_date(left) == to_date(right)
        except ExpressionEvaluationError:
            return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if _is_number(left) or _is_number(right):
        a, b = to_number(left), to_number(right)
    elif isinstance(left, date) or isinstance(right, date):
        a, b = to_date(left), to_date(right)
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        raise ExpressionEvaluationError(
            f"Cannot compare {_type_name(left)} with {_type_name(right)}"
        )
    if op == '<':
        return a < b
    if op == '<=':
        return a <= b
    if op == '>':
        return a > b
    return a >= b


def _collect_names(node: Node) -> FrozenSet[str]:
    names = set()
    pending = [node]
    while pending:
        current = pending.pop()
        if isinstance(current, Name):
            names.add(current.name)
        pending.extend(current.children())
    return frozenset(names)


class Expression:
    """A parsed formula, safe to cache and evaluate repeatedly."""

    def __init__(self, source: str, root: Node):
        self.source = source
        self.root = root
        self.names = _collect_names(root)

    def evaluate(self, inputs: Mapping[str, Any], clock: Optional[Clock] = None) -> Any:
        """
        Evaluate against named inputs.

        Args:
            inputs: Values visible to the formula, keyed by name
            clock: Source of ``today()``; defaults to the system date

        Returns:
            A scalar: number, text, boolean or None. Dates are returned as
            ISO-8601 text.

        Raises:
            ExpressionEvaluationError: On any runtime failure
        """
        interpreter = _Interpreter(dict(inputs), clock or date.today)
        try:
            result = interpreter.evaluate(self.root)
        except (ArithmeticError, RecursionError, ValueError, TypeError) as e:
            raise ExpressionEvaluationError(str(e) or type(e).__name__) from e
        if isinstance(result, date):
            return to_date(result).isoformat()
        if isinstance(result, str):
            return _check_text(result)
        return result

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


@lru_cache(maxsize=256)
def compile_expression(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> Expression:
    """
    Parse formula text into a reusable Expression.

    Raises:
        ExpressionSyntaxError: If the text is too long or malformed
    """
    if text is None or not text.strip():
        raise ExpressionSyntaxError("Formula is empty")
    if len(text) > max_length:
        raise ExpressionSyntaxError(f"Formula exceeds {max_length} characters")
    return Expression(text, parse(tokenize(text)))


def evaluate_expression(text: str, inputs: Mapping[str, Any], clock: Optional[Clock] = None,
                        max_length: int = DEFAULT_MAX_LENGTH) -> Any:
    """Compile and evaluate a formula in one step."""
    return compile_expression(text, max_length).evaluate(inputs, clock)
