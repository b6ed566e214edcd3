# expressions.py
"""
Condition and interpolation expressions.

Supported syntax (a subset of the GitHub Actions expression language):

    literals      'text' (quote escaped as ''), 42, 1.5, true, false, null
    contexts      github.ref, env.NAME, matrix.py, needs.build.result, needs['x y'].result
    operators     !  ==  !=  <  <=  >  >=  &&  ||  ( )
    functions     success() failure() always() contains(a, b) startsWith(a, b) endsWith(a, b)

An `if:` expression that does not call a status function is implicitly
`success() && (<expression>)`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from .errors import ExpressionError

STATUS_FUNCTIONS = frozenset({"success", "failure", "always"})

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?)
      | (?P<string>'(?:[^']|'')*')
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!()\[\],.])
      | (?P<name>[A-Za-z_][A-Za-z0-9_-]*)
    )
    """,
    re.VERBOSE,
)

_INTERPOLATION_RE = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")

_COMPARISONS = ("==", "!=", "<", "<=", ">", ">=")


@dataclass(frozen=True)
class StatusCheck:
    """Inputs to the status functions (from needed jobs, or from earlier steps)."""
    success: bool = True
    failure: bool = False


Node = Tuple[Any, ...]


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(
                message=f"unexpected character {text[pos:].strip()[:1]!r} at offset {pos}",
                expression=text,
            )
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, op: str) -> bool:
        tok = self._peek()
        if tok and tok[0] == "op" and tok[1] == op:
            self.pos += 1
            return True
        return False

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            tok = self._peek()
            found = tok[1] if tok else "end of expression"
            raise ExpressionError(message=f"expected {op!r}, found {found!r}", expression=self.text)

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError(message="empty expression", expression=self.text)
        node = self._or()
        if self._peek() is not None:
            raise ExpressionError(
                message=f"unexpected token {self._peek()[1]!r}", expression=self.text
            )
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._accept("||"):
            node = ("or", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._comparison()
        while self._accept("&&"):
            node = ("and", node, self._comparison())
        return node

    def _comparison(self) -> Node:
        node = self._unary()
        tok = self._peek()
        if tok and tok[0] == "op" and tok[1] in _COMPARISONS:
            self.pos += 1
            node = ("cmp", tok[1], node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._accept("!"):
            return ("not", self._unary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self._peek()
        if tok is None:
            raise ExpressionError(message="unexpected end of expression", expression=self.text)
        kind, value = tok
        self.pos += 1

        if kind == "number":
            return ("lit", float(value) if "." in value else int(value))
        if kind == "string":
            return ("lit", value[1:-1].replace("''", "'"))
        if kind == "op" and value == "(":
            node = self._or()
            self._expect(")")
            return node
        if kind == "name":
            lowered = value.lower()
            if lowered in ("true", "false"):
                return ("lit", lowered == "true")
            if lowered == "null":
                return ("lit", None)
            if self._accept("("):
                args: List[Node] = []
                if not self._accept(")"):
                    args.append(self._or())
                    while self._accept(","):
                        args.append(self._or())
                    self._expect(")")
                return ("call", value, tuple(args))
            return self._path(value)
        raise ExpressionError(message=f"unexpected token {value!r}", expression=self.text)

    def _path(self, root: str) -> Node:
        parts: List[Any] = [root]
        while True:
            if self._accept("."):
                tok = self._peek()
                if not tok or tok[0] != "name":
                    raise ExpressionError(message="expected property name after '.'", expression=self.text)
                self.pos += 1
                parts.append(tok[1])
            elif self._accept("["):
                parts.append(self._or())
                self._expect("]")
            else:
                return ("ctx", tuple(parts))


@lru_cache(maxsize=512)
def compile_expression(text: str) -> Node:
    """Parse an expression into a small AST. Raises ExpressionError on bad syntax."""
    return _Parser(strip_wrapper(text)).parse()


def strip_wrapper(text: str) -> str:
    text = text.strip()
    if text.startswith("${{") and text.endswith("}}"):
        return text[3:-2].strip()
    return text


def uses_status_function(node: Node) -> bool:
    kind = node[0]
    if kind == "call":
        return node[1].lower() in STATUS_FUNCTIONS or any(uses_status_function(a) for a in node[2])
    if kind in ("and", "or"):
        return uses_status_function(node[1]) or uses_status_function(node[2])
    if kind == "not":
        return uses_status_function(node[1])
    if kind == "cmp":
        return uses_status_function(node[2]) or uses_status_function(node[3])
    return False


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------

def truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        try:
            return float(value.strip()) if value.strip() else 0.0
        except ValueError:
            return None
    return None


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left.casefold()
        b: Any = right.casefold()
    elif type(left) is type(right):
        a, b = left, right
    else:
        a, b = _to_number(left), _to_number(right)
        if a is None or b is None:
            a, b = str(left), str(right)

    if op == "==":
        return a == b
    if op == "!=":
        return a != b
    try:
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        return a >= b
    except TypeError:
        return False


def _lookup(value: Any, key: Any) -> Any:
    if isinstance(value, dict):
        if key in value:
            return value[key]
        if isinstance(key, str):
            for k, v in value.items():
                if isinstance(k, str) and k.casefold() == key.casefold():
                    return v
        return None
    if isinstance(value, (list, tuple)) and isinstance(key, (int, float)) and not isinstance(key, bool):
        idx = int(key)
        return value[idx] if 0 <= idx < len(value) else None
    return None


def _call(name: str, args: List[Any], status: StatusCheck, text: str) -> Any:
    fn = name.lower()
    if fn in STATUS_FUNCTIONS:
        if args:
            raise ExpressionError(message=f"{name}() takes no arguments", expression=text)
        if fn == "always":
            return True
        if fn == "success":
            return status.success
        return status.failure

    if fn in ("contains", "startswith", "endswith"):
        if len(args) != 2:
            raise ExpressionError(message=f"{name}() takes exactly 2 arguments", expression=text)
        haystack, needle = args
        if fn == "contains" and isinstance(haystack, (list, tuple)):
            return any(_compare("==", item, needle) for item in haystack)
        h = "" if haystack is None else str(haystack).casefold()
        n = "" if needle is None else str(needle).casefold()
        if fn == "contains":
            return n in h
        if fn == "startswith":
            return h.startswith(n)
        return h.endswith(n)

    raise ExpressionError(message=f"unknown function {name!r}", expression=text)


def _eval(node: Node, contexts: Dict[str, Any], status: StatusCheck, text: str) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "ctx":
        parts = node[1]
        value = _lookup(contexts, parts[0])
        for part in parts[1:]:
            key = part if isinstance(part, str) else _eval(part, contexts, status, text)
            value = _lookup(value, key)
        return value
    if kind == "not":
        return not truthy(_eval(node[1], contexts, status, text))
    if kind == "and":
        left = _eval(node[1], contexts, status, text)
        return _eval(node[2], contexts, status, text) if truthy(left) else left
    if kind == "or":
        left = _eval(node[1], contexts, status, text)
        return left if truthy(left) else _eval(node[2], contexts, status, text)
    if kind == "cmp":
        return _compare(
            node[1],
            _eval(node[2], contexts, status, text),
            _eval(node[3], contexts, status, text),
        )
    if kind == "call":
        args = [_eval(a, contexts, status, text) for a in node[2]]
        return _call(node[1], args, status, text)
    raise ExpressionError(message=f"bad expression node {kind!r}", expression=text)


def evaluate(text: str, contexts: Dict[str, Any], status: Optional[StatusCheck] = None) -> Any:
    node = compile_expression(text)
    return _eval(node, contexts, status or StatusCheck(), text)


def evaluate_condition(
    text: Optional[str],
    contexts: Dict[str, Any],
    status: StatusCheck,
) -> bool:
    """Evaluate an `if:` predicate. A missing predicate means `success()`."""
    if text is None or not str(text).strip():
        return status.success
    node = compile_expression(str(text))
    if not uses_status_function(node):
        if not status.success:
            return False
    return truthy(_eval(node, contexts, status, str(text)))


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def interpolate(text: str, contexts: Dict[str, Any]) -> str:
    """Replace every `${{ expr }}` in text with its rendered value."""
    if "${{" not in text:
        return text
    return _INTERPOLATION_RE.sub(lambda m: _render(evaluate(m.group(1), contexts)), text)


def interpolate_value(value: Any, contexts: Dict[str, Any]) -> Any:
    """Interpolate strings nested in lists/dicts (used for `with` parameters)."""
    if isinstance(value, str):
        return interpolate(value, contexts)
    if isinstance(value, list):
        return [interpolate_value(v, contexts) for v in value]
    if isinstance(value, dict):
        return {k: interpolate_value(v, contexts) for k, v in value.items()}
    return value
