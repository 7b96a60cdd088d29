"""Registry of named functions and the query expression parser."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic

from qrekit._core import (
    App,
    Bot,
    Choice,
    Combine,
    Eps,
    Expression,
    Iter,
    Sat,
    Split,
    _identity,
)
from qrekit._types import C, CombineFn, D, ExtractorFn, PredicateFn, TransformFn


class ExpressionParser:
    """
    Parser for human-readable query expressions.

    Forms:
        bot                         - Never matches
        eps(value)                  - Accept empty input with value
        sat(pred)                   - One item matching pred, value is the item
        sat(pred, extractor)        - One item matching pred, value extractor(item)
        choice(a, b, ...)           - Any alternative
        split(a, b, op)             - a then b, values joined by op
        iter(init, body, op)        - init then zero or more rounds of body
        app(e, fn)                  - Apply fn to e's value
        combine(a, b, op)           - a and b over the same items, joined by op

    Operators:
        a | b, a OR b               - Shorthand for choice(a, b)

    Function arguments name registered callables. Parameterized callables
    take their extra arguments inline: sat(above(10), price).

    Literals:
        42, -1.5                    - Numbers
        "text", 'text'              - Strings
        true, false                 - Booleans
        bare_word                   - Read as a string where a value is expected

    Multi-line expressions are supported (newlines are ignored) and
    # starts a comment.

    Examples:
        iter(eps(0), sat(any_item), add)
        combine(iter(eps(0), sat(any_item), add),
                iter(eps(0), sat(any_item, one), add),
                divide)
        sat(is_buy, price) | sat(is_sell, negated_price)
    """

    # Token types
    OR = "OR"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    IDENT = "IDENT"
    NUMBER = "NUMBER"
    STRING = "STRING"
    BOOL = "BOOL"  # For true/false literals
    EOF = "EOF"

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.tokens: list[tuple[str, Any]] = []
        self.token_pos = 0
        self._tokenize()

    def _tokenize(self) -> None:
        """Convert text into tokens."""
        while self.pos < len(self.text):
            ch = self.text[self.pos]

            # Skip whitespace and newlines
            if ch in " \t\n\r":
                self.pos += 1
                continue

            # Skip comments
            if ch == "#":
                while self.pos < len(self.text) and self.text[self.pos] != "\n":
                    self.pos += 1
                continue

            if ch == "|":
                self.tokens.append((self.OR, "|"))
                self.pos += 1
            elif ch == "(":
                self.tokens.append((self.LPAREN, "("))
                self.pos += 1
            elif ch == ")":
                self.tokens.append((self.RPAREN, ")"))
                self.pos += 1
            elif ch == ",":
                self.tokens.append((self.COMMA, ","))
                self.pos += 1

            # Strings
            elif ch in "\"'":
                self.tokens.append((self.STRING, self._read_string(ch)))

            # Numbers
            elif ch.isdigit() or (
                ch == "-"
                and self.pos + 1 < len(self.text)
                and self.text[self.pos + 1].isdigit()
            ):
                self.tokens.append((self.NUMBER, self._read_number()))

            # Identifiers and keywords
            elif ch.isalpha() or ch == "_":
                ident = self._read_ident()
                lower = ident.lower()
                if ident.upper() == "OR":
                    self.tokens.append((self.OR, ident))
                elif lower in ("true", "false"):
                    self.tokens.append((self.BOOL, lower == "true"))
                else:
                    self.tokens.append((self.IDENT, ident))

            else:
                raise ValueError(f"Unexpected character: {ch!r} at position {self.pos}")

        self.tokens.append((self.EOF, None))

    def _read_string(self, quote: str) -> str:
        """Read a quoted string with escape sequence processing."""
        self.pos += 1  # skip opening quote
        result = []
        while self.pos < len(self.text) and self.text[self.pos] != quote:
            if self.text[self.pos] == "\\" and self.pos + 1 < len(self.text):
                next_ch = self.text[self.pos + 1]
                escape_map = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\"}
                if next_ch in escape_map:
                    result.append(escape_map[next_ch])
                else:
                    result.append(next_ch)
                self.pos += 2
            else:
                result.append(self.text[self.pos])
                self.pos += 1
        if self.pos >= len(self.text):
            raise ValueError("Unterminated string literal")
        self.pos += 1  # skip closing quote
        return "".join(result)

    def _read_number(self) -> int | float:
        """Read a number."""
        start = self.pos
        if self.text[self.pos] == "-":
            self.pos += 1
        while self.pos < len(self.text) and (
            self.text[self.pos].isdigit() or self.text[self.pos] == "."
        ):
            self.pos += 1
        text = self.text[start : self.pos]
        return float(text) if "." in text else int(text)

    def _read_ident(self) -> str:
        """Read an identifier."""
        start = self.pos
        while self.pos < len(self.text) and (
            self.text[self.pos].isalnum() or self.text[self.pos] == "_"
        ):
            self.pos += 1
        return self.text[start : self.pos]

    def _peek(self) -> tuple[str, Any]:
        """Look at current token without consuming."""
        return self.tokens[self.token_pos]

    def _consume(self) -> tuple[str, Any]:
        """Consume and return current token."""
        token = self.tokens[self.token_pos]
        self.token_pos += 1
        return token

    def _expect(self, token_type: str) -> tuple[str, Any]:
        """Consume token and verify its type."""
        token = self._consume()
        if token[0] != token_type:
            raise ValueError(f"Expected {token_type}, got {token[0]}")
        return token

    def parse(self) -> Any:
        """
        Parse expression and return config.

        Grammar:
            expr     = choice
            choice   = primary (('|' | 'OR') primary)*
            primary  = IDENT args? | NUMBER | STRING | BOOL | '(' expr ')'
            args     = '(' (expr (',' expr)*)? ')'
        """
        result = self._parse_choice()
        if self._peek()[0] != self.EOF:
            raise ValueError(f"Unexpected token: {self._peek()}")
        return result

    def _parse_choice(self) -> Any:
        """Parse a | b | ... into a choice node."""
        items = [self._parse_primary()]
        while self._peek()[0] == self.OR:
            self._consume()
            items.append(self._parse_primary())

        if len(items) == 1:
            return items[0]
        return {"choice": items}

    def _parse_primary(self) -> Any:
        """Parse a call, a name, a literal or a grouped expression."""
        token = self._peek()

        if token[0] == self.LPAREN:
            self._consume()
            expr = self._parse_choice()
            self._expect(self.RPAREN)
            return expr

        if token[0] == self.IDENT:
            name = self._consume()[1]
            if self._peek()[0] == self.LPAREN:
                self._consume()  # (
                args = self._parse_args()
                self._expect(self.RPAREN)
                return {name: args}
            return name

        if token[0] in (self.NUMBER, self.STRING, self.BOOL):
            return self._consume()[1]

        raise ValueError(f"Unexpected token: {token}")

    def _parse_args(self) -> list:
        """Parse argument list."""
        args: list[Any] = []

        if self._peek()[0] == self.RPAREN:
            return args

        args.append(self._parse_choice())

        while self._peek()[0] == self.COMMA:
            self._consume()
            args.append(self._parse_choice())

        return args


def parse_expression(text: str) -> Any:
    """
    Parse a query expression into a config structure.

    Args:
        text: Expression string like "iter(eps(0), sat(any_item), add)"

    Returns:
        Config compatible with Registry.load()

    Example:
        >>> parse_expression("sat(is_buy, price) | bot")
        {'choice': [{'sat': ['is_buy', 'price']}, 'bot']}
    """
    return ExpressionParser(text).parse()


def _bind(fn: Callable[..., Any], name: str, args: list, kwargs: dict) -> Callable:
    """Fix the trailing parameters of a registered factory."""

    def bound(*values: Any) -> Any:
        return fn(*values, *args, **kwargs)

    bound.__name__ = name
    return bound


class Registry(Generic[D, C]):
    """
    Registry for the named functions a query is built from.

    Allows loading queries from human-readable expressions or dict config.

    Example:
        reg: Registry[Trade, float] = Registry()

        @reg.predicate
        def is_buy(t: Trade) -> bool:
            return t.side == "buy"

        @reg.predicate
        def larger_than(t: Trade, size: float) -> bool:
            return t.size > size

        @reg.extractor
        def price(t: Trade) -> float:
            return t.price

        @reg.combiner
        def add(a: float, b: float) -> float:
            return a + b

        total = reg.load("iter(eps(0), sat(is_buy, price), add)")
        large = reg.load({"sat": [{"larger_than": [100]}, "price"]})
    """

    # Form name -> parameter names (None = variadic)
    FORMS: dict[str, tuple[str, ...] | None] = {
        "bot": (),
        "eps": ("value",),
        "sat": ("predicate", "extractor"),
        "choice": None,
        "split": ("left", "right", "combine"),
        "iter": ("init", "body", "combine"),
        "app": ("inner", "transform"),
        "combine": ("left", "right", "combine"),
    }

    # Role -> number of stream/value arguments
    ARITY = {"predicate": 1, "extractor": 1, "transform": 1, "combiner": 2}

    def __init__(self) -> None:
        self._functions: dict[str, dict[str, tuple[Callable[..., Any], bool]]] = {
            role: {} for role in self.ARITY
        }

    def _register(self, role: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        params = list(inspect.signature(fn).parameters)
        is_factory = len(params) > self.ARITY[role]
        self._functions[role][fn.__name__] = (fn, is_factory)
        return fn

    def predicate(self, fn: Callable[..., bool]) -> Callable[..., bool]:
        """
        Decorator to register an item predicate.

        Extra parameters beyond the item make it a factory whose arguments
        are given in the expression: larger_than(100).
        """
        return self._register("predicate", fn)

    def extractor(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator to register an item -> value extractor."""
        return self._register("extractor", fn)

    def transform(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator to register a value -> value transform used by app()."""
        return self._register("transform", fn)

    def combiner(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator to register a binary combinator used by split/iter/combine."""
        return self._register("combiner", fn)

    def load(self, expr: str | dict) -> Expression[D, C]:
        """
        Load a query from an expression string or a parsed config.

        Expression format:
            # Running sum of every item
            iter(eps(0), sat(any_item), add)

            # Running average
            combine(iter(eps(0), sat(any_item), add),
                    iter(eps(0), sat(any_item, one), add),
                    divide)

            # Alternatives
            sat(is_buy, price) | sat(is_sell, price)

            # Parameterized functions
            sat(larger_than(100), price)

        Config format mirrors the parse tree:
            {"iter": [{"eps": [0]}, {"sat": ["any_item"]}, "add"]}
            {"iter": {"init": {"eps": [0]}, "body": {"sat": ["any_item"]},
                      "combine": "add"}}
        """
        config = parse_expression(expr) if isinstance(expr, str) else expr
        return self._build(config)

    def load_file(self, path: str) -> Expression[D, C]:
        """Load a query from an expression file."""
        content = Path(path).read_text()
        return self.load(content)

    def _build(self, node: Any) -> Expression[D, C]:
        """Build an expression from a parsed config node."""
        if isinstance(node, str):
            if node == "bot":
                return Bot()
            raise ValueError(f"Unknown expression: '{node}'")

        if not isinstance(node, dict):
            raise ValueError(f"Invalid expression node: {node!r}")
        if len(node) != 1:
            raise ValueError(f"Config node must have exactly one key: {node}")

        key, value = next(iter(node.items()))
        if key not in self.FORMS:
            raise ValueError(f"Unknown expression form: '{key}'")

        if key == "choice":
            if not isinstance(value, list):
                raise ValueError("choice expects a list of expressions")
            return Choice(tuple(self._build(item) for item in value))

        args = self._bind_args(key, value)

        if key == "bot":
            return Bot()

        elif key == "eps":
            return Eps(args["value"])

        elif key == "sat":
            predicate: PredicateFn = self._resolve("predicate", args["predicate"])
            extractor: ExtractorFn = (
                self._resolve("extractor", args["extractor"])
                if "extractor" in args
                else _identity
            )
            return Sat(predicate, extractor)

        elif key == "app":
            transform: TransformFn = self._resolve("transform", args["transform"])
            return App(self._build(args["inner"]), transform)

        combiner: CombineFn = self._resolve("combiner", args["combine"])
        if key == "split":
            return Split(
                self._build(args["left"]), self._build(args["right"]), combiner
            )
        elif key == "iter":
            return Iter(self._build(args["init"]), self._build(args["body"]), combiner)
        else:  # combine
            return Combine(
                self._build(args["left"]), self._build(args["right"]), combiner
            )

    def _bind_args(self, form: str, value: Any) -> dict[str, Any]:
        """Match positional or keyword config arguments to a form's parameters."""
        params = self.FORMS[form]
        assert params is not None

        if value is None:
            value = []
        if isinstance(value, dict):
            unknown = set(value) - set(params)
            if unknown:
                raise ValueError(f"{form}() got unexpected arguments: {sorted(unknown)}")
            args = dict(value)
        elif isinstance(value, list):
            if len(value) > len(params):
                raise ValueError(
                    f"{form}() takes at most {len(params)} arguments, got {len(value)}"
                )
            args = dict(zip(params, value))
        else:
            args = dict(zip(params, [value]))

        required = params[:1] if form == "sat" else params
        missing = [p for p in required if p not in args]
        if missing:
            raise ValueError(f"{form}() missing arguments: {', '.join(missing)}")
        return args

    def _resolve(
        self, role: str, node: Any
    ) -> PredicateFn | ExtractorFn | TransformFn | CombineFn:
        """
        Resolve a function reference, optionally with factory arguments.

        The result takes only stream values: one item or value for
        predicates, extractors and transforms, two values for combiners.
        """
        if isinstance(node, str):
            name, args = node, None
        elif isinstance(node, dict) and len(node) == 1:
            name, args = next(iter(node.items()))
        else:
            raise ValueError(f"Expected a {role} name, got {node!r}")

        if name not in self._functions[role]:
            raise ValueError(f"Unknown {role}: '{name}'")
        fn, is_factory = self._functions[role][name]

        if args is None:
            if is_factory:
                raise ValueError(f"{role.capitalize()} '{name}' requires arguments")
            return fn

        if not is_factory:
            raise ValueError(f"{role.capitalize()} '{name}' does not take arguments")
        if isinstance(args, list):
            return _bind(fn, f"{name}({', '.join(map(repr, args))})", args, {})
        elif isinstance(args, dict):
            return _bind(fn, f"{name}(**{args!r})", [], args)
        else:
            return _bind(fn, f"{name}({args!r})", [args], {})
