"""Tests for Registry, ExpressionParser and parse_expression."""

from __future__ import annotations

import operator
from dataclasses import dataclass

import pytest

from qrekit import (
    App,
    Bot,
    Choice,
    Combine,
    Eps,
    ExpressionParser,
    Iter,
    Registry,
    Sat,
    Solver,
    Split,
    parse_expression,
)


@dataclass
class Trade:
    side: str
    price: float
    size: float = 1.0


@pytest.fixture
def registry():
    reg = Registry[Trade, float]()

    @reg.predicate
    def any_item(t):
        return True

    @reg.predicate
    def is_buy(t):
        return t.side == "buy"

    @reg.predicate
    def is_sell(t):
        return t.side == "sell"

    @reg.predicate
    def larger_than(t, size):
        return t.size > size

    @reg.extractor
    def price(t):
        return t.price

    @reg.extractor
    def one(t):
        return 1

    @reg.extractor
    def scaled(t, factor):
        return t.price * factor

    @reg.transform
    def negate(x):
        return -x

    @reg.combiner
    def add(a, b):
        return a + b

    @reg.combiner
    def divide(a, b):
        return a / b

    return reg


# =============================================================================
# Parser
# =============================================================================


class TestParseExpression:
    def test_bare_name(self):
        assert parse_expression("bot") == "bot"

    def test_call(self):
        assert parse_expression("eps(0)") == {"eps": [0]}

    def test_nested_calls(self):
        assert parse_expression("iter(eps(0), sat(any_item, price), add)") == {
            "iter": [{"eps": [0]}, {"sat": ["any_item", "price"]}, "add"]
        }

    def test_choice_operator(self):
        assert parse_expression("sat(is_buy) | sat(is_sell) | bot") == {
            "choice": [{"sat": ["is_buy"]}, {"sat": ["is_sell"]}, "bot"]
        }

    def test_or_keyword(self):
        assert parse_expression("bot OR bot") == {"choice": ["bot", "bot"]}

    def test_grouping(self):
        assert parse_expression("(bot | eps(1))") == {"choice": ["bot", {"eps": [1]}]}

    def test_choice_inside_arguments(self):
        assert parse_expression("app(bot | bot, negate)") == {
            "app": [{"choice": ["bot", "bot"]}, "negate"]
        }

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("eps(42)", 42),
            ("eps(-1.5)", -1.5),
            ('eps("a b")', "a b"),
            ("eps('it\\'s')", "it's"),
            ("eps(true)", True),
            ("eps(FALSE)", False),
            ("eps(word)", "word"),
        ],
    )
    def test_literals(self, text, expected):
        assert parse_expression(text) == {"eps": [expected]}

    def test_empty_args(self):
        assert parse_expression("bot()") == {"bot": []}

    def test_comments_and_newlines(self):
        text = """
        # running total
        iter(eps(0),   # start
             sat(any_item),
             add)
        """
        assert parse_expression(text) == {
            "iter": [{"eps": [0]}, {"sat": ["any_item"]}, "add"]
        }

    def test_unexpected_character(self):
        with pytest.raises(ValueError, match="Unexpected character"):
            parse_expression("eps(1) & eps(2)")

    def test_unterminated_string(self):
        with pytest.raises(ValueError, match="Unterminated string"):
            parse_expression('eps("oops)')

    def test_missing_paren(self):
        with pytest.raises(ValueError, match="Expected RPAREN"):
            parse_expression("eps(1")

    def test_trailing_tokens(self):
        with pytest.raises(ValueError, match="Unexpected token"):
            parse_expression("eps(1) eps(2)")

    def test_parser_tokens(self):
        parser = ExpressionParser("a | b")
        assert [t[0] for t in parser.tokens] == [
            ExpressionParser.IDENT,
            ExpressionParser.OR,
            ExpressionParser.IDENT,
            ExpressionParser.EOF,
        ]


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_decorators_return_function(self, registry):
        @registry.combiner
        def multiply(a, b):
            return a * b

        assert multiply(2, 3) == 6

    def test_load_bot(self, registry):
        assert registry.load("bot") == Bot()
        assert registry.load({"bot": []}) == Bot()

    def test_load_eps(self, registry):
        assert registry.load("eps(3)") == Eps(3)
        assert registry.load({"eps": 3}) == Eps(3)

    def test_load_sat_default_extractor(self, registry):
        q = registry.load("sat(is_buy)")
        assert isinstance(q, Sat)
        assert q.name == "is_buy"
        t = Trade("buy", 4.0)
        assert q.derive(t) == [Eps(t)]

    def test_load_sat_with_extractor(self, registry):
        q = registry.load("sat(is_buy, price)")
        assert q.derive(Trade("buy", 4.0)) == [Eps(4.0)]
        assert q.derive(Trade("sell", 4.0)) == [Bot()]

    def test_load_each_form(self, registry):
        assert isinstance(registry.load("split(eps(1), eps(2), add)"), Split)
        assert isinstance(registry.load("iter(eps(1), sat(any_item), add)"), Iter)
        assert isinstance(registry.load("app(eps(1), negate)"), App)
        assert isinstance(registry.load("combine(eps(1), eps(2), add)"), Combine)
        assert isinstance(registry.load("choice(eps(1), bot, bot)"), Choice)

    def test_resolved_functions_take_stream_values(self, registry):
        q = registry.load(
            "split(sat(larger_than(5), scaled(2)), app(sat(any_item), negate), add)"
        )
        big, small = Trade("buy", 3.0, size=6), Trade("buy", 3.0, size=2)

        assert q.left.predicate(big) is True
        assert q.left.predicate(small) is False
        assert q.left.extractor(big) == 6.0
        assert q.right.transform(4.0) == -4.0
        assert q.combine(1.0, 2.5) == 3.5

    def test_load_keyword_config(self, registry):
        q = registry.load(
            {
                "iter": {
                    "init": {"eps": [0]},
                    "body": {"sat": {"predicate": "is_buy", "extractor": "price"}},
                    "combine": "add",
                }
            }
        )
        solver = Solver(q)
        solver.feed([Trade("buy", 2.0), Trade("buy", 3.0)])
        assert solver.value() == 5.0

    def test_running_average(self, registry):
        q = registry.load(
            """
            combine(iter(eps(0), sat(any_item, price), add),
                    iter(eps(0), sat(any_item, one), add),
                    divide)
            """
        )
        solver = Solver(q)
        solver.feed(Trade("buy", float(p)) for p in (2, 4, 9))
        assert solver.value() == pytest.approx(5.0)

    def test_choice_of_sides(self, registry):
        q = registry.load(
            "iter(eps(0), sat(is_buy, price) | app(sat(is_sell, price), negate), add)"
        )
        solver = Solver(q)
        solver.feed([Trade("buy", 10.0), Trade("sell", 4.0), Trade("buy", 1.0)])
        assert solver.value() == pytest.approx(7.0)

    def test_factory_arguments(self, registry):
        q = registry.load("sat(larger_than(5), scaled(10))")
        assert q.derive(Trade("buy", 2.0, size=6)) == [Eps(20.0)]
        assert q.derive(Trade("buy", 2.0, size=5)) == [Bot()]
        assert q.name == "larger_than(5)"

    def test_factory_keyword_arguments(self, registry):
        q = registry.load({"sat": [{"larger_than": {"size": 1}}]})
        assert q.derive(Trade("buy", 2.0, size=2)) != [Bot()]

    def test_load_file(self, registry, tmp_path):
        path = tmp_path / "total.qre"
        path.write_text("iter(eps(0), sat(any_item, price), add)\n")
        solver = Solver(registry.load_file(str(path)))
        solver.feed([Trade("buy", 1.5), Trade("sell", 2.5)])
        assert solver.value() == pytest.approx(4.0)

    def test_unknown_expression(self, registry):
        with pytest.raises(ValueError, match="Unknown expression: 'total'"):
            registry.load("total")

    def test_unknown_form(self, registry):
        with pytest.raises(ValueError, match="Unknown expression form"):
            registry.load("star(eps(0))")

    def test_unknown_function(self, registry):
        with pytest.raises(ValueError, match="Unknown predicate: 'is_big'"):
            registry.load("sat(is_big)")

    def test_roles_are_separate(self, registry):
        with pytest.raises(ValueError, match="Unknown combiner: 'price'"):
            registry.load("split(eps(0), eps(1), price)")

    def test_factory_requires_arguments(self, registry):
        with pytest.raises(ValueError, match="requires arguments"):
            registry.load("sat(larger_than)")

    def test_plain_function_rejects_arguments(self, registry):
        with pytest.raises(ValueError, match="does not take arguments"):
            registry.load("sat(is_buy(3))")

    def test_missing_arguments(self, registry):
        with pytest.raises(ValueError, match="missing arguments: combine"):
            registry.load("split(eps(0), eps(1))")

    def test_too_many_arguments(self, registry):
        with pytest.raises(ValueError, match="at most 1 arguments"):
            registry.load("eps(1, 2)")

    def test_unexpected_keyword(self, registry):
        with pytest.raises(ValueError, match="unexpected arguments"):
            registry.load({"eps": {"value": 1, "other": 2}})

    def test_multi_key_node(self, registry):
        with pytest.raises(ValueError, match="exactly one key"):
            registry.load({"eps": [1], "bot": []})

    def test_literal_in_expression_position(self, registry):
        with pytest.raises(ValueError, match="Invalid expression node"):
            registry.load("split(1, eps(1), add)")

    def test_matches_hand_built_query(self, registry):
        built = registry.load("iter(eps(0), sat(any_item, price), add)")
        solver = Solver(built)
        trades = [Trade("buy", float(i)) for i in range(101)]
        solver.feed(trades)
        assert solver.value() == 5050.0
        assert built.combine(1, 2) == operator.add(1, 2)
