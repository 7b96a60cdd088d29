"""Plain English rendering of query trees."""

from __future__ import annotations

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
    _callable_name,
    _identity,
)


def explain(expr: Expression, verbose: bool = False) -> str:
    """
    Generate a plain English explanation of what a query computes.

    Args:
        expr: The query to explain
        verbose: If True, also name the value extracted by every match

    Returns:
        Human-readable explanation string

    Example:
        total = eps(0).iterate(sat(is_trade, price), operator.add)
        print(explain(total))

        # Output:
        # Loop, folding rounds with add:
        #   • start: Value 0 (no input)
        #   • repeat: Match: is_trade (value: price)
    """
    # Stack items: (expression, depth, label)
    # Children are pushed in reverse so output comes out in order
    output_lines: list[str] = []
    stack: list[tuple[Expression, int, str]] = [(expr, 0, "")]

    while stack:
        node, depth, label = stack.pop()
        indent = "  " * depth
        bullet = "• " if depth > 0 else ""
        prefix = f"{indent}{bullet}{label}"

        if isinstance(node, Bot):
            output_lines.append(f"{prefix}Never matches")

        elif isinstance(node, Eps):
            output_lines.append(f"{prefix}Value {node.value!r} (no input)")

        elif isinstance(node, Sat):
            line = f"{prefix}Match: {node.name}"
            if verbose or node.extractor is not _identity:
                value = (
                    "item"
                    if node.extractor is _identity
                    else _callable_name(node.extractor)
                )
                line += f" (value: {value})"
            output_lines.append(line)

        elif isinstance(node, Choice):
            output_lines.append(f"{prefix}ANY of:")
            for child in reversed(node.alternatives):
                stack.append((child, depth + 1, ""))

        elif isinstance(node, Split):
            name = _callable_name(node.combine)
            output_lines.append(f"{prefix}In sequence, joined by {name}:")
            stack.append((node.right, depth + 1, "then: "))
            stack.append((node.left, depth + 1, "first: "))

        elif isinstance(node, Iter):
            name = _callable_name(node.combine)
            output_lines.append(f"{prefix}Loop, folding rounds with {name}:")
            stack.append((node.body, depth + 1, "repeat: "))
            stack.append((node.init, depth + 1, "start: "))

        elif isinstance(node, App):
            name = _callable_name(node.transform)
            output_lines.append(f"{prefix}Apply {name} to:")
            stack.append((node.inner, depth + 1, ""))

        elif isinstance(node, Combine):
            name = _callable_name(node.combine)
            output_lines.append(f"{prefix}In parallel, joined by {name}:")
            stack.append((node.right, depth + 1, ""))
            stack.append((node.left, depth + 1, ""))

        # Fallback
        else:
            output_lines.append(f"{prefix}{node!r}")

    return "\n".join(output_lines)
