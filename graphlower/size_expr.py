"""
Work-size expressions of custom kernels.

A size expression is a comma separated list of arithmetic expressions over
integer literals and named variables, e.g. ``"X, Y*2, (F+15)/16"``. Variables
are node parameters and the ``B``, ``F``, ``Y``, ``X`` dims of the node's
first output.
"""

from functools import lru_cache
from typing import List, Mapping, Union

from lark import Lark, Transformer, Tree, v_args
from lark.exceptions import LarkError, VisitError

from .errors import CustomRuleError

Number = Union[int, float]

SIZE_GRAMMAR = r'''
?start: sizes

sizes: sum ("," sum)*

?sum: product
    | sum "+" product -> add
    | sum "-" product -> sub

?product: unary
        | product "*" unary -> mul
        | product "/" unary -> div
        | product "%" unary -> mod

?unary: atom
      | "-" unary -> neg

?atom: NUMBER -> number
     | NAME -> var
     | "(" sum ")"

%import common.CNAME -> NAME
%import common.NUMBER
%import common.WS
%ignore WS
'''

_PARSER = None


def _get_parser() -> Lark:
    global _PARSER
    if _PARSER is None:
        _PARSER = Lark(SIZE_GRAMMAR, parser="lalr")
    return _PARSER


class UndefinedSizeVariable(KeyError):
    pass


@v_args(inline=True)
class SizeExprEvaluator(Transformer):
    """Evaluates a parsed size expression against a variable mapping."""

    def __init__(self, variables: Mapping[str, Number]):
        super().__init__()
        self.variables = variables

    def number(self, token):
        text = str(token)
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)

    def var(self, token):
        name = str(token)
        if name not in self.variables:
            raise UndefinedSizeVariable(name)
        return self.variables[name]

    def add(self, a, b):
        return a + b

    def sub(self, a, b):
        return a - b

    def mul(self, a, b):
        return a * b

    def div(self, a, b):
        if b == 0:
            raise ZeroDivisionError("division by zero in size expression")
        if isinstance(a, int) and isinstance(b, int):
            return a // b
        return a / b

    def mod(self, a, b):
        if b == 0:
            raise ZeroDivisionError("modulo by zero in size expression")
        return a % b

    def neg(self, a):
        return -a

    def sizes(self, *items):
        return list(items)


@lru_cache(maxsize=256)
def parse_size_expr(text: str) -> Tree:
    """Parse a size expression.

    Raises:
        CustomRuleError: the expression is not well formed.
    """
    try:
        return _get_parser().parse(text)
    except LarkError as e:
        raise CustomRuleError(
            f"invalid size expression {text!r}: {e}",
            hint="use integers, parameter names, B/F/Y/X and + - * / % ( )",
        ) from e


def evaluate_sizes(text: str, variables: Mapping[str, Number]) -> List[Number]:
    """Evaluate every component of a size expression.

    Raises:
        CustomRuleError: syntax error, undefined variable or division by zero.
    """
    tree = parse_size_expr(text)
    try:
        return SizeExprEvaluator(variables).transform(tree)
    except VisitError as e:
        orig = e.orig_exc
        if isinstance(orig, UndefinedSizeVariable):
            raise CustomRuleError(f"undefined variable {orig.args[0]!r} in size expression {text!r}") from orig
        raise CustomRuleError(f"cannot evaluate size expression {text!r}: {orig}") from orig


def sizes_are_valid(text: str, variables: Mapping[str, Number]) -> bool:
    """True if every component evaluates to a positive integer."""
    try:
        values = evaluate_sizes(text, variables)
    except CustomRuleError:
        return False
    return all(v > 0 and float(v).is_integer() for v in values)
