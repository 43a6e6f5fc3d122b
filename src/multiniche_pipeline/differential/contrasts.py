"""
Contrast grammar.

Contrasts are supplied as one string: each contrast wrapped in single quotes,
comma separated, no whitespace anywhere, optionally wrapped in double quotes
as a whole, e.g. "'A-(B+C)/2','B-(A+C)/2'". Each contrast is a linear
expression over group names. Coefficients are taken as written, never
normalized.
"""

from __future__ import annotations

import ast
import re
from typing import Iterable

import pandas as pd

from multiniche_pipeline.core.config import ConfigurationError

_CONTRAST_LIST = re.compile(r"^'[^'\s,]+'(,'[^'\s,]+')*$")
_GROUP_TOKEN = re.compile(r"[A-Za-z0-9._]+")
_NUMBER = re.compile(r"^(\d+\.?\d*|\.\d+)$")


def parse_contrasts(contrasts: str) -> list[str]:
    """
    Split a contrast list string into contrast expressions.

    Args:
        contrasts: e.g. "'A-B','B-A'" (outer double quotes optional).

    Returns:
        Contrast expressions in input order.

    Raises:
        ConfigurationError: If the string does not follow the grammar.
    """
    if not isinstance(contrasts, str) or not contrasts:
        raise ConfigurationError("Contrast string is empty")

    text = contrasts
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1]

    if not _CONTRAST_LIST.match(text):
        raise ConfigurationError(
            f"Malformed contrast string {contrasts!r}: expected single-quoted "
            "contrasts separated by commas without whitespace, "
            "e.g. \"'A-(B+C)/2','B-(A+C)/2'\""
        )

    names = [part[1:-1] for part in text.split(",")]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise ConfigurationError(f"Duplicated contrasts: {duplicated}")
    return names


def format_contrasts(names: Iterable[str]) -> str:
    """Serialize contrast expressions back into the quoted list syntax."""
    return ",".join(f"'{n}'" for n in names)


def contrast_coefficients(expression: str) -> dict[str, float]:
    """
    Coefficients of a linear contrast expression.

    Group names are runs of letters, digits, dots and underscores that are
    not plain numbers, so labels such as ``M.1`` or ``1wk`` are accepted.

    Example:
        >>> contrast_coefficients("A-(B+C)/2")
        {'A': 1.0, 'B': -0.5, 'C': -0.5}
    """
    names: dict[str, str] = {}

    def _placeholder(match: re.Match) -> str:
        token = match.group(0)
        if _NUMBER.match(token):
            return token
        return names.setdefault(token, f"_g{len(names)}")

    text = _GROUP_TOKEN.sub(_placeholder, expression)
    stray = sorted(set(_GROUP_TOKEN.sub("", expression)) - set("+-*/()"))
    if stray:
        raise ConfigurationError(
            f"Cannot parse contrast {expression!r}: unexpected characters {stray}"
        )
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        raise ConfigurationError(f"Cannot parse contrast {expression!r}: {e.msg}") from e

    groups = {v: k for k, v in names.items()}
    coefs = _linear(tree.body, expression)
    coefs.pop(None, None)
    return {groups[g]: c for g, c in coefs.items() if c != 0}


def _linear(node, expression: str) -> dict:
    """Evaluate node into {group: coefficient}; the None key holds the constant."""
    if isinstance(node, ast.Name):
        return {node.id: 1.0}
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return {None: float(node.value)}
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        inner = _linear(node.operand, expression)
        sign = -1.0 if isinstance(node.op, ast.USub) else 1.0
        return {k: sign * v for k, v in inner.items()}
    if isinstance(node, ast.BinOp):
        left = _linear(node.left, expression)
        right = _linear(node.right, expression)
        if isinstance(node.op, (ast.Add, ast.Sub)):
            sign = 1.0 if isinstance(node.op, ast.Add) else -1.0
            out = dict(left)
            for k, v in right.items():
                out[k] = out.get(k, 0.0) + sign * v
            return out
        if isinstance(node.op, ast.Mult):
            if set(left) == {None}:
                return {k: left[None] * v for k, v in right.items()}
            if set(right) == {None}:
                return {k: right[None] * v for k, v in left.items()}
            raise ConfigurationError(f"Contrast {expression!r} is not linear in the groups")
        if isinstance(node.op, ast.Div):
            if set(right) == {None} and right[None] != 0:
                return {k: v / right[None] for k, v in left.items()}
            raise ConfigurationError(
                f"Contrast {expression!r} divides by a group or by zero"
            )
    raise ConfigurationError(f"Unsupported syntax in contrast {expression!r}")


def contrast_matrix(contrasts: list[str], groups: list[str]) -> pd.DataFrame:
    """
    Groups x contrasts coefficient matrix.

    Raises:
        ConfigurationError: If a contrast mentions a group not in ``groups``.
    """
    columns = {}
    for expression in contrasts:
        coefs = contrast_coefficients(expression)
        unknown = sorted(set(coefs) - set(groups))
        if unknown:
            raise ConfigurationError(
                f"Contrast {expression!r} refers to groups absent from the data: "
                f"{unknown}. Groups present: {sorted(groups)}"
            )
        columns[expression] = [coefs.get(g, 0.0) for g in groups]
    return pd.DataFrame(columns, index=list(groups), dtype=float)


def validate_contrast_table(
    contrasts: list[str],
    contrast_groups: dict[str, str],
    groups: list[str],
) -> pd.DataFrame:
    """
    Check the contrast -> main group table against the contrasts and data.

    Returns:
        DataFrame with columns contrast, group in contrast order.
    """
    missing = [c for c in contrasts if c not in contrast_groups]
    if missing:
        raise ConfigurationError(f"Contrasts missing from the contrast-group table: {missing}")
    absent = sorted({g for c, g in contrast_groups.items() if c in contrasts} - set(groups))
    if absent:
        raise ConfigurationError(
            f"Groups in the contrast-group table are absent from the data: {absent}"
        )
    return pd.DataFrame({
        "contrast": contrasts,
        "group": [contrast_groups[c] for c in contrasts],
    })
