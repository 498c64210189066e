# src/rcon_courier/utils/placeholders.py
"""Placeholder substitution for delivery command templates."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Accepted spellings per token; matching is case-insensitive.
PLAYER_TOKENS = ("player", "ign", "username")
QUANTITY_TOKENS = ("quantity", "amount")
PRODUCT_TOKENS = ("product", "product_name")

_TOKEN_RE = re.compile(
    r"\{("
    + "|".join(re.escape(t) for t in (*PLAYER_TOKENS, *QUANTITY_TOKENS, *PRODUCT_TOKENS))
    + r")\}",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RenderContext:
    """Values available to a command template."""

    player: str
    quantity: int
    product_name: str = ""

    def value_for(self, token: str) -> str:
        token = token.lower()
        if token in PLAYER_TOKENS:
            return self.player
        if token in QUANTITY_TOKENS:
            return str(self.quantity)
        return self.product_name


def render_command(template: str, context: RenderContext) -> str:
    """Substitute known placeholders in ``template``.

    Substitution is a single pass, so values are never re-scanned for tokens.
    Unknown tokens such as ``{FOO}`` are left verbatim. No quoting is applied:
    templates are admin-authored and the result is sent to RCON as-is.
    """
    return _TOKEN_RE.sub(lambda match: context.value_for(match.group(1)), template)
