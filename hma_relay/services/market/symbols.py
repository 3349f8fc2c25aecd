"""Fyers symbol format checks (indices and weekly/monthly option contracts)."""

from __future__ import annotations

import re
from typing import Literal

SymbolPattern = Literal["KNOWN_INDEX", "REGEX_MATCH", "INVALID"]

VALID_INDEX_SYMBOLS = (
    "NSE:NIFTY50-INDEX",
    "NSE:NIFTYBANK-INDEX",
    "BSE:SENSEX-INDEX",
)

_INDEX_RE = re.compile(r"^(NSE|BSE):[A-Z0-9]+-INDEX$")
# e.g. NSE:NIFTY25JUL2425000CE
_OPTION_RE = re.compile(r"^(NSE|BSE):[A-Z0-9]+[0-9]{2}[A-Z]{3}[0-9]{2}[0-9]+(?:CE|PE)$")


def classify_symbol(symbol: str) -> SymbolPattern:
    if symbol in VALID_INDEX_SYMBOLS:
        return "KNOWN_INDEX"
    if _INDEX_RE.match(symbol) or _OPTION_RE.match(symbol):
        return "REGEX_MATCH"
    return "INVALID"


def is_valid_symbol(symbol: str) -> bool:
    return classify_symbol(symbol) != "INVALID"
