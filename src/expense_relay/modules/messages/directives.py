from __future__ import annotations

import re
from dataclasses import dataclass

_ACCOUNT_DIRECTIVE_RE = re.compile(
    r"(?<![\w])(?:account|acct|acc)\s*[:=]\s*(?:\"([^\"]+)\"|'([^']+)'|([^\s,;\"']+))",
    re.I,
)


@dataclass(frozen=True)
class ParsedDirectives:
    text: str
    account_override: str | None


def parse_directives(raw_text: str | None) -> ParsedDirectives:
    """
    Strip an `account:<name>` directive from a message.

    The first directive wins; later ones are removed but ignored. Underscores in an
    unquoted value stand for spaces (`acct:flazz_emoney`).
    """
    override: str | None = None

    def _strip(m: re.Match[str]) -> str:
        nonlocal override
        if override is None:
            value = m.group(1) or m.group(2) or (m.group(3) or "").replace("_", " ")
            override = value.strip() or None
        return " "

    cleaned = _ACCOUNT_DIRECTIVE_RE.sub(_strip, raw_text or "")
    cleaned = " ".join(cleaned.split())
    return ParsedDirectives(text=cleaned, account_override=override)
