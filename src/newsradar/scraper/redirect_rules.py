"""Declarative rule table for URLs that usually hide their real destination.

Each :class:`RedirectRule` belongs to one of three pattern classes:

* ``path-shape``: regular expression searched in the URL path;
* ``query-param``: regular expression matched against query parameter
  names, optionally requiring the value to look like a URL;
* ``host-suffix``: the host equals or ends with the given domain.

:func:`match_indirection_patterns` evaluates every rule (it never stops at the
first hit) and reports the names of all rules that matched.  New indirection
services are added by extending :data:`DEFAULT_RULES`.
"""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass
from typing import Literal

RuleKind = Literal["path-shape", "query-param", "host-suffix"]

_URL_VALUE_RE = re.compile(r"^(?:https?:|//|www\.)", re.IGNORECASE)


@dataclass(frozen=True)
class RedirectRule:
    """One indirection pattern.

    Attributes:
        name: Reason string reported when the rule matches.
        kind: Pattern class.
        pattern: Regex (``path-shape`` / ``query-param``) or domain
            (``host-suffix``).
        weight: Contribution to the match score.
        url_value: For ``query-param`` rules, only match when the parameter
            value looks like a URL.
    """

    name: str
    kind: RuleKind
    pattern: str
    weight: float = 0.5
    url_value: bool = False

    def matches(self, parsed: urllib.parse.ParseResult) -> bool:
        if self.kind == "path-shape":
            return re.search(self.pattern, parsed.path or "/", re.IGNORECASE) is not None
        if self.kind == "query-param":
            for key, value in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True):
                if not re.fullmatch(self.pattern, key, re.IGNORECASE):
                    continue
                if not self.url_value or _URL_VALUE_RE.match(value.strip()):
                    return True
            return False
        if self.kind == "host-suffix":
            host = (parsed.hostname or "").lower()
            domain = self.pattern.lower()
            return host == domain or host.endswith("." + domain)
        return False


@dataclass(frozen=True)
class RuleMatch:
    """Result of evaluating the rule table against one URL."""

    matched: bool
    reasons: tuple[str, ...]
    score: float


DEFAULT_RULES: tuple[RedirectRule, ...] = (
    # path-shape
    RedirectRule("read-path", "path-shape", r"/read/[^/]+", 0.9),
    RedirectRule("articles-token-path", "path-shape", r"/articles/[A-Za-z0-9_-]{20,}", 0.9),
    RedirectRule("stories-token-path", "path-shape", r"/stories/[A-Za-z0-9_-]{20,}", 0.8),
    RedirectRule("redirect-path", "path-shape", r"/redirect(?:[/._-]|$)", 0.7),
    RedirectRule("outbound-path", "path-shape", r"^/(?:out|go|goto|click|exit|away|external)/", 0.6),
    # query-param
    RedirectRule(
        "url-param",
        "query-param",
        r"url|u|link|target|dest|destination|goto|to|out|continue|return_to",
        0.7,
        url_value=True,
    ),
    RedirectRule("redirect-param", "query-param", r"redir\w*|redirect\w*", 0.6),
    # host-suffix
    RedirectRule("bit.ly-shortener", "host-suffix", "bit.ly", 0.8),
    RedirectRule("t.co-shortener", "host-suffix", "t.co", 0.8),
    RedirectRule("tinyurl-shortener", "host-suffix", "tinyurl.com", 0.8),
    RedirectRule("is.gd-shortener", "host-suffix", "is.gd", 0.8),
    RedirectRule("ow.ly-shortener", "host-suffix", "ow.ly", 0.8),
    RedirectRule("buff.ly-shortener", "host-suffix", "buff.ly", 0.8),
    RedirectRule("lnkd.in-shortener", "host-suffix", "lnkd.in", 0.8),
    RedirectRule("rebrand.ly-shortener", "host-suffix", "rebrand.ly", 0.8),
    RedirectRule("short.link-shortener", "host-suffix", "short.link", 0.8),
    RedirectRule("tiny.cc-shortener", "host-suffix", "tiny.cc", 0.8),
    RedirectRule("feedproxy", "host-suffix", "feedproxy.google.com", 0.8),
)


def match_indirection_patterns(
    url: str, rules: tuple[RedirectRule, ...] = DEFAULT_RULES
) -> RuleMatch:
    """Evaluate every rule against ``url``.

    Args:
        url: Absolute URL to classify.
        rules: Rule table; defaults to :data:`DEFAULT_RULES`.

    Returns:
        A :class:`RuleMatch` whose ``reasons`` lists every matching rule in
        table order and whose ``score`` is the capped sum of their weights.
    """
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return RuleMatch(matched=False, reasons=(), score=0.0)

    reasons: list[str] = []
    score = 0.0
    for rule in rules:
        if rule.matches(parsed):
            reasons.append(rule.name)
            score += rule.weight
    return RuleMatch(matched=bool(reasons), reasons=tuple(reasons), score=min(score, 1.0))
