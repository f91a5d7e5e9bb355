"""Constants and tuning parameters for the scraping core.

Values that operators tune per deployment live in
:class:`newsradar.config.settings.Settings`; the marker tables and
hard ceilings below are part of the scraping logic itself.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Desktop Chrome user agent shared by the HTTP fetcher and the browser driver
#: so that escalation does not change the client fingerprint.
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

#: Browser-like request headers sent with every HTTP fetch.
BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "max-age=0",
    "Sec-Ch-Ua": '"Chromium";v="124", "Google Chrome";v="124", "Not-A.Brand";v="99"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

#: Hard cap on fetch attempts per URL.  Settings may lower it, never raise it.
MAX_FETCH_ATTEMPTS: int = 5

#: Longest ``Retry-After`` (seconds) honoured on a 429 before retrying anyway.
MAX_RETRY_AFTER_SECONDS: float = 10.0

#: Status codes treated as transient and retried with backoff.
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

#: Content-Type prefixes that indicate binary/non-text resources.
BINARY_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/zip",
        "application/octet-stream",
        "application/vnd.",
        "image/",
        "video/",
        "audio/",
        "font/",
    }
)

# ---------------------------------------------------------------------------
# Detector marker tables
# ---------------------------------------------------------------------------

#: Status codes that on their own indicate an access challenge.
PROTECTION_STATUS_CODES: frozenset[int] = frozenset({401, 403})

#: Response header names whose presence identifies an anti-bot vendor.
CHALLENGE_HEADER_NAMES: frozenset[str] = frozenset(
    {"x-datadome", "x-dd-b", "x-iinfo", "cf-mitigated", "cf-chl-bypass", "x-px-block"}
)

#: (header name, lower-cased value substring) pairs identifying a challenge.
CHALLENGE_HEADER_VALUES: tuple[tuple[str, str], ...] = (
    ("x-cdn", "incapsula"),
    ("set-cookie", "datadome"),
    ("set-cookie", "__cf_chl"),
    ("set-cookie", "incap_ses"),
    ("set-cookie", "challenge"),
    ("server", "ddos-guard"),
)

#: Lower-cased markup fragments (asset paths, globals, titles) left by challenge
#: scripts and interstitials.  Never plain prose, which articles quote.
CHALLENGE_BODY_MARKERS: tuple[str, ...] = (
    "captcha-delivery.com",
    "_incapsula_resource",
    "window._icdt",
    "cf_chl_opt",
    "cf-browser-verification",
    "/cdn-cgi/challenge-platform/",
    "<title>just a moment...</title>",
    "px-captcha",
    "/.well-known/ddos-guard/",
    "<title>ddos-guard</title>",
    "<title>are you a human?</title>",
)

#: Lower-cased script/state globals left by client-side frameworks.
HYDRATION_MARKERS: tuple[str, ...] = (
    "__next_data__",
    "window.__initial_state__",
    "window.__preloaded_state__",
    "window.__nuxt__",
    "data-reactroot",
    "ng-version=",
    "data-server-rendered",
)

#: Documents larger than this are assumed to carry server-rendered content,
#: so hydration markers alone no longer indicate dynamic content.
SUBSTANTIAL_DOCUMENT_LENGTH: int = 10_000

#: Lower-cased attribute fragments that load content client-side.
DYNAMIC_LOAD_ATTRIBUTES: tuple[str, ...] = (
    "hx-get=",
    "data-hx-get=",
    "hx-post=",
    "hx-trigger=",
    "data-infinite-scroll",
    "infinite-scroll",
    "data-load-more",
    "data-next-page",
)

#: Tags stripped before measuring visible text length.
BOILERPLATE_TAGS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "template",
    "nav",
    "header",
    "footer",
    "aside",
    "form",
    "svg",
)

# ---------------------------------------------------------------------------
# Browser driver
# ---------------------------------------------------------------------------

#: Chromium flags applied to every session.
BROWSER_LAUNCH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
)

BROWSER_VIEWPORT: dict[str, int] = {"width": 1366, "height": 768}
BROWSER_LOCALE: str = "en-US"
BROWSER_TIMEZONE: str = "America/New_York"

#: Wait after an endpoint fetch / click before re-measuring the DOM (ms).
DYNAMIC_STEP_WAIT_MS: int = 1_500

#: Scroll-to-bottom passes per dynamic-load round and wait between them (ms).
SCROLL_PASSES: int = 3
SCROLL_WAIT_MS: int = 1_000

#: Upper bound on ``hx-get`` endpoints fetched and load-more clicks per round.
MAX_DYNAMIC_ENDPOINTS: int = 20
MAX_LOAD_MORE_CLICKS: int = 5

#: Polling interval while waiting for client-side navigation to settle (ms).
NAVIGATION_POLL_MS: int = 250

# ---------------------------------------------------------------------------
# Redirect resolution
# ---------------------------------------------------------------------------

#: Confidence assigned to each resolution path.
HTTP_STAGE_CONFIDENCE: float = 1.0
BROWSER_STAGE_CONFIDENCE: float = 0.9

#: Multiplier applied to the HTTP-stage confidence when the browser stage fails.
BROWSER_FAILURE_PENALTY: float = 0.5

#: Bodies smaller than this that contain script are treated as interstitials.
INTERSTITIAL_BODY_LENGTH: int = 2_000

# ---------------------------------------------------------------------------
# Link extraction
# ---------------------------------------------------------------------------

#: Characters of surrounding text kept on either side of the anchor text.
LINK_CONTEXT_WINDOW: int = 100

#: Anchor ``href`` schemes that never lead to an article.
IGNORED_HREF_PREFIXES: tuple[str, ...] = ("#", "javascript:", "mailto:", "tel:", "data:")

#: Query parameters dropped when normalizing hrefs for deduplication.
TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "fbclid",
        "gclid",
        "mc_cid",
        "mc_eid",
        "_ga",
    }
)

#: Block-level ancestors whose text is used as an anchor's context.
CONTEXT_CONTAINER_TAGS: tuple[str, ...] = (
    "li",
    "article",
    "section",
    "div",
    "p",
    "td",
    "h2",
    "h3",
    "h4",
)

# ---------------------------------------------------------------------------
# Content extraction
# ---------------------------------------------------------------------------

#: Ordered content fallback chain.
CONTENT_FALLBACK_SELECTORS: tuple[str, ...] = (
    "article",
    ".article-content",
    ".post-content",
    ".entry-content",
    "main",
    ".main-content",
    "p",
)

#: Minimum trimmed text length for a fallback element to count as content.
MIN_FALLBACK_TEXT_LENGTH: int = 50

TITLE_FALLBACK_SELECTORS: tuple[str, ...] = ("h1", "title")
AUTHOR_FALLBACK_SELECTORS: tuple[str, ...] = ('[rel="author"]', ".byline", ".author-name")

#: Default confidence of a selector configuration.
DEFAULT_SELECTOR_CONFIDENCE: float = 0.8

#: Confidence reported for trafilatura output when the selector chain found nothing.
TRAFILATURA_CONFIDENCE: float = 0.6

#: Characters of HTML forwarded to the AI date/analysis service.
ANALYSIS_HTML_SNIPPET_CHARS: int = 4_000

#: Maximum extracted text size (bytes) handed to the caller.
MAX_CONTENT_BYTES: int = 900 * 1024

# ---------------------------------------------------------------------------
# AI collaborator (OpenRouter)
# ---------------------------------------------------------------------------

OPENROUTER_API_URL: str = "https://openrouter.ai/api/v1/chat/completions"

LINK_CLASSIFIER_SYSTEM_PROMPT: str = (
    "You identify links to individual news articles on a news source page. "
    "You receive numbered links with their anchor text and surrounding text. "
    "Ignore navigation, category, tag, author, login, subscription and "
    "advertising links. Respond with JSON only: "
    '{"article_urls": ["<url>", ...]} using the URLs exactly as given.'
)

CONTENT_ANALYZER_SYSTEM_PROMPT: str = (
    "You analyze a news article. Respond with JSON only: "
    '{"keywords": ["..."], "summary": "...", "publish_date": "<ISO 8601 or null>"}. '
    "Keywords are at most 10 short topical phrases. The summary is at most "
    "three sentences. Infer publish_date from the HTML snippet (meta tags, "
    "time elements, visible dates); use null when no date is present."
)

#: Characters of article text sent to the analyzer.
MAX_ANALYSIS_CONTENT_CHARS: int = 12_000
