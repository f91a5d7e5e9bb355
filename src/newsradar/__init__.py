"""NewsRadar scraping core.

Fetches pages from third-party news sources, escalates to a headless browser
when bot protection or client-rendered content is detected, resolves
redirect/indirection layers, and extracts article content for downstream
keyword and AI analysis.
"""

__version__ = "0.1.0"
