"""Unit tests for the protection / dynamic-content detector."""

from __future__ import annotations

from newsradar.scraper.detector import (
    BOT_PROTECTION,
    CLEAN,
    DYNAMIC_CONTENT,
    INSUFFICIENT_CONTENT,
    count_anchors,
    detect,
    needs_escalation,
    visible_text_length,
)


def _rich_page(anchors: int = 20, words: int = 200) -> str:
    links = "".join(f"<a href='/story-{i}'>Story {i}</a>" for i in range(anchors))
    return f"<html><body><main>{links}<p>{'word ' * words}</p></main></body></html>"


class TestBotProtection:
    def test_403_with_challenge_header(self) -> None:
        labels = detect(403, {"X-DataDome": "protected"}, "<html></html>")
        assert BOT_PROTECTION in labels

    def test_403_alone(self) -> None:
        assert BOT_PROTECTION in detect(403, {}, _rich_page())

    def test_incapsula_header_value(self) -> None:
        labels = detect(200, {"X-CDN": "Incapsula"}, _rich_page())
        assert BOT_PROTECTION in labels

    def test_challenge_cookie(self) -> None:
        labels = detect(200, {"Set-Cookie": "datadome=abc; Path=/"}, _rich_page())
        assert BOT_PROTECTION in labels

    def test_cloudflare_body_marker(self) -> None:
        body = "<html><head><title>Just a moment...</title></head><body></body></html>"
        assert BOT_PROTECTION in detect(200, {}, body)

    def test_incapsula_body_marker_case_insensitive(self) -> None:
        body = _rich_page() + "<script src='/_Incapsula_Resource?x=1'></script>"
        assert BOT_PROTECTION in detect(200, {}, body)

    def test_ddos_guard_check_script(self) -> None:
        body = "<html><body><script src='/.well-known/ddos-guard/check?context=free_splash'></script></body></html>"
        assert BOT_PROTECTION in detect(200, {}, body)

    def test_article_mentioning_vendors_is_clean(self) -> None:
        prose = (
            "<p>The phishing kit hid behind DDoS-Guard hosting and showed an "
            "'Are you a human?' prompt copied from Cloudflare's checking your browser page.</p>"
        )
        links = "".join(f"<a href='/story-{i}'>Story {i}</a>" for i in range(12))
        body = f"<html><head><title>Phishing report</title></head><body><article>{prose * 20}</article>{links}</body></html>"

        labels = detect(200, {"Content-Type": "text/html"}, body)

        assert BOT_PROTECTION not in labels
        assert labels == frozenset({CLEAN})


class TestDynamicContent:
    def test_empty_mount_node(self) -> None:
        body = "<html><body><div id=\"root\"></div><script src='/app.js'></script></body></html>"
        assert DYNAMIC_CONTENT in detect(200, {}, body, min_anchor_count=0)

    def test_hydration_marker_in_small_document(self) -> None:
        body = "<html><body><script id='__NEXT_DATA__'>{}</script></body></html>"
        assert DYNAMIC_CONTENT in detect(200, {}, body, min_anchor_count=0)

    def test_hydration_marker_in_large_document_ignored(self) -> None:
        body = _rich_page(words=3000) + "<script id='__NEXT_DATA__'>{}</script>"
        assert DYNAMIC_CONTENT not in detect(200, {}, body)

    def test_too_few_anchors(self) -> None:
        assert DYNAMIC_CONTENT in detect(200, {}, _rich_page(anchors=3))

    def test_anchor_check_disabled(self) -> None:
        assert DYNAMIC_CONTENT not in detect(200, {}, _rich_page(anchors=0), min_anchor_count=0)

    def test_htmx_attribute(self) -> None:
        body = _rich_page() + "<div hx-get='/more' hx-trigger='revealed'></div>"
        assert DYNAMIC_CONTENT in detect(200, {}, body)


class TestInsufficientContent:
    def test_boilerplate_only(self) -> None:
        body = (
            "<html><body><nav>" + ("menu " * 300) + "</nav>"
            "<footer>" + ("legal " * 300) + "</footer><p>Hi</p></body></html>"
        )
        labels = detect(200, {}, body, min_anchor_count=0)
        assert labels == frozenset({INSUFFICIENT_CONTENT})
        assert not needs_escalation(labels)

    def test_visible_text_length_strips_scripts(self) -> None:
        body = "<html><body><script>var x = 'aaaaaaaa';</script><p>abc  def</p></body></html>"
        assert visible_text_length(body) == len("abc def")


class TestClean:
    def test_rich_page_is_clean(self) -> None:
        assert detect(200, {"content-type": "text/html"}, _rich_page()) == frozenset({CLEAN})

    def test_never_raises_on_garbage(self) -> None:
        labels = detect(None, None, "<<<not html at all \x00 >>>", min_anchor_count=0, min_content_length=0)
        assert labels == frozenset({CLEAN})

    def test_none_body(self) -> None:
        labels = detect(200, {}, None)
        assert DYNAMIC_CONTENT in labels
        assert INSUFFICIENT_CONTENT in labels


def test_count_anchors_ignores_anchors_without_href() -> None:
    assert count_anchors("<a name='x'>x</a><a href='/a'>a</a><A HREF=\"/b\">b</A>") == 2


def test_needs_escalation() -> None:
    assert needs_escalation(frozenset({BOT_PROTECTION}))
    assert needs_escalation(frozenset({DYNAMIC_CONTENT, INSUFFICIENT_CONTENT}))
    assert not needs_escalation(frozenset({CLEAN}))
