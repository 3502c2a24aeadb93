import json

from pipelines.transform import (
    content_hash,
    extract_title,
    html_to_markdown,
    url_to_relative_path,
    write_markdown,
)

ARTICLE = """
<html><head><title>View | Apple Developer Documentation</title></head>
<body>
  <nav><a href="/documentation/">Documentation</a></nav>
  <main>
    <h1>View</h1>
    <p>A type that represents part of your app's user interface and provides modifiers
       that you use to configure views.</p>
    <h2>Overview</h2>
    <p>You create custom views by declaring types that conform to the View protocol.
       Implement the required body computed property to provide the content for your
       custom view.</p>
  </main>
</body></html>
"""


class TestHtmlToMarkdown:

    def test_extracts_main_content_with_title(self):
        md = html_to_markdown(ARTICLE, url="https://developer.apple.com/documentation/swiftui/view")

        assert md.startswith("#")
        assert "View protocol" in md
        assert md.endswith("\n")
        assert "\n\n\n" not in md

    def test_falls_back_to_visible_text_for_sparse_pages(self):
        html = "<html><head><title>Index</title><script>var x = 1;</script></head><body><p>Tiny</p></body></html>"
        md = html_to_markdown(html)

        assert md.startswith("# Index")
        assert "Tiny" in md
        assert "var x" not in md

    def test_is_deterministic(self):
        assert html_to_markdown(ARTICLE) == html_to_markdown(ARTICLE)


def test_extract_title_prefers_h1():
    assert extract_title(ARTICLE) == "View"
    assert extract_title("<title> Only title </title>") == "Only title"
    assert extract_title("<p>none</p>") is None


def test_content_hash_is_sha256_hex():
    digest = content_hash("hello")
    assert len(digest) == 64
    assert digest == content_hash("hello")
    assert digest != content_hash("hello!")


class TestUrlToRelativePath:

    def test_directory_urls_map_to_index(self):
        assert url_to_relative_path("https://developer.apple.com/documentation/") == "documentation/_index.md"
        assert url_to_relative_path("https://developer.apple.com") == "_index.md"

    def test_directory_and_index_page_do_not_collide(self):
        directory = url_to_relative_path("https://example.test/docs/")
        index_page = url_to_relative_path("https://example.test/docs/index")
        assert directory == "docs/_index.md"
        assert index_page == "docs/index.md"

    def test_literal_reserved_segment_gets_a_digest(self):
        literal = url_to_relative_path("https://example.test/docs/_index")
        assert literal.startswith("docs/_index-")
        assert literal != url_to_relative_path("https://example.test/docs/")

    def test_non_canonical_slashes_get_a_digest(self):
        doubled = url_to_relative_path("https://example.test/docs//a")
        assert doubled != url_to_relative_path("https://example.test/docs/a")
        assert doubled.startswith("docs/a-")

    def test_include_host_separates_hosts(self):
        apple = url_to_relative_path("https://developer.apple.com/docs/a", include_host=True)
        swift = url_to_relative_path("https://www.swift.org/docs/a", include_host=True)
        assert apple == "developer.apple.com/docs/a.md"
        assert swift == "www.swift.org/docs/a.md"

    def test_host_with_port_is_sanitized(self):
        path = url_to_relative_path("http://localhost:8080/docs/a", include_host=True)
        assert path.startswith("localhost-8080-")
        assert path.endswith("/docs/a.md")

    def test_plain_segments_are_kept(self):
        assert url_to_relative_path("https://developer.apple.com/documentation/swiftui/view") == \
            "documentation/swiftui/view.md"

    def test_unsafe_segments_get_a_digest_suffix(self):
        path = url_to_relative_path("https://developer.apple.com/documentation/swiftui/view/body-8kl5o")
        assert path == "documentation/swiftui/view/body-8kl5o.md"

        tricky = url_to_relative_path("https://developer.apple.com/documentation/swift/array/+(_:_:)")
        assert tricky.startswith("documentation/swift/array/")
        assert tricky.endswith(".md")
        assert "(" not in tricky and ":" not in tricky

    def test_distinct_urls_get_distinct_paths(self):
        a = url_to_relative_path("https://example.test/docs/a.b")
        b = url_to_relative_path("https://example.test/docs/a-b")
        c = url_to_relative_path("https://example.test/docs/page?lang=objc")
        d = url_to_relative_path("https://example.test/docs/page")
        assert len({a, b, c, d}) == 4


def test_write_markdown_adds_front_matter(tmp_path):
    path = write_markdown(tmp_path, "docs/page.md", "# Page\n", {"source_url": "https://example.test/", "depth": 2})

    text = path.read_text(encoding="utf-8")
    assert path == tmp_path / "docs" / "page.md"
    assert text.startswith("---\n")
    assert f"source_url: {json.dumps('https://example.test/')}\n" in text
    assert "depth: 2\n" in text
    assert text.endswith("---\n\n# Page\n")
