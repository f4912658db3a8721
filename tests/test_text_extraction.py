"""
Tests for normalization, HTML extraction and file reading.
"""
import pytest
from docx import Document as DocxDocument

from flexybot.errors import ValidationError
from flexybot.text_extraction import html_to_text, normalize, normalize_text, read_any


class TestNormalizeText:

    def test_empty_string(self):
        assert normalize_text("") == ""

    def test_collapses_inline_whitespace(self):
        assert normalize_text("Hello \t  world\r\nagain") == "Hello world \nagain"

    def test_collapses_three_or_more_newlines(self):
        assert normalize_text("a\n\n\n\nb\n\nc\nd") == "a\n\nb\n\nc\nd"

    def test_trims(self):
        assert normalize_text("  \n padded \n\n ") == "padded"

    @pytest.mark.parametrize("raw", [
        "",
        "plain",
        "\t\ta \r\n\n\n\n b  ",
        "a \n \n \n b",
        "&amp;lt; stays literal",
        "x  y\n\n\n\n\nz",
        "   \n\n\n   ",
    ])
    def test_idempotent(self, raw):
        once = normalize_text(raw)
        assert normalize_text(once) == once


class TestHtmlToText:

    def test_script_stripped_and_tags_collapsed(self):
        assert html_to_text("<script>alert(1)</script><p>Hello  world</p>") == "Hello world"

    def test_style_and_nested_script_content_removed(self):
        html = (
            "<html><head><style>p { color: red; }</style>"
            "<SCRIPT type='text/javascript'>if (a < b) { document.write('<b>x</b>'); }</SCRIPT>"
            "</head><body><h1>Title</h1><p>Body text</p></body></html>"
        )
        assert html_to_text(html) == "Title\n\nBody text"

    def test_entities_decoded(self):
        html = "<p>Fish&nbsp;&amp;&nbsp;chips &lt;3 &quot;yum&quot; &gt;</p>"
        assert html_to_text(html) == 'Fish & chips <3 "yum" >'

    def test_escaped_entity_decoded_once(self):
        assert html_to_text("<p>a &amp;lt; b</p>") == "a &lt; b"

    def test_many_tags_collapse_to_paragraph_breaks(self):
        assert html_to_text("<div><p>one</p></div><div><p>two</p></div>") == "one\n\ntwo"

    def test_empty(self):
        assert html_to_text("") == ""

    def test_normalize_dispatches(self):
        assert normalize("<b>x</b>", is_html=True) == "x"
        assert normalize("<b>x</b>") == "<b>x</b>"


class TestReadAny:

    def test_reads_plain_text(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Notes\n\nSome text", encoding="utf-8")

        text, kind = read_any(str(path), "text/markdown", "notes.md")

        assert kind == "txt"
        assert "Some text" in text

    def test_reads_html_as_text(self, tmp_path):
        path = tmp_path / "page.html"
        path.write_text("<html><body><p>Hi</p><script>x()</script></body></html>", encoding="utf-8")

        text, kind = read_any(str(path), "text/html", "page.html")

        assert kind == "html"
        assert text == "Hi"

    def test_reads_docx_paragraphs_and_tables(self, tmp_path):
        doc = DocxDocument()
        doc.add_paragraph("Refund policy")
        table = doc.add_table(rows=2, cols=2)
        table.cell(0, 0).text = "Plan"
        table.cell(0, 1).text = "Price"
        table.cell(1, 0).text = "Pro"
        table.cell(1, 1).text = "$29"
        path = tmp_path / "policy.docx"
        doc.save(str(path))

        text, kind = read_any(str(path), "", "policy.docx")

        assert kind == "docx"
        assert "Refund policy" in text
        assert "Plan | Price" in text
        assert "Pro | $29" in text

    def test_corrupt_pdf_raises_validation_error(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"not a pdf at all")

        with pytest.raises(ValidationError):
            read_any(str(path), "application/pdf", "broken.pdf")

    def test_legacy_word_file_rejected(self, tmp_path):
        path = tmp_path / "legacy.doc"
        path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1\x00\x01garbage\x00\x00")

        with pytest.raises(ValidationError):
            read_any(str(path), "application/msword", "legacy.doc")

    def test_binary_file_with_text_extension_rejected(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes(b"MZ\x90\x00\x03\x00\x00\x00binary")

        with pytest.raises(ValidationError):
            read_any(str(path), "text/plain", "notes.txt")
