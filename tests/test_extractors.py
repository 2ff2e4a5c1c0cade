"""
Tests for the extractors.py module
"""

from epub_translator.extractors import (
    NodeExtractor,
    is_well_formed,
    markup_signature,
    normalize_entities,
    normalize_fragment,
    plain_text,
    word_count,
)
from tests.helpers import xhtml

NAMESPACES = {
    "xmlns": "http://www.w3.org/1999/xhtml",
    "xmlns:epub": "http://www.idpf.org/2007/ops",
}


class TestNormalizeEntities:
    """Tests for entity normalization."""

    def test_xml_entities_kept(self):
        assert normalize_entities("a &amp; b &lt;c&gt; &quot;&apos;") == "a &amp; b &lt;c&gt; &quot;&apos;"

    def test_numeric_references_kept(self):
        assert normalize_entities("&#160;&#xA0;") == "&#160;&#xA0;"

    def test_named_entities_become_literal(self):
        assert normalize_entities("wait&mdash;what&hellip;") == "wait—what…"

    def test_space_entities_become_space(self):
        assert normalize_entities("a&nbsp;b&shy;c") == "a bc"

    def test_unknown_entity_becomes_space(self):
        assert normalize_entities("a&madeup;b") == "a b"

    def test_stray_ampersand_escaped(self):
        assert normalize_entities("Tom & Jerry") == "Tom &amp; Jerry"


class TestNodeExtractor:
    """Tests for the NodeExtractor class."""

    def setup_method(self):
        self.extractor = NodeExtractor()

    def test_document_order(self):
        document = xhtml("<h1>Title</h1>\n<p>First</p>\n<div><p>Second</p></div>\n<li>Third</li>")

        extracted = self.extractor.extract(document.encode(), ["p", "h1", "li"], document_index=2)

        assert [h.source() for h in extracted.handles] == ["Title", "First", "Second", "Third"]
        assert [h.key for h in extracted.handles] == [(2, 0), (2, 1), (2, 2), (2, 3)]
        assert [h.tag for h in extracted.handles] == ["h1", "p", "p", "li"]

    def test_empty_nodes_skipped(self):
        document = xhtml("<p>   </p>\n<p/>\n<p>Text</p>")

        extracted = self.extractor.extract(document, ["p"])
        assert len(extracted) == 1
        assert extracted.handle(0).source() == "Text"

    def test_deterministic_indices(self):
        document = xhtml("<p>a</p><p>b</p><blockquote><p>c</p></blockquote>").encode()

        first = self.extractor.extract(document, ["p", "blockquote"])
        second = self.extractor.extract(document, ["p", "blockquote"])

        assert [h.source() for h in first.handles] == [h.source() for h in second.handles]

    def test_containers_flagged(self):
        """Matching elements wrapping other matching elements are containers."""
        document = xhtml("<blockquote><p>Quoted</p></blockquote>\n<p>Plain</p>")

        extracted = self.extractor.extract(document, ["p", "blockquote"])

        assert [h.tag for h in extracted.handles] == ["blockquote", "p", "p"]
        assert [h.container for h in extracted.handles] == [True, False, False]

    def test_container_with_loose_text_is_translated_whole(self):
        document = xhtml("<blockquote>Loose quoted sentence. <p>Inner para.</p></blockquote>")

        extracted = self.extractor.extract(document, ["p", "blockquote"])

        outer, inner = extracted.handles
        assert not outer.container and not outer.enclosed
        assert outer.source() == "Loose quoted sentence. <p>Inner para.</p>"
        assert inner.enclosed and not inner.container

    def test_loose_text_inside_inline_child(self):
        """Text in a non-matching child outside the matching descendants counts as loose."""
        document = xhtml("<div><em>Aside</em><p>Body</p></div>")

        extracted = self.extractor.extract(document, ["p", "div"])

        assert [(h.container, h.enclosed) for h in extracted.handles] == [(False, False), (False, True)]

    def test_nested_container_inside_unit(self):
        document = xhtml("<div>Intro <blockquote><p>Quoted</p></blockquote></div>\n<div><p>Alone</p></div>")

        extracted = self.extractor.extract(document, ["p", "div", "blockquote"])

        assert [h.tag for h in extracted.handles] == ["div", "blockquote", "p", "div", "p"]
        assert [h.container for h in extracted.handles] == [False, False, False, True, False]
        assert [h.enclosed for h in extracted.handles] == [False, True, True, False, False]

    def test_tag_set_case_insensitive(self):
        extracted = self.extractor.extract(xhtml("<p>x</p>"), ["P"])
        assert len(extracted) == 1

    def test_apply_keeps_element_and_attributes(self):
        document = xhtml('<p class="intro" id="p1">Hello <em>world</em></p>')
        extracted = self.extractor.extract(document, ["p"])

        extracted.apply(0, "Merhaba <em>dünya</em>")

        output = extracted.serialize().decode("utf-8")
        assert '<p class="intro" id="p1">Merhaba <em>dünya</em></p>' in output
        assert output.count("<?xml") == 1

    def test_apply_with_prefixed_attribute(self):
        document = xhtml('<p>See <a epub:type="noteref" href="#n1">1</a></p>')
        extracted = self.extractor.extract(document, ["p"])

        extracted.apply(0, 'Bakınız <a epub:type="noteref" href="#n1">1</a>')

        output = extracted.serialize().decode("utf-8")
        assert 'epub:type="noteref"' in output
        assert "Bakınız" in output

    def test_entities_in_document(self):
        document = xhtml("<p>Tom &amp; Jerry&nbsp;&mdash; friends</p>")

        extracted = self.extractor.extract(document.encode(), ["p"])
        assert extracted.handle(0).source() == "Tom &amp; Jerry — friends"

    def test_namespaces(self):
        extracted = self.extractor.extract(xhtml("<p>x</p>"), ["p"])
        assert extracted.namespaces == NAMESPACES


class TestFragmentHelpers:
    """Tests for the fragment helper functions."""

    def test_plain_text_and_word_count(self):
        fragment = "The <em>quick</em>   brown\n<strong>fox</strong>"

        assert plain_text(fragment) == "The quick brown fox"
        assert word_count(fragment) == 4

    def test_word_count_empty(self):
        assert word_count("<br/>") == 0

    def test_markup_signature_same_structure(self):
        source = 'Hello <a href="x.html" class="link">world</a> <em>!</em>'
        translated = 'Merhaba <a class="link" href="x.html">dünya</a> <em>!</em>'

        assert markup_signature(source) == markup_signature(translated)

    def test_markup_signature_detects_changes(self):
        source = 'Hello <a href="x.html">world</a>'

        assert markup_signature(source) != markup_signature("Merhaba dünya")
        assert markup_signature(source) != markup_signature('Merhaba <a href="y.html">dünya</a>')

    def test_markup_signature_detects_nesting(self):
        source = "<em>Dark</em> <strong>night</strong>"

        assert markup_signature(source) != markup_signature("<em>Karanlik <strong>gece</strong></em>")

    def test_is_well_formed(self):
        assert is_well_formed("Line one<br/>Line two")
        assert is_well_formed("Tom &amp; Jerry&nbsp;&mdash;")
        assert is_well_formed('<a epub:type="noteref" href="#n1">1</a>', NAMESPACES)
        assert not is_well_formed("Satir bir<br>Satir iki")
        assert not is_well_formed("<em>open")

    def test_markup_signature_prefixed_attributes(self):
        fragment = '<span epub:type="pagebreak" id="p5"/>'
        signature = markup_signature(fragment, NAMESPACES)

        assert signature[0][0] == "span"
        assert ("epub:type", "pagebreak") in signature[0][1]

    def test_normalize_fragment(self):
        assert normalize_fragment("  a \n\t b  ") == "a b"
