"""
Tests for the streaming HTML transformer.
"""
import unittest
import sys
import os

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from domain_mask.features.mask.services.markup import (
    StreamingMarkupTransformer,
    is_analytics_host,
    rewrite_html,
    serialize_start_tag,
)


class TestMarkupRewriter(unittest.TestCase):
    """Element, attribute and text rules applied to whole documents."""

    def setUp(self):
        self.masked_url = 'https://httpbin.org/page'
        self.request_url = 'https://example.com/page'

    def rewrite(self, html, request_url=None):
        return rewrite_html(html, self.masked_url, request_url or self.request_url)

    def test_href(self):
        result = self.rewrite('<a href="https://httpbin.org/api/test">Link</a>')
        self.assertEqual(result, '<a href="https://example.com/api/test">Link</a>')

    def test_img_src_and_lazy_src(self):
        result = self.rewrite('<img src="https://httpbin.org/image.jpg" data-src="/lazy.jpg" alt="test">')
        self.assertIn('src="https://example.com/image.jpg"', result)
        self.assertIn('data-src="https://example.com/lazy.jpg"', result)
        self.assertIn('alt="test"', result)

    def test_srcset(self):
        result = self.rewrite('<img srcset="https://httpbin.org/image1.jpg 1x, https://httpbin.org/image2.jpg 2x" alt="test">')
        self.assertIn('srcset="https://example.com/image1.jpg 1x, https://example.com/image2.jpg 2x"', result)

    def test_script_src(self):
        result = self.rewrite('<script src="https://httpbin.org/script.js"></script>')
        self.assertEqual(result, '<script src="https://example.com/script.js"></script>')

    def test_canonical_forced_to_request_url(self):
        result = self.rewrite('<link rel="canonical" href="https://httpbin.org/other">')
        self.assertEqual(result, '<link rel="canonical" href="https://example.com/page">')

    def test_og_and_twitter_url_forced_to_request_url(self):
        html = (
            '<meta property="og:url" content="https://httpbin.org/page">\n'
            '<meta name="twitter:url" content="https://httpbin.org/somewhere-else">'
        )
        result = self.rewrite(html)
        self.assertIn('property="og:url" content="https://example.com/page"', result)
        self.assertIn('name="twitter:url" content="https://example.com/page"', result)

    def test_other_meta_content(self):
        result = self.rewrite('<meta property="og:image" content="https://httpbin.org/cover.png">')
        self.assertIn('content="https://example.com/cover.png"', result)

    def test_meta_refresh(self):
        result = self.rewrite('<meta http-equiv="refresh" content="0; url=https://httpbin.org/next">')
        self.assertIn('content="0; url=https://example.com/next"', result)

    def test_text_content(self):
        result = self.rewrite('<p>Visit https://httpbin.org for more info</p>')
        self.assertEqual(result, '<p>Visit https://example.com for more info</p>')

    def test_noscript_content(self):
        result = self.rewrite('<noscript>Please enable JavaScript to visit https://httpbin.org</noscript>')
        self.assertIn('Please enable JavaScript to visit https://example.com', result)

    def test_inline_script_literal_and_escaped_urls(self):
        html = '<script>var a = "https://httpbin.org/x"; var b = "https:\\/\\/httpbin.org\\/y";</script>'
        result = self.rewrite(html)
        self.assertIn('"https://example.com/x"', result)
        self.assertIn('"https:\\/\\/example.com\\/y"', result)
        self.assertNotIn('httpbin.org', result)

    def test_inline_style(self):
        result = self.rewrite("<style>body { background: url('/bg.png'); }</style>")
        self.assertEqual(result, '<style>body { background: url("https://example.com/bg.png"); }</style>')

    def test_style_attribute(self):
        result = self.rewrite('<div style="background-image: url(https://httpbin.org/a.png)">x</div>')
        self.assertIn('style="background-image: url(&quot;https://example.com/a.png&quot;)"', result)

    def test_removes_analytics_script(self):
        html = '<head><script async src="https://www.googletagmanager.com/gtag/js?id=G-1"></script><title>t</title></head>'
        result = self.rewrite(html)
        self.assertNotIn('googletagmanager.com', result)
        self.assertEqual(result, '<head><title>t</title></head>')

    def test_removes_inline_analytics_loader(self):
        html = (
            '<head><script>(function(w,d,s,l,i){var j=d.createElement(s);'
            "j.src='https://www.googletagmanager.com/gtm.js?id='+i;"
            "d.head.appendChild(j);})(window,document,'script','dataLayer','GTM-1');</script>"
            '<script>var api = "https://httpbin.org/v1";</script></head>'
        )
        result = self.rewrite(html)
        self.assertEqual(result, '<head><script>var api = "https://example.com/v1";</script></head>')

    def test_self_closing_analytics_script_removed_with_body(self):
        html = '<script src="https://www.google-analytics.com/analytics.js" />ga("create");</script><p>ok</p>'
        self.assertEqual(self.rewrite(html), '<p>ok</p>')

    def test_removes_analytics_links(self):
        result = self.rewrite(
            '<link rel="preconnect" href="https://google-analytics.com">'
            '<link rel="dns-prefetch" href="//www.googletagmanager.com">'
        )
        self.assertNotIn('google-analytics.com', result)
        self.assertNotIn('googletagmanager.com', result)

    def test_removes_comments(self):
        result = self.rewrite('<div>Content</div><!-- This is a comment --><p>More content</p>')
        self.assertNotIn('This is a comment', result)
        self.assertEqual(result, '<div>Content</div><p>More content</p>')

    def test_untouched_markup_is_byte_identical(self):
        html = "<!DOCTYPE html>\n<div class='card'  data-x=1><input disabled><br/></div>"
        self.assertEqual(self.rewrite(html), html)

    def test_entities_preserved(self):
        html = '<p>Tom &amp; Jerry &#169; httpbin.org</p>'
        self.assertEqual(self.rewrite(html), '<p>Tom &amp; Jerry &#169; example.com</p>')

    def test_rewritten_attribute_is_escaped(self):
        result = self.rewrite('<a href="https://httpbin.org/s?a=1&amp;b=2" title="say &quot;hi&quot;">x</a>')
        self.assertIn('href="https://example.com/s?a=1&amp;b=2"', result)
        self.assertIn('title="say &quot;hi&quot;"', result)

    def test_localhost_with_port(self):
        result = self.rewrite('<a href="https://httpbin.org/api/test">Link</a>', request_url='http://localhost:8787/')
        self.assertIn('href="http://localhost:8787/api/test"', result)

    def test_malformed_attribute_does_not_stop_the_stream(self):
        html = '<a href="http://[::1">bad</a><a href="https://httpbin.org/ok">ok</a>'
        result = self.rewrite(html)
        self.assertIn('href="http://[::1"', result)
        self.assertIn('href="https://example.com/ok"', result)

    def test_complex_document(self):
        html = """
      <!DOCTYPE html>
      <html>
        <head>
          <meta property="og:url" content="https://httpbin.org/page">
          <link rel="canonical" href="https://httpbin.org/page">
          <script src="https://httpbin.org/script.js"></script>
        </head>
        <body>
          <img src="https://httpbin.org/image.jpg" alt="test">
          <a href="https://httpbin.org/link">Link</a>
          <p>Visit https://httpbin.org for more info</p>
        </body>
      </html>
    """
        result = self.rewrite(html)
        self.assertIn('content="https://example.com/page"', result)
        self.assertIn('href="https://example.com/page"', result)
        self.assertIn('src="https://example.com/script.js"', result)
        self.assertIn('src="https://example.com/image.jpg"', result)
        self.assertIn('href="https://example.com/link"', result)
        self.assertIn('Visit https://example.com for more info', result)
        self.assertNotIn('httpbin.org', result)


class TestStreaming(unittest.TestCase):
    """Output must not depend on where the transport splits the document."""

    HTML = (
        '<!DOCTYPE html><html><head>'
        '<script src="https://www.googletagmanager.com/gtag/js"></script>'
        "<script>j.src='https://www.googletagmanager.com/gtm.js?id=GTM-1';</script>"
        '<script>window.api = "https://api.httpbin.org/v1";</script>'
        '</head><body><!-- hidden -->'
        '<a href="https://httpbin.org/a?x=1&amp;y=2">Tom &amp; Jerry at httpbin.org</a>'
        '<img srcset="/s.jpg 1x, /l.jpg 2x">'
        '</body></html>'
    )

    def transform_in_chunks(self, size):
        transformer = StreamingMarkupTransformer('https://httpbin.org/', 'https://example.com/')
        out = []
        for i in range(0, len(self.HTML), size):
            out.append(transformer.feed(self.HTML[i:i + size]))
        out.append(transformer.close())
        return ''.join(out)

    def test_chunk_boundaries_do_not_change_output(self):
        expected = rewrite_html(self.HTML, 'https://httpbin.org/', 'https://example.com/')
        for size in (1, 3, 7, 64):
            with self.subTest(size=size):
                self.assertEqual(self.transform_in_chunks(size), expected)

    def test_streamed_output_is_rewritten(self):
        result = self.transform_in_chunks(5)
        self.assertNotIn('httpbin.org', result)
        self.assertNotIn('googletagmanager', result)
        self.assertNotIn('hidden', result)
        self.assertIn('"https://api.example.com/v1"', result)
        self.assertIn('Tom &amp; Jerry at example.com', result)
        self.assertIn('srcset="https://example.com/s.jpg 1x, https://example.com/l.jpg 2x"', result)

    def test_output_is_emitted_incrementally(self):
        transformer = StreamingMarkupTransformer('https://httpbin.org/', 'https://example.com/')
        first = transformer.feed('<div><a href="/x">one</a><p>')
        self.assertEqual(first, '<div><a href="https://example.com/x">one</a><p>')
        self.assertEqual(transformer.feed('two</p></div>') + transformer.close(), 'two</p></div>')


class TestHelpers(unittest.TestCase):

    def test_is_analytics_host(self):
        self.assertTrue(is_analytics_host('www.google-analytics.com'))
        self.assertTrue(is_analytics_host('googletagmanager.com'))
        self.assertFalse(is_analytics_host('notgoogletagmanager.com'))
        self.assertFalse(is_analytics_host(None))

    def test_serialize_start_tag(self):
        tag = serialize_start_tag('input', [('type', 'checkbox'), ('checked', None), ('value', 'a"b')], self_closing=True)
        self.assertEqual(tag, '<input type="checkbox" checked value="a&quot;b" />')


if __name__ == '__main__':
    unittest.main()
