"""
Tests for formatting and header helpers
"""

from pathlib import Path

from treeserve.utils import (
    build_breadcrumbs,
    content_disposition,
    create_response_headers,
    format_file_size,
    get_mime_type,
)


class TestFormatting:

    def test_file_size(self):
        assert format_file_size(0) == "0 B"
        assert format_file_size(1023) == "1023 B"
        assert format_file_size(1024) == "1.00 KB"
        assert format_file_size(1536) == "1.50 KB"
        assert format_file_size(5 * 1024 ** 3) == "5.00 GB"
        assert format_file_size(2048 * 1024 ** 4) == "2048.00 TB"

    def test_mime_type(self):
        assert get_mime_type(Path("a/b/page.html")) == "text/html"
        assert get_mime_type(Path("blob")) == "application/octet-stream"

    def test_breadcrumbs(self):
        crumbs = [c.to_dict() for c in build_breadcrumbs("a//b\\c/")]
        assert crumbs == [
            {"name": "Home", "path": ""},
            {"name": "a", "path": "a"},
            {"name": "b", "path": "a/b"},
            {"name": "c", "path": "a/b/c"},
        ]


class TestHeaders:

    def test_content_disposition_ascii(self):
        assert content_disposition("report.pdf") == \
            "attachment; filename=\"report.pdf\"; filename*=UTF-8''report.pdf"

    def test_content_disposition_escapes_quotes(self):
        value = content_disposition('say "hi".txt')
        assert 'filename="say _hi_.txt"' in value
        assert "filename*=UTF-8''say%20%22hi%22.txt" in value

    def test_download_headers(self):
        headers = create_response_headers(content_length=10, last_modified=0.5)
        assert headers["Accept-Ranges"] == "bytes"
        assert headers["Content-Length"] == "10"
        assert headers["Last-Modified"] == "Thu, 01 Jan 1970 00:00:00 GMT"
