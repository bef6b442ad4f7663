"""
Tests for file downloads with Range support
"""

import pytest

EXPECTED = bytes(i % 256 for i in range(1000))


def download(client, file="data.bin", path="", **headers):
    return client.get("/download", params={"file": file, "path": path}, headers=headers)


class TestDownload:

    def test_full_body(self, client):
        response = download(client)
        assert response.status_code == 200
        assert response.content == EXPECTED
        assert response.headers["content-length"] == "1000"
        assert response.headers["accept-ranges"] == "bytes"
        assert "attachment" in response.headers["content-disposition"]
        assert "content-range" not in response.headers

    def test_open_range(self, client):
        response = download(client, Range="bytes=500-")
        assert response.status_code == 206
        assert response.content == EXPECTED[500:]
        assert response.headers["content-range"] == "bytes 500-999/1000"
        assert response.headers["content-length"] == "500"

    def test_explicit_range(self, client):
        response = download(client, Range="bytes=10-19")
        assert response.status_code == 206
        assert response.content == EXPECTED[10:20]
        assert response.headers["content-range"] == "bytes 10-19/1000"

    def test_suffix_range(self, client):
        response = download(client, Range="bytes=-100")
        assert response.status_code == 206
        assert response.content == EXPECTED[900:]
        assert response.headers["content-range"] == "bytes 900-999/1000"

    def test_clamped_end(self, client):
        response = download(client, Range="bytes=990-5000")
        assert response.status_code == 206
        assert response.content == EXPECTED[990:]
        assert response.headers["content-range"] == "bytes 990-999/1000"

    @pytest.mark.parametrize("header", [
        "bytes=0-10,20-30",
        "bytes=1000-",
        "bytes=abc",
        "items=0-10",
    ])
    def test_unsatisfiable(self, client, header):
        response = download(client, Range=header)
        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */1000"
        assert response.json()["detail"]["code"] == 416

    def test_nested_file(self, client):
        response = download(client, file="readme.txt", path="docs")
        assert response.status_code == 200
        assert response.content == b"hello world"

    def test_unicode_filename(self, client, root):
        (root / "résumé.txt").write_text("cv")
        response = download(client, file="résumé.txt")
        assert response.status_code == 200
        assert "filename*=UTF-8''r%C3%A9sum%C3%A9.txt" in response.headers["content-disposition"]

    def test_missing_file(self, client):
        assert download(client, file="ghost.bin").status_code == 404

    def test_missing_name(self, client):
        assert download(client, file="").status_code == 400

    def test_directory(self, client):
        assert download(client, file="docs").status_code == 400

    @pytest.mark.parametrize("file,path", [
        ("passwd", "../../etc"),
        ("../../etc/passwd", ""),
        ("/etc/passwd", ""),
        ("readme.txt", "/docs"),
        ("../data.bin", "docs/../.."),
    ])
    def test_traversal(self, client, file, path):
        response = download(client, file=file, path=path)
        assert response.status_code == 400
