from lantern.http import Request, Response


def test_request_properties():
    request = Request(
        method="GET",
        target="/docs/My%20Page?terms=a&terms=b&x=1",
        headers={"host": "example.com:8080"},
    )
    assert request.path == "/docs/My Page"
    assert request.query_string == "terms=a&terms=b&x=1"
    assert request.query == {"terms": ["a", "b"], "x": ["1"]}
    assert request.host == "example.com:8080"
    assert request.hostname == "example.com"


def test_request_ipv6_hostname():
    assert Request(method="GET", target="/", headers={"host": "[::1]:9000"}).hostname == "[::1]"


def test_request_without_host():
    request = Request(method="GET", target="")
    assert request.path == "/"
    assert request.hostname == ""


def test_redirect():
    response = Response.redirect("/docs/")
    assert response.status == 301
    assert response.header("location") == "/docs/"
    assert response.size is None


def test_file_response(tmp_path):
    path = tmp_path / "app.js"
    path.write_text("alert(1)", encoding="utf-8")
    response = Response.file(path)
    assert response.size == 8
    assert "javascript" in response.header("Content-Type")


def test_error_response():
    response = Response.error(404)
    assert response.status == 404
    assert response.body == b"Not Found\n"
    assert response.size is None
