import logging

import pytest
from jinja2 import UndefinedError

from lantern.templates import (
    TemplateFunctions,
    TemplateLoadError,
    fix_deprecated_syntax,
    load_templates,
)


def write_templates(directory, **files):
    directory.mkdir(parents=True, exist_ok=True)
    for name, source in files.items():
        (directory / name.replace("__", ".")).write_text(source, encoding="utf-8")
    return directory


def test_load_templates_compiles_every_file(tmp_path):
    tpl = write_templates(
        tmp_path / "templates",
        index__tpl="{% include 'header.tpl' %}<main>{{ page }}</main>",
        header__tpl="<header>H</header>",
        notes__txt="ignored",
    )
    group = load_templates("site", tpl, TemplateFunctions("", tmp_path))
    assert group.names == ["header.tpl", "index.tpl"]
    assert group.render("index.tpl", {"page": "P"}) == "<header>H</header><main>P</main>"


def test_missing_index_template_fails(tmp_path):
    tpl = write_templates(tmp_path / "templates", other__tpl="x")
    with pytest.raises(TemplateLoadError) as excinfo:
        load_templates("site", tpl, TemplateFunctions("", tmp_path))
    assert "index.tpl" in excinfo.value.message


def test_syntax_error_fails_the_whole_group(tmp_path):
    tpl = write_templates(
        tmp_path / "templates", index__tpl="ok", broken__tpl="{% if %}"
    )
    with pytest.raises(TemplateLoadError) as excinfo:
        load_templates("site", tpl, TemplateFunctions("", tmp_path))
    assert excinfo.value.source_path == tpl / "broken.tpl"


def test_undecodable_template_fails(tmp_path):
    tpl = write_templates(tmp_path / "templates", index__tpl="ok")
    (tpl / "bad.tpl").write_bytes(b"\xff\xfe bad")
    with pytest.raises(TemplateLoadError) as excinfo:
        load_templates("site", tpl, TemplateFunctions("", tmp_path))
    assert excinfo.value.source_path == tpl / "bad.tpl"
    assert isinstance(excinfo.value.original_error, UnicodeDecodeError)


def test_include_of_undecodable_file_is_empty(tmp_path):
    (tmp_path / "blob.bin").write_bytes(b"\xff\xfe")
    assert TemplateFunctions("", tmp_path).include("blob.bin") == ""


def test_missing_directory_fails(tmp_path):
    with pytest.raises(TemplateLoadError):
        load_templates("site", tmp_path / "nope", TemplateFunctions("", tmp_path))


def test_fix_deprecated_syntax_is_idempotent():
    source = "{{ link('/a', 'A') }}{{link('/b', 'B')}}{{ jstext(x) }}{{ htmltext(y) }}"
    fixed = fix_deprecated_syntax(source)
    assert fixed == "{{ anchor('/a', 'A') }}{{anchor('/b', 'B')}}{{ js(x) }}{{ html(y) }}"
    assert fix_deprecated_syntax(fixed) == fixed
    assert fix_deprecated_syntax("{{ page.link }}") == "{{ page.link }}"


def test_deprecated_spellings_render(tmp_path):
    tpl = write_templates(tmp_path / "templates", index__tpl="{{ link('/about', 'About') }}")
    group = load_templates("site", tpl, TemplateFunctions("/blog", tmp_path))
    assert group.render("index.tpl", {}) == '<a href="/blog/about">About</a>'


def test_asset_prefixes_mount_path(tmp_path):
    functions = TemplateFunctions("/blog", tmp_path)
    assert functions.asset("/css/site.css") == "/blog/css/site.css"
    assert functions.asset("css/site.css") == "/blog/css/site.css"
    assert functions.asset("https://cdn.example.com/x.js") == "https://cdn.example.com/x.js"
    assert TemplateFunctions("", tmp_path).asset("/img/a.png") == "/img/a.png"


def test_anchor_marks_external_links(tmp_path):
    functions = TemplateFunctions("", tmp_path)
    assert functions.anchor("/docs", "Docs") == '<a href="/docs">Docs</a>'
    assert (
        functions.anchor("https://example.com", "Out")
        == '<a target="_blank" href="https://example.com">Out</a>'
    )
    assert functions.anchor("/x", "<b>x</b>") == '<a href="/x"><b>x</b></a>'
    assert functions.anchor('/a"b', "A") == '<a href="/a&#34;b">A</a>'


def test_url_uses_request_host(tmp_path):
    tpl = write_templates(
        tmp_path / "templates",
        index__tpl="{{ url('/feed.xml') }} {{ url('ftp://files.example.com/a') }}",
    )
    group = load_templates("site", tpl, TemplateFunctions("", tmp_path))
    out = group.render("index.tpl", {"request_host": "example.com:8080"})
    assert out == "//example.com:8080/feed.xml ftp://files.example.com/a"


def test_include_reads_relative_to_document_root(tmp_path, caplog):
    (tmp_path / "snippets").mkdir()
    (tmp_path / "snippets" / "ad.html").write_text("<b>ad</b>", encoding="utf-8")
    functions = TemplateFunctions("", tmp_path)
    assert functions.include("snippets/ad.html") == "<b>ad</b>"
    with caplog.at_level(logging.WARNING):
        assert functions.include("missing.html") == ""
        assert functions.include("../../etc/passwd") == ""
    assert "could not read file" in caplog.text


def test_getint_and_passthrough_helpers(tmp_path):
    tpl = write_templates(
        tmp_path / "templates",
        index__tpl="{{ getint('12') + getint(3.9) + getint('x') }}|{{ html('<i>i</i>') }}|{{ js('a<b') }}|{{ '<u>' }}",
    )
    group = load_templates("site", tpl, TemplateFunctions("", tmp_path))
    assert group.render("index.tpl", {}) == "15|<i>i</i>|a<b|&lt;u&gt;"


def test_execution_errors_propagate(tmp_path):
    tpl = write_templates(tmp_path / "templates", index__tpl="{{ page.missing.deeper }}")
    group = load_templates("site", tpl, TemplateFunctions("", tmp_path))
    with pytest.raises(UndefinedError):
        group.render("index.tpl", {"page": {}})
