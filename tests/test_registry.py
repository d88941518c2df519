import logging
from pathlib import Path

import pytest

from lantern.config import ConfigError, Settings
from lantern.host import Host, HostError
from lantern.http import Request
from lantern.registry import DEFAULT_HOST, Registry, match_route, validate_host_dirs


def make_site(root: Path, marker: str) -> Path:
    (root / "templates").mkdir(parents=True)
    (root / "content").mkdir()
    (root / "site.yaml").write_text(f"title: {marker}\n", encoding="utf-8")
    (root / "templates" / "index.tpl").write_text(f"{marker}:{{{{ page.content }}}}", encoding="utf-8")
    (root / "content" / "index.md").write_text("home\n", encoding="utf-8")
    (root / "content" / "post.md").write_text("post\n", encoding="utf-8")
    return root


def request(target: str, hostname: str = "example.com") -> Request:
    return Request(method="GET", target=target, headers={"host": f"{hostname}:8080"})


def settings_for(hosts: dict[str, Path]) -> Settings:
    return Settings({"hosts": {name: str(path) for name, path in hosts.items()}})


def test_match_route_prefers_longest_key():
    keys = ["default", "/", "/blog", "/blog/2024", "example.com", "example.com/blog"]
    assert match_route(keys, "example.com", "/blog/2024/post") == "example.com/blog"
    assert match_route(keys, "other.org", "/blog/2024/post") == "/blog/2024"
    assert match_route(keys, "other.org", "/blog/") == "/blog"
    assert match_route(keys, "other.org", "/about") == "/"
    assert match_route(keys, "example.com", "/about") == "example.com"


def test_match_route_respects_segment_boundaries():
    assert match_route(["/blog"], "h", "/blogger") is None
    assert match_route(["/blog"], "h", "/blog") == "/blog"
    assert match_route(["example.com"], "example.com.evil", "/") is None


def test_match_route_breaks_ties_deterministically():
    # equal length: more segments wins
    assert match_route(["ab/c", "/c/d"], "ab", "/c/d/e") == "/c/d"
    # equal length and segments: smallest key wins
    assert match_route(["a/b/", "/b/c"], "a", "/b/c") == "/b/c"


def test_match_route_ignores_default_key():
    assert match_route([DEFAULT_HOST], "default", "/") is None


def test_validate_host_dirs(tmp_path):
    (tmp_path / "file").write_text("x", encoding="utf-8")
    validate_host_dirs({"ok": tmp_path})
    with pytest.raises(ConfigError, match="directory not found"):
        validate_host_dirs({"missing": tmp_path / "nope"})
    with pytest.raises(ConfigError, match="does not point to a directory"):
        validate_host_dirs({"file": tmp_path / "file"})


def test_rebuild_and_route(tmp_path):
    default = make_site(tmp_path / "default", "D")
    blog = make_site(tmp_path / "blog", "B")
    registry = Registry(watch=False)
    registry.rebuild(settings_for({"default": default, "/blog": blog}))

    assert registry.handle(request("/")).body == b"D:<p>home</p>\n"
    assert registry.handle(request("/blog")).body == b"B:<p>home</p>\n"
    assert registry.handle(request("/blog/post")).body == b"B:<p>post</p>\n"
    assert registry.handle(request("/blogger")).status == 404
    registry.close()
    assert registry.hosts == {}


def test_hostname_routes(tmp_path):
    default = make_site(tmp_path / "default", "D")
    docs = make_site(tmp_path / "docs", "X")
    registry = Registry(watch=False)
    registry.rebuild(settings_for({"default": default, "docs.example.com": docs}))
    assert registry.route(request("/", "docs.example.com")).name == "docs.example.com"
    assert registry.route(request("/", "example.com")).name == "default"


def test_missing_default_is_a_server_error(tmp_path, caplog):
    blog = make_site(tmp_path / "blog", "B")
    registry = Registry(watch=False)
    with caplog.at_level(logging.WARNING):
        registry.rebuild(settings_for({"/blog": blog}))
    assert "default host was not provided" in caplog.text

    with caplog.at_level(logging.INFO, logger="lantern.access"):
        response = registry.handle(request("/other"))
    assert response.status == 500
    assert any(r.name == "lantern.access" and '" 500 -' in r.getMessage() for r in caplog.records)


def test_rebuild_requires_hosts():
    registry = Registry(watch=False)
    with pytest.raises(ConfigError, match="missing 'hosts' entry"):
        registry.rebuild(Settings({}))


def test_failed_rebuild_keeps_previous_hosts(tmp_path):
    default = make_site(tmp_path / "default", "D")
    registry = Registry(watch=False)
    registry.rebuild(settings_for({"default": default}))
    previous = registry.hosts

    broken = tmp_path / "broken"
    broken.mkdir()
    with pytest.raises(HostError):
        registry.rebuild(settings_for({"default": make_site(tmp_path / "new", "N"), "broken": broken}))
    assert registry.hosts == previous
    assert registry.handle(request("/")).body.startswith(b"D:")

    with pytest.raises(ConfigError):
        registry.rebuild(settings_for({"default": tmp_path / "missing"}))
    assert registry.hosts == previous


def test_failed_rebuild_closes_new_hosts(tmp_path):
    closed = []

    class RecordingHost:
        def __init__(self, name):
            self.name = name

        def close(self):
            closed.append(self.name)

    def factory(name, root, watch=True):
        if name == "bad":
            raise HostError(name, "boom")
        return RecordingHost(name)

    for name in ("a", "bad"):
        (tmp_path / name).mkdir()
    registry = Registry(watch=False, host_factory=factory)
    with pytest.raises(HostError):
        registry.rebuild(settings_for({"a": tmp_path / "a", "bad": tmp_path / "bad"}))
    assert closed == ["a"]
    assert registry.hosts == {}


def test_unexpected_host_failure_closes_new_hosts(tmp_path):
    closed = []

    class RecordingHost:
        def __init__(self, name):
            self.name = name

        def close(self):
            closed.append(self.name)

    def factory(name, root, watch=True):
        if name == "bad":
            raise RuntimeError("boom")
        return RecordingHost(name)

    for name in ("a", "bad"):
        (tmp_path / name).mkdir()
    registry = Registry(watch=False, host_factory=factory)
    with pytest.raises(RuntimeError):
        registry.rebuild(settings_for({"a": tmp_path / "a", "bad": tmp_path / "bad"}))
    assert closed == ["a"]
    assert registry.hosts == {}


def test_undecodable_host_settings_fail_the_rebuild(tmp_path):
    default = make_site(tmp_path / "default", "D")
    registry = Registry(watch=False)
    registry.rebuild(settings_for({"default": default}))
    previous = registry.hosts

    broken = make_site(tmp_path / "broken", "X")
    (broken / "site.yaml").write_bytes(b"title: \xff\n")
    with pytest.raises(HostError):
        registry.rebuild(settings_for({"default": default, "broken": broken}))
    assert registry.hosts == previous


def test_successful_rebuild_closes_old_hosts(tmp_path):
    default = make_site(tmp_path / "default", "D")
    registry = Registry(watch=False)
    registry.rebuild(settings_for({"default": default}))
    old = registry.hosts["default"]
    closed = []
    old.close = lambda: closed.append(old.name)

    registry.rebuild(settings_for({"default": make_site(tmp_path / "next", "E")}))
    assert closed == ["default"]
    assert registry.handle(request("/")).body.startswith(b"E:")


def test_registry_accepts_prebuilt_hosts(tmp_path):
    host = Host.create("default", make_site(tmp_path / "s", "S"), watch=False)
    registry = Registry({"default": host}, watch=False)
    assert registry.route(request("/anything")) is host
