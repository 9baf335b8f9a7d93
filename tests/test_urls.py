from support_directory.core.urls import absolute_http_url, is_icon_url, normalize_donate_url


def test_normalize_donate_url_lowercases_scheme_only() -> None:
    assert normalize_donate_url("Http://Example.org/Give") == "http://Example.org/Give"
    assert normalize_donate_url("HTTPS://Example.org/Give?Ref=A") == "https://Example.org/Give?Ref=A"
    assert normalize_donate_url("  https://example.org/give  ") == "https://example.org/give"


def test_normalize_donate_url_rejects_non_http_values() -> None:
    assert normalize_donate_url("ftp://x.org") is None
    assert normalize_donate_url("www.example.org") is None
    assert normalize_donate_url("see instagram") is None
    assert normalize_donate_url("") is None
    assert normalize_donate_url(None) is None


def test_is_icon_url_checks_path_extension() -> None:
    assert is_icon_url("https://example.org/favicon.ico")
    assert is_icon_url("https://example.org/static/Favicon.ICO?v=2")
    assert not is_icon_url("https://example.org/logo.png")
    assert not is_icon_url("https://example.org/ico/logo.svg")


def test_absolute_http_url_resolves_relative_and_rejects_data_uris() -> None:
    assert absolute_http_url("https://example.org/give/", "/img/logo.png") == "https://example.org/img/logo.png"
    assert absolute_http_url("https://example.org/give/", "logo.png") == "https://example.org/give/logo.png"
    assert absolute_http_url("https://example.org/", "data:image/png;base64,AAAA") is None
    assert absolute_http_url("https://example.org/", "javascript:void(0)") is None
    assert absolute_http_url("https://example.org/", None) is None
