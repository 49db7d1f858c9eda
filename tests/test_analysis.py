import json

import httpx
import pytest

from office_lunch.services.analysis import (
    ERROR_NOT_CONFIGURED,
    ERROR_UNPARSABLE,
    ERROR_UNREACHABLE,
    ERROR_UPSTREAM,
    BackendMenuAnalyzer,
    GeminiMenuAnalyzer,
    MockMenuAnalyzer,
    parse_menu_json,
    strip_code_fences,
)

MENU = {
    "restaurant": {"name": "Taco Stand", "phone": "", "address": ""},
    "items": [{"name": "Taco", "price": 60}],
}


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.parametrize(
    "text",
    (
        '{"items": []}',
        '```json\n{"items": []}\n```',
        '```\n{"items": []}```',
    ),
)
def test_parse_menu_json_strips_fences(text: str) -> None:
    assert parse_menu_json(text) == {"items": []}


def test_parse_menu_json_rejects_non_objects() -> None:
    with pytest.raises(ValueError):
        parse_menu_json("[1, 2]")
    with pytest.raises(ValueError):
        parse_menu_json("Sorry, I can't read this menu.")


@pytest.mark.parametrize("literal", ("NaN", "Infinity", "-Infinity"))
def test_parse_menu_json_rejects_non_finite_literals(literal: str) -> None:
    with pytest.raises(ValueError):
        parse_menu_json(f'{{"items": [{{"name": "Soup", "price": {literal}}}]}}')


def test_strip_code_fences_leaves_plain_text() -> None:
    assert strip_code_fences("  {}  ") == "{}"


# =============================================================================
# BACKEND
# =============================================================================

@pytest.mark.asyncio
async def test_backend_posts_image_and_parses_fenced_reply() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text="```json\n" + json.dumps(MENU) + "\n```")

    analyzer = BackendMenuAnalyzer(
        "http://lunch.test/api/analyze-menu", transport=httpx.MockTransport(handler)
    )
    result = await analyzer.analyze("QUJD")

    assert result.success
    assert result.data == MENU
    assert result.provider == "backend"
    assert seen["body"] == {"image": "QUJD"}


@pytest.mark.asyncio
async def test_backend_transport_error_is_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    analyzer = BackendMenuAnalyzer(
        "http://lunch.test/api/analyze-menu", transport=httpx.MockTransport(handler)
    )
    result = await analyzer.analyze("QUJD")

    assert not result.success
    assert result.unreachable


@pytest.mark.asyncio
async def test_backend_error_status_is_unreachable() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(500, json={"error": "Server configuration error"})
    )
    analyzer = BackendMenuAnalyzer("http://lunch.test/api/analyze-menu", transport=transport)

    result = await analyzer.analyze("QUJD")

    assert result.error_code == ERROR_UNREACHABLE
    assert "Server configuration error" in result.error_message


@pytest.mark.asyncio
async def test_backend_without_url_is_unreachable() -> None:
    result = await BackendMenuAnalyzer(None).analyze("QUJD")
    assert result.unreachable


@pytest.mark.asyncio
async def test_backend_garbage_reply_is_unparsable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))
    analyzer = BackendMenuAnalyzer("http://lunch.test/api/analyze-menu", transport=transport)

    result = await analyzer.analyze("QUJD")

    assert result.error_code == ERROR_UNPARSABLE
    assert not result.unreachable


# =============================================================================
# GEMINI
# =============================================================================

@pytest.mark.asyncio
async def test_gemini_request_shape_and_success() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=gemini_reply(json.dumps(MENU)))

    analyzer = GeminiMenuAnalyzer(
        "k3y",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )
    result = await analyzer.analyze("QUJD")

    assert result.success
    assert result.data["items"][0]["price"] == 60
    assert seen["url"].path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert seen["url"].params["key"] == "k3y"
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[0]["text"].startswith("Analyze this menu image.")
    assert parts[1]["inlineData"] == {"mimeType": "image/jpeg", "data": "QUJD"}


@pytest.mark.asyncio
async def test_gemini_without_key_is_not_configured() -> None:
    result = await GeminiMenuAnalyzer(None).analyze("QUJD")
    assert result.error_code == ERROR_NOT_CONFIGURED


@pytest.mark.asyncio
async def test_gemini_error_object_is_upstream_error() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(400, json={"error": {"message": "API key not valid"}})
    )
    result = await GeminiMenuAnalyzer("bad", transport=transport).analyze("QUJD")

    assert result.error_code == ERROR_UPSTREAM
    assert result.error_message == "API key not valid"


@pytest.mark.asyncio
async def test_gemini_empty_candidates() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
    result = await GeminiMenuAnalyzer("k3y", transport=transport).analyze("QUJD")

    assert result.error_message == "No text content in AI response"


@pytest.mark.asyncio
async def test_gemini_transport_error_is_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = await GeminiMenuAnalyzer("k3y", transport=httpx.MockTransport(handler)).analyze("QUJD")
    assert result.unreachable


# =============================================================================
# MOCK
# =============================================================================

@pytest.mark.asyncio
async def test_mock_analyzer_canned_menu() -> None:
    analyzer = MockMenuAnalyzer()
    result = await analyzer.analyze("QUJD")

    assert result.success
    assert len(result.data["items"]) == 4
    assert analyzer.calls == 1


@pytest.mark.asyncio
async def test_mock_analyzer_unreachable() -> None:
    result = await MockMenuAnalyzer(unreachable=True).analyze("QUJD")
    assert result.unreachable
