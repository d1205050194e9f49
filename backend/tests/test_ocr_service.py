"""
Tests for the OCR service: reply parsing and both extraction flows.
The Anthropic client is always mocked.
"""
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from services import ocr_service
from services.ocr_service import (
    OcrError,
    analyze_receipt,
    content_to_text,
    parse_json_response,
    resolve_mime_type,
)


def reply(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


@pytest.fixture
def claude(monkeypatch):
    """Patch the SDK client; yields the mocked messages.create."""
    monkeypatch.setattr(ocr_service, "ANTHROPIC_API_KEY", "test-key")
    client = MagicMock()
    client.messages.create = AsyncMock()
    with patch("services.ocr_service.anthropic.AsyncAnthropic", return_value=client):
        yield client.messages.create


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"store": "Lidl"}') == {"store": "Lidl"}

    def test_fenced_json(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_embedded_json(self):
        text = 'Here is the receipt:\n{"items": []}\nHope that helps.'
        assert parse_json_response(text) == {"items": []}

    def test_dict_passthrough(self):
        d = {"a": 1}
        assert parse_json_response(d) is d

    def test_content_blocks(self):
        assert parse_json_response([{"type": "text", "text": '{"a": 2}'}]) == {"a": 2}

    def test_garbage_raises(self):
        with pytest.raises(OcrError):
            parse_json_response("no json here")

    def test_none_raises(self):
        with pytest.raises(OcrError):
            parse_json_response(None)


class TestHelpers:

    @pytest.mark.parametrize("given,expected", [
        (None, "image/jpeg"),
        ("", "image/jpeg"),
        ("IMAGE/PNG", "image/png"),
        ("application/pdf", "application/pdf"),
        ("text/plain", "image/jpeg"),
    ])
    def test_resolve_mime_type(self, given, expected):
        assert resolve_mime_type(given) == expected

    def test_content_to_text_joins_blocks(self):
        blocks = ["a", {"text": "b"}, SimpleNamespace(text="c"), {"type": "image"}]
        assert content_to_text(blocks) == "a\nb\nc"

    def test_content_to_text_other(self):
        assert content_to_text(42) is None


class TestAnalyzeReceipt:

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(ocr_service, "ANTHROPIC_API_KEY", "")
        with pytest.raises(OcrError, match="ANTHROPIC_API_KEY"):
            await analyze_receipt("aGVsbG8=")

    @pytest.mark.asyncio
    async def test_two_step_parses_transcription(self, claude):
        claude.side_effect = [reply("LIDL\nMILK 1L 25.00\nTOTAL 25.00"),
                              reply('{"store": "Lidl", "items": []}')]
        draft = await analyze_receipt("aGVsbG8=", flow="two-step")
        assert draft == {"store": "Lidl", "items": []}
        assert claude.await_count == 2
        second = claude.await_args_list[1].kwargs
        assert second["system"] == ocr_service.OCR_PARSE_PROMPT
        assert "MILK 1L" in second["messages"][0]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_two_step_json_transcription_skips_parse(self, claude):
        claude.return_value = reply('{"store": "Albert"}')
        draft = await analyze_receipt("aGVsbG8=")
        assert draft == {"store": "Albert"}
        assert claude.await_count == 1

    @pytest.mark.asyncio
    async def test_vision_flow(self, claude):
        claude.return_value = reply('```json\n{"items": []}\n```')
        draft = await analyze_receipt("aGVsbG8=", mime_type="image/png",
                                      model="some-model", flow="vision")
        assert draft == {"items": []}
        kwargs = claude.await_args.kwargs
        assert kwargs["model"] == "some-model"
        assert kwargs["system"] == ocr_service.OCR_IMAGE_PROMPT
        image = kwargs["messages"][0]["content"][0]
        assert image["type"] == "image"
        assert image["source"]["media_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_pdf_sent_as_document(self, claude):
        claude.return_value = reply('{"items": []}')
        await analyze_receipt("aGVsbG8=", mime_type="application/pdf", flow="vision")
        block = claude.await_args.kwargs["messages"][0]["content"][0]
        assert block["type"] == "document"

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, claude):
        claude.return_value = reply("sorry, cannot read this")
        with pytest.raises(OcrError):
            await analyze_receipt("aGVsbG8=", flow="vision")
