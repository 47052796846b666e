from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from equipment_stock.config import RecognitionConfig, load_camera, load_recognition
from equipment_stock.domain.errors import RecognitionServiceError
from equipment_stock.domain.models import CapturedImage
from equipment_stock.recognition.service import OpenRouterRecognitionService, image_data_url


class _Completions:
    def __init__(self, content="{}", error=None) -> None:
        self.calls = []
        self.content = content
        self.error = error

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            id="gen-1",
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


def _service(completions: _Completions) -> OpenRouterRecognitionService:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    config = RecognitionConfig(api_key="sk-test", model_name="google/gemini-2.5-flash", search_results=2)
    return OpenRouterRecognitionService(config, client=client)


def test_analyze_sends_image_and_schema():
    completions = _Completions(content='{"brand": "HP", "model": "", "serialNumber": ""}')
    image = CapturedImage(data=b"abc", width=2, height=2)

    text = asyncio.run(_service(completions).analyze(image, "read the label", {"type": "object"}))

    assert text.startswith("{")
    call = completions.calls[0]
    assert call["model"] == "google/gemini-2.5-flash"
    assert call["temperature"] == 0.0
    content = call["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "read the label"}
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64," + base64.b64encode(b"abc").decode()
    assert call["response_format"]["type"] == "json_schema"
    assert call["response_format"]["json_schema"]["strict"] is True


def test_analyze_with_search_enables_web_plugin():
    completions = _Completions(content="HP LaserJet Pro M404dn;Printer")

    text = asyncio.run(_service(completions).analyze_with_search("find it"))

    assert text == "HP LaserJet Pro M404dn;Printer"
    assert completions.calls[0]["extra_body"] == {"plugins": [{"id": "web", "max_results": 2}]}
    assert "response_format" not in completions.calls[0]


def test_transport_and_empty_answers_raise_service_error():
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    failing = _Completions(error=APIConnectionError(request=request))
    with pytest.raises(RecognitionServiceError):
        asyncio.run(_service(failing).analyze_with_search("x"))

    empty = _Completions(content="   ")
    with pytest.raises(RecognitionServiceError):
        asyncio.run(_service(empty).analyze_with_search("x"))


def test_image_data_url_uses_mime_type():
    url = image_data_url(CapturedImage(data=b"\x89PNG", width=0, height=0, mime_type="image/png"))
    assert url.startswith("data:image/png;base64,")


def test_config_reads_dotenv(tmp_path, monkeypatch):
    for name in ("OPENROUTER_API_KEY", "OPEN_ROUTER_API_KEY", "RECOGNITION_MODEL", "CAMERA_JPEG_QUALITY", "CAMERA_INDEX_USER"):
        monkeypatch.delenv(name, raising=False)
    assert load_recognition(str(tmp_path)) is None

    (tmp_path / ".env").write_text(
        "OPEN_ROUTER_API_KEY=sk-from-file\nRECOGNITION_MODEL=openai/gpt-4o-mini\nCAMERA_INDEX_USER=1\nCAMERA_JPEG_QUALITY=500\n",
        encoding="utf-8",
    )
    config = load_recognition(str(tmp_path))
    assert config.api_key == "sk-from-file"
    assert config.model_name == "openai/gpt-4o-mini"

    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-from-env")
    assert load_recognition(str(tmp_path)).api_key == "sk-from-env"

    camera = load_camera(str(tmp_path))
    assert camera.index_for("user") == 1
    assert camera.index_for("environment") == 0
    assert camera.jpeg_quality == 90
