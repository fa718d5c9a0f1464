import json
from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from bridge_config import Config
from meet_bridge import create_app
from upstream_client import UpstreamClient

TEST_TOKEN = "test-token-0123456789abcdefABCDEF"
UPSTREAM_BASE = "https://upstream.test"


def output_text_payload(*texts: str) -> dict:
  return {"output": [{"type": "message", "content": [{"type": "output_text", "text": text} for text in texts]}]}


class FakeUpstream:
  """Routes provider calls by path and records every request it sees."""

  def __init__(self, transcript: str = "Hello, world.", translation: str = "Привет, мир.", audio: bytes = b"ID3-fake-audio") -> None:
    self.requests: List[httpx.Request] = []
    self.responses = {
      "/v1/audio/transcriptions": lambda: httpx.Response(200, json={"text": transcript}),
      "/v1/responses": lambda: httpx.Response(200, json=output_text_payload(translation)),
      "/v1/audio/speech": lambda: httpx.Response(200, content=audio, headers={"content-type": "audio/mpeg"}),
    }

  def respond(self, path: str, factory: Callable[[], httpx.Response]) -> None:
    self.responses[path] = factory

  def paths(self) -> List[str]:
    return [request.url.path for request in self.requests]

  def json_body(self, index: int = -1) -> dict:
    return json.loads(self.requests[index].content)

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    factory = self.responses.get(request.url.path)
    if factory is None:
      return httpx.Response(404, text="not found")
    return factory()


def make_config(**overrides) -> Config:
  values = {"upstream_base_url": UPSTREAM_BASE, "api_key": "sk-test-key", "auth_token": TEST_TOKEN}
  values.update(overrides)
  return Config(**values)


@pytest.fixture
def fake_upstream() -> FakeUpstream:
  return FakeUpstream()


@pytest.fixture
def make_client(fake_upstream):
  def build(**overrides) -> TestClient:
    config = make_config(**overrides)
    upstream = UpstreamClient(config, transport=httpx.MockTransport(fake_upstream))
    return TestClient(create_app(config, upstream))

  return build


@pytest.fixture
def client(make_client) -> TestClient:
  return make_client()


@pytest.fixture
def auth() -> dict:
  return {"X-Auth-Token": TEST_TOKEN}
