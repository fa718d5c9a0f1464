import asyncio
import json
import logging
from typing import Any, Dict, List

import httpx

from bridge_config import Config, mint_token

logger = logging.getLogger("meet_bridge.upstream")

CONNECT_TIMEOUT_SECONDS = 20.0
TRANSCRIBE_TIMEOUT_SECONDS = 120.0
TRANSLATE_TIMEOUT_SECONDS = 60.0
TTS_TIMEOUT_SECONDS = 60.0

BOUNDARY_PREFIX = "----LocalMeetTranslatorBoundary"
BOUNDARY_TOKEN_LENGTH = 12

MIME_ALIASES = {
  # MediaRecorder sometimes labels audio-only streams as video/webm.
  "video/webm": "audio/webm",
  "audio/x-wav": "audio/wav",
  "audio/mp3": "audio/mpeg",
  "audio/x-m4a": "audio/mp4",
  "audio/m4a": "audio/mp4",
}

EXTENSION_HINTS: List[tuple] = [
  (("webm",), ".webm"),
  (("wav",), ".wav"),
  (("mpeg", "mp3"), ".mp3"),
  (("mp4", "m4a"), ".m4a"),
  (("ogg",), ".ogg"),
]

TTS_FORMAT_MIME_TYPES = {
  "mp3": "audio/mpeg",
  "wav": "audio/wav",
  "flac": "audio/flac",
  "aac": "audio/aac",
  "opus": "audio/opus",
  "pcm": "audio/pcm",
}

TRANSLATE_PROMPT_TEMPLATE = (
  "Task: Translate.\n"
  "Source language: {source}\n"
  "Target language: {target}\n"
  "Rules:\n"
  "1) Return ONLY the translation.\n"
  "2) Preserve meaning, numbers, names, and formatting.\n"
  "3) If the source is already in target language, return it unchanged.\n"
  "\n"
  "Text:\n"
  "{text}"
)


class UpstreamError(Exception):
  def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
    super().__init__(message)
    self.status_code = status_code
    self.body = body


def is_blank(value: str | None) -> bool:
  return value is None or not value.strip()


def normalize_transcribe_mime(mime: str | None) -> str:
  if is_blank(mime):
    return "application/octet-stream"

  # e.g. "audio/webm;codecs=opus"
  value = mime.strip().split(";", 1)[0].strip().lower()
  if not value:
    return "application/octet-stream"
  return MIME_ALIASES.get(value, value)


def guess_ext(mime: str | None) -> str:
  if mime is None:
    return ".bin"
  lowered = mime.lower()
  for needles, ext in EXTENSION_HINTS:
    if any(needle in lowered for needle in needles):
      return ext
  return ".bin"


def guess_audio_mime(response_format: str | None) -> str:
  if response_format is None:
    return "audio/mpeg"
  return TTS_FORMAT_MIME_TYPES.get(response_format.strip().lower(), "application/octet-stream")


def build_multipart(boundary: str, audio: bytes, audio_mime: str, model: str) -> bytes:
  filename = "audio" + guess_ext(audio_mime)
  parts = [
    f"--{boundary}\r\n".encode("utf-8"),
    b'Content-Disposition: form-data; name="model"\r\n\r\n',
    model.encode("utf-8"),
    b"\r\n",
    f"--{boundary}\r\n".encode("utf-8"),
    f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'.encode("utf-8"),
    f"Content-Type: {audio_mime}\r\n\r\n".encode("utf-8"),
    audio,
    b"\r\n",
    f"--{boundary}--\r\n".encode("utf-8"),
  ]
  return b"".join(parts)


def build_translate_prompt(source_lang: str | None, target_lang: str | None, text: str) -> str:
  source = "auto" if is_blank(source_lang) else source_lang.strip()
  target = "ru" if is_blank(target_lang) else target_lang.strip()
  return TRANSLATE_PROMPT_TEMPLATE.format(source=source, target=target, text=text)


def extract_output_text(payload: Any) -> str:
  """Collect the output_text fragments of a Responses API payload.

  Items are walked in document order; content kinds other than
  ``output_text`` (refusals, tool calls, reasoning summaries) are skipped.
  """
  fragments: List[str] = []
  output = payload.get("output") if isinstance(payload, dict) else None
  if not isinstance(output, list):
    return ""

  for item in output:
    content = item.get("content") if isinstance(item, dict) else None
    if not isinstance(content, list):
      continue
    for part in content:
      if not isinstance(part, dict) or part.get("type") != "output_text":
        continue
      text = part.get("text")
      if isinstance(text, str) and text.strip():
        fragments.append(text)

  return "\n".join(fragments).strip()


def pick_override(override: str | None, default: str) -> str:
  if is_blank(override):
    return default
  return override.strip()


class UpstreamClient:
  """Async client for the provider's transcription, Responses and speech endpoints."""

  def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self.config = config
    self.base_url = config.upstream_base_url.rstrip("/")
    self.http = httpx.AsyncClient(
      transport=transport,
      timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT_SECONDS),
    )

  @property
  def tts_enabled(self) -> bool:
    return self.config.tts_enabled

  async def aclose(self) -> None:
    await self.http.aclose()

  def _auth_headers(self) -> Dict[str, str]:
    return {"Authorization": f"Bearer {self.config.api_key}"}

  async def _post(self, operation: str, path: str, timeout: float, **kwargs) -> httpx.Response:
    url = f"{self.base_url}{path}"
    try:
      response = await asyncio.wait_for(self.http.post(url, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as error:
      raise UpstreamError(f"OpenAI {operation} timed out after {timeout:g}s") from error
    except httpx.HTTPError as error:
      raise UpstreamError(f"OpenAI {operation} request failed: {type(error).__name__}: {error}") from error

    logger.debug(
      json.dumps(
        {"event": "upstream_response", "operation": operation, "status_code": response.status_code},
        ensure_ascii=False,
      )
    )
    return response

  @staticmethod
  def _raise_for_status(label: str, response: httpx.Response) -> None:
    if response.status_code // 100 != 2:
      body = response.content.decode("utf-8", errors="replace")
      raise UpstreamError(
        f"OpenAI {label} failed: HTTP {response.status_code} {body}",
        status_code=response.status_code,
        body=body,
      )

  @staticmethod
  def _parse_json(label: str, response: httpx.Response) -> Any:
    try:
      return json.loads(response.content)
    except ValueError as error:
      raise UpstreamError(
        f"OpenAI {label} response is not valid JSON",
        status_code=response.status_code,
        body=response.content.decode("utf-8", errors="replace"),
      ) from error

  async def transcribe(self, audio: bytes, audio_mime: str | None) -> str:
    boundary = BOUNDARY_PREFIX + mint_token(BOUNDARY_TOKEN_LENGTH)
    body = build_multipart(boundary, audio, normalize_transcribe_mime(audio_mime), self.config.transcribe_model)
    headers = self._auth_headers()
    headers["Content-Type"] = f"multipart/form-data; boundary={boundary}"

    response = await self._post(
      "transcribe",
      "/v1/audio/transcriptions",
      TRANSCRIBE_TIMEOUT_SECONDS,
      content=body,
      headers=headers,
    )
    self._raise_for_status("transcribe", response)

    payload = self._parse_json("transcribe", response)
    text = payload.get("text") if isinstance(payload, dict) else None
    if text is None:
      raise UpstreamError(f"OpenAI transcribe response has no 'text': {payload}", status_code=response.status_code)
    # Whisper returns "" for silence; that is a valid result.
    return text if isinstance(text, str) else str(text)

  async def translate_text(self, source_lang: str | None, target_lang: str | None, text: str | None) -> str:
    if is_blank(text):
      return ""

    body = {
      "model": self.config.text_model,
      "input": build_translate_prompt(source_lang, target_lang, text),
      "temperature": 0,
    }
    response = await self._post(
      "translate",
      "/v1/responses",
      TRANSLATE_TIMEOUT_SECONDS,
      json=body,
      headers=self._auth_headers(),
    )
    self._raise_for_status("responses", response)

    payload = self._parse_json("responses", response)
    extracted = extract_output_text(payload)
    if not extracted:
      raise UpstreamError(
        f"OpenAI responses returned no output_text: {json.dumps(payload, ensure_ascii=False)}",
        status_code=response.status_code,
      )
    return extracted

  def speech_body(
    self,
    text: str,
    voice: str | None = None,
    model: str | None = None,
    response_format: str | None = None,
    instructions: str | None = None,
    speed: float | None = None,
  ) -> Dict[str, Any]:
    config = self.config
    effective_model = pick_override(model, config.tts_model)
    body: Dict[str, Any] = {
      "model": effective_model,
      "voice": pick_override(voice, config.tts_voice),
      "input": text,
      "response_format": pick_override(response_format, config.tts_format),
      "speed": config.tts_speed if speed is None else speed,
    }

    effective_instructions = config.tts_instructions if is_blank(instructions) else instructions
    # tts-1 / tts-1-hd reject the field.
    if not is_blank(effective_instructions) and not effective_model.startswith("tts-1"):
      body["instructions"] = effective_instructions
    return body

  async def tts_audio(
    self,
    text: str | None,
    voice: str | None = None,
    model: str | None = None,
    response_format: str | None = None,
    instructions: str | None = None,
    speed: float | None = None,
  ) -> bytes:
    if is_blank(text):
      return b""

    body = self.speech_body(text, voice, model, response_format, instructions, speed)
    response = await self._post(
      "TTS",
      "/v1/audio/speech",
      TTS_TIMEOUT_SECONDS,
      json=body,
      headers=self._auth_headers(),
    )
    self._raise_for_status("TTS", response)
    return response.content
