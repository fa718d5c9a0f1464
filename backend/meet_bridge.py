import base64
import binascii
import hmac
import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Type, TypeVar

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, Response

from bridge_config import Config, ConfigError, load_config
from schemas import (
  TranscribeRequest,
  TranscribeResponse,
  TranslateRequest,
  TranslateResponse,
  TtsRequest,
  TtsResponse,
)
from upstream_client import UpstreamClient, UpstreamError, guess_audio_mime, is_blank

logger = logging.getLogger("meet_bridge.api")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format="%(message)s")

# Never read from configuration: the bridge holds the provider key.
LOOPBACK_HOST = "127.0.0.1"
SERVICE_NAME = "local-meet-translator-bridge"

TRANSLATE_MAX_BYTES = 1_000_000
TRANSCRIBE_MAX_BYTES = 12_000_000
TTS_MAX_BYTES = 1_500_000

AUTH_ERROR = "Missing or invalid X-Auth-Token"
TTS_DISABLED_ERROR = "TTS is disabled. Set ENABLE_TTS=true and restart."

CORS_HEADERS = {
  "Access-Control-Allow-Origin": "*",
  "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
  "Access-Control-Allow-Headers": "Content-Type,X-Auth-Token",
  "Access-Control-Max-Age": "600",
}

RequestModel = TypeVar("RequestModel", bound=BaseModel)


class BridgeJSONResponse(JSONResponse):
  media_type = "application/json; charset=utf-8"


def error_response(status_code: int, message: str, headers: Dict[str, str] | None = None) -> BridgeJSONResponse:
  return BridgeJSONResponse(status_code=status_code, content={"ok": False, "error": message}, headers=headers)


def model_response(model: BaseModel) -> BridgeJSONResponse:
  return BridgeJSONResponse(content=model.model_dump(by_alias=True))


def add_cors_headers(response: Response) -> Response:
  for name, value in CORS_HEADERS.items():
    response.headers[name] = value
  response.headers["X-Content-Type-Options"] = "nosniff"
  return response


def tokens_match(provided: str, expected: str) -> bool:
  if not provided or not expected:
    return False
  return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_token(
  request: Request,
  x_auth_token: str = Header(default="", alias="x-auth-token"),
) -> None:
  config: Config = request.app.state.config
  if not tokens_match(x_auth_token, config.auth_token):
    raise HTTPException(status_code=401, detail=AUTH_ERROR)


async def read_body_limited(request: Request, max_bytes: int) -> bytes:
  too_large = HTTPException(status_code=413, detail=f"Request body too large (limit {max_bytes} bytes)")

  declared = request.headers.get("content-length", "")
  if declared.isdigit() and int(declared) > max_bytes:
    raise too_large

  chunks: List[bytes] = []
  total = 0
  async for chunk in request.stream():
    total += len(chunk)
    if total > max_bytes:
      raise too_large
    chunks.append(chunk)
  return b"".join(chunks)


def parse_body(body: bytes, model: Type[RequestModel]) -> RequestModel:
  try:
    payload = json.loads(body)
  except ValueError as error:
    raise HTTPException(status_code=400, detail="Invalid JSON body") from error
  if not isinstance(payload, dict):
    raise HTTPException(status_code=400, detail="JSON body must be an object")

  try:
    return model.model_validate(payload)
  except ValidationError as error:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    raise HTTPException(status_code=400, detail=f"Invalid request: {field}: {first.get('msg', 'invalid')}") from error


def decode_audio(audio_base64: str) -> bytes:
  try:
    return base64.b64decode(audio_base64.strip(), validate=True)
  except (binascii.Error, ValueError) as error:
    raise HTTPException(status_code=400, detail="audioBase64 is not valid base64") from error


router = APIRouter(dependencies=[Depends(verify_token)])


@router.get("/health")
async def health() -> BridgeJSONResponse:
  return BridgeJSONResponse(content={"ok": True, "service": SERVICE_NAME})


@router.post("/translate-text")
async def translate_text(request: Request) -> BridgeJSONResponse:
  body = await read_body_limited(request, TRANSLATE_MAX_BYTES)
  req = parse_body(body, TranslateRequest)
  if is_blank(req.text):
    raise HTTPException(status_code=400, detail="text is empty")

  upstream: UpstreamClient = request.app.state.upstream
  translation = await upstream.translate_text(req.source_lang, req.target_lang, req.text)
  return model_response(
    TranslateResponse(source_lang=req.source_lang, target_lang=req.target_lang, translation=translation)
  )


@router.post("/transcribe-and-translate")
async def transcribe_and_translate(request: Request) -> BridgeJSONResponse:
  body = await read_body_limited(request, TRANSCRIBE_MAX_BYTES)
  req = parse_body(body, TranscribeRequest)
  if is_blank(req.audio_base64):
    raise HTTPException(status_code=400, detail="audioBase64 is empty")
  audio = decode_audio(req.audio_base64)

  upstream: UpstreamClient = request.app.state.upstream
  transcript = await upstream.transcribe(audio, req.audio_mime)

  # Silent chunks transcribe to nothing; answer 200 without a translate call.
  translation = ""
  if is_blank(transcript):
    transcript = ""
  else:
    translation = await upstream.translate_text(req.source_lang, req.target_lang, transcript)

  return model_response(
    TranscribeResponse(
      audio_mime=req.audio_mime,
      source_lang=req.source_lang,
      target_lang=req.target_lang,
      transcript=transcript,
      translation=translation,
    )
  )


@router.post("/tts")
async def tts(request: Request) -> BridgeJSONResponse:
  config: Config = request.app.state.config
  if not config.tts_enabled:
    raise HTTPException(status_code=403, detail=TTS_DISABLED_ERROR)

  body = await read_body_limited(request, TTS_MAX_BYTES)
  req = parse_body(body, TtsRequest)
  if is_blank(req.text):
    raise HTTPException(status_code=400, detail="text is empty")

  upstream: UpstreamClient = request.app.state.upstream
  audio = await upstream.tts_audio(
    req.text,
    voice=req.voice,
    model=req.model,
    response_format=req.response_format,
    instructions=req.instructions,
    speed=req.speed,
  )
  effective_format = config.tts_format if is_blank(req.response_format) else req.response_format
  return model_response(
    TtsResponse(
      audio_mime=guess_audio_mime(effective_format),
      audio_base64=base64.b64encode(audio).decode("ascii"),
    )
  )


def create_app(config: Config, upstream: UpstreamClient | None = None) -> FastAPI:
  if upstream is None:
    upstream = UpstreamClient(config)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    yield
    await upstream.aclose()

  # No docs routes: everything served here sits behind the token.
  app = FastAPI(title="Local Meet Translator Bridge", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
  app.state.config = config
  app.state.upstream = upstream
  app.include_router(router)

  @app.exception_handler(StarletteHTTPException)
  async def http_error(request: Request, exc: StarletteHTTPException) -> BridgeJSONResponse:
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))

  @app.exception_handler(UpstreamError)
  async def upstream_error(request: Request, exc: UpstreamError) -> BridgeJSONResponse:
    logger.exception(
      json.dumps(
        {
          "event": "upstream_error",
          "path": request.url.path,
          "upstream_status": exc.status_code,
          "error_type": type(exc).__name__,
        },
        ensure_ascii=False,
      ),
      exc_info=exc,
    )
    return error_response(500, f"Upstream error: {exc}")

  @app.middleware("http")
  async def access_log(request: Request, call_next):
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    start = time.perf_counter()
    method = request.method
    path = request.url.path

    try:
      response = await call_next(request)
    except Exception as error:
      logger.exception(
        json.dumps(
          {
            "event": "request_error",
            "request_id": request_id,
            "method": method,
            "path": path,
            "error_type": type(error).__name__,
          },
          ensure_ascii=False,
        )
      )
      response = error_response(500, f"Internal error: {type(error).__name__}: {error}")

    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["x-request-id"] = request_id
    logger.info(
      json.dumps(
        {
          "event": "request_completed",
          "request_id": request_id,
          "method": method,
          "path": path,
          "status_code": response.status_code,
          "latency_ms": round(latency_ms, 2),
        },
        ensure_ascii=False,
      )
    )
    return response

  # Registered last so it wraps everything else, including the access log.
  @app.middleware("http")
  async def cors_preamble(request: Request, call_next):
    if request.method == "OPTIONS":
      return add_cors_headers(Response(status_code=204))
    response = await call_next(request)
    return add_cors_headers(response)

  return app


def startup_banner(config: Config) -> List[str]:
  if config.tts_enabled:
    tts_status = f"enabled model={config.tts_model} voice={config.tts_voice}"
  else:
    tts_status = "disabled (set ENABLE_TTS=true later)"
  return [
    f"  URL:   http://{LOOPBACK_HOST}:{config.listen_port}",
    f"  TOKEN: {config.auth_token}",
    f"  TTS:   {tts_status}",
  ]


def main() -> None:
  try:
    config = load_config(os.environ)
  except ConfigError as error:
    raise SystemExit(f"[meet-bridge] ERROR: {error}") from error

  app = create_app(config)
  for line in startup_banner(config):
    print(line, flush=True)

  uvicorn.run(
    app,
    host=LOOPBACK_HOST,
    port=config.listen_port,
    log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    access_log=False,
  )


if __name__ == "__main__":
  main()
