import os
import secrets
import string
from dataclasses import dataclass
from typing import Mapping

TOKEN_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
DEFAULT_TOKEN_LENGTH = 40

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_PORT = 8799


class ConfigError(RuntimeError):
  pass


@dataclass(frozen=True, repr=False)
class Config:
  upstream_base_url: str = DEFAULT_BASE_URL
  api_key: str = ""
  transcribe_model: str = "whisper-1"
  text_model: str = "gpt-4o-mini"
  tts_enabled: bool = False
  tts_model: str = "gpt-4o-mini-tts"
  tts_voice: str = "onyx"
  tts_format: str = "mp3"
  tts_instructions: str = ""
  tts_speed: float = 1.0
  listen_port: int = DEFAULT_PORT
  auth_token: str = ""

  def __repr__(self) -> str:
    # Keeps the key and token out of tracebacks and log lines.
    return (
      f"Config(upstream_base_url={self.upstream_base_url!r}, listen_port={self.listen_port}, "
      f"tts_enabled={self.tts_enabled}, api_key='***', auth_token='***')"
    )


def mint_token(length: int = DEFAULT_TOKEN_LENGTH) -> str:
  return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def strip_trailing_slash(value: str) -> str:
  return value.rstrip("/")


def env_or(environ: Mapping[str, str], name: str, default: str) -> str:
  value = environ.get(name)
  if value is None or not value.strip():
    return default
  return value.strip()


def env_required(environ: Mapping[str, str], name: str) -> str:
  value = environ.get(name)
  if value is None or not value.strip():
    raise ConfigError(f"Missing required environment variable: {name}")
  return value.strip()


def load_config(environ: Mapping[str, str] | None = None) -> Config:
  if environ is None:
    environ = os.environ

  api_key = env_required(environ, "OPENAI_API_KEY")

  port_text = env_or(environ, "LOCAL_MEET_TRANSLATOR_PORT", str(DEFAULT_PORT))
  try:
    port = int(port_text)
  except ValueError as error:
    raise ConfigError(f"LOCAL_MEET_TRANSLATOR_PORT must be an integer, got {port_text!r}") from error

  speed_text = env_or(environ, "OPENAI_TTS_SPEED", "1.0")
  try:
    tts_speed = float(speed_text)
  except ValueError as error:
    raise ConfigError(f"OPENAI_TTS_SPEED must be a number, got {speed_text!r}") from error

  return Config(
    upstream_base_url=strip_trailing_slash(env_or(environ, "OPENAI_BASE_URL", DEFAULT_BASE_URL)),
    api_key=api_key,
    transcribe_model=env_or(environ, "OPENAI_TRANSCRIBE_MODEL", "whisper-1"),
    text_model=env_or(environ, "OPENAI_TEXT_MODEL", "gpt-4o-mini"),
    tts_enabled=env_or(environ, "ENABLE_TTS", "false").lower() == "true",
    tts_model=env_or(environ, "OPENAI_TTS_MODEL", "gpt-4o-mini-tts"),
    tts_voice=env_or(environ, "OPENAI_TTS_VOICE", "onyx"),
    tts_format=env_or(environ, "OPENAI_TTS_FORMAT", "mp3"),
    tts_instructions=env_or(environ, "OPENAI_TTS_INSTRUCTIONS", ""),
    tts_speed=tts_speed,
    listen_port=port,
    auth_token=env_or(environ, "LOCAL_MEET_TRANSLATOR_TOKEN", "") or mint_token(),
  )
