import os
import sys
import re
from typing import Mapping

from bridge_config import TOKEN_ALPHABET, Config, ConfigError, load_config

MIN_TOKEN_LENGTH = int(os.getenv("MIN_TOKEN_LENGTH", "16"))
TTS_FORMATS = {"mp3", "wav", "opus", "aac", "flac", "pcm"}


def fail(message: str) -> None:
  print(f"[env-check] ERROR: {message}")
  sys.exit(1)


def validate_base_url(config: Config) -> None:
  if not config.upstream_base_url.startswith(("http://", "https://")):
    fail("OPENAI_BASE_URL must start with http:// or https://")


def validate_port(config: Config) -> None:
  if not 1 <= config.listen_port <= 65535:
    fail("LOCAL_MEET_TRANSLATOR_PORT must be between 1 and 65535")


def validate_token(environ: Mapping[str, str]) -> None:
  token = environ.get("LOCAL_MEET_TRANSLATOR_TOKEN", "").strip()
  if not token:
    return
  if len(token) < MIN_TOKEN_LENGTH:
    fail(f"LOCAL_MEET_TRANSLATOR_TOKEN must be at least {MIN_TOKEN_LENGTH} chars")
  if any(char not in TOKEN_ALPHABET for char in token):
    fail("LOCAL_MEET_TRANSLATOR_TOKEN must only contain A-Z, a-z and 0-9")


def validate_tts(environ: Mapping[str, str], config: Config) -> None:
  enable_tts = environ.get("ENABLE_TTS", "").strip().lower()
  if enable_tts and enable_tts not in {"true", "false"}:
    fail("ENABLE_TTS must be true or false")
  if config.tts_format.lower() not in TTS_FORMATS:
    fail(f"OPENAI_TTS_FORMAT must be one of {', '.join(sorted(TTS_FORMATS))}")
  if config.tts_speed <= 0:
    print("[env-check] WARN: OPENAI_TTS_SPEED is not positive; the provider will likely reject it")


def check(environ: Mapping[str, str]) -> Config:
  try:
    config = load_config(environ)
  except ConfigError as error:
    fail(str(error))

  validate_base_url(config)
  validate_port(config)
  validate_token(environ)
  validate_tts(environ, config)
  return config


def main() -> None:
  config = check(os.environ)
  host = re.sub(r"^https?://", "", config.upstream_base_url)
  tts = "on" if config.tts_enabled else "off"
  print(f"[env-check] OK (upstream={host}, port={config.listen_port}, tts={tts})")


if __name__ == "__main__":
  main()
