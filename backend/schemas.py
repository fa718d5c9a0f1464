from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BridgeModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

  @model_validator(mode="before")
  @classmethod
  def drop_nulls(cls, data: Any) -> Any:
    # An explicit null means "use the default", same as an absent field.
    if isinstance(data, dict):
      return {key: value for key, value in data.items() if value is not None}
    return data


class TranslateRequest(BridgeModel):
  source_lang: str = Field(default="auto", alias="sourceLang")
  target_lang: str = Field(default="ru", alias="targetLang")
  text: str = ""


class TranscribeRequest(BridgeModel):
  audio_base64: str = Field(default="", alias="audioBase64")
  audio_mime: str = Field(default="audio/webm", alias="audioMime")
  source_lang: str = Field(default="auto", alias="sourceLang")
  target_lang: str = Field(default="ru", alias="targetLang")


class TtsRequest(BridgeModel):
  text: str = ""
  voice: Optional[str] = None
  model: Optional[str] = None
  response_format: Optional[str] = None
  instructions: Optional[str] = None
  speed: Optional[float] = None

  @field_validator("speed", mode="before")
  @classmethod
  def ignore_non_numeric_speed(cls, value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
      return None
    return value


class TranslateResponse(BridgeModel):
  source_lang: str = Field(alias="sourceLang")
  target_lang: str = Field(alias="targetLang")
  translation: str


class TranscribeResponse(BridgeModel):
  audio_mime: str = Field(alias="audioMime")
  source_lang: str = Field(alias="sourceLang")
  target_lang: str = Field(alias="targetLang")
  transcript: str
  translation: str


class TtsResponse(BridgeModel):
  audio_mime: str = Field(alias="audioMime")
  audio_base64: str = Field(alias="audioBase64")
