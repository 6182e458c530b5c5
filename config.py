from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to this file's directory (the project root),
# not the working directory.
_ENV_FILE = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), case_sensitive=False)

    # ── Streaming / decoding ──────────────────────────────────────
    # Used when a response does not declare a charset.
    stream_default_encoding: str = Field(
        default="utf-8", validation_alias="STREAM_DEFAULT_ENCODING"
    )
    # Codec error handler for the incremental decoder.  "replace" keeps the
    # stream alive on malformed bytes (U+FFFD substitution).
    stream_decode_errors: str = Field(
        default="replace", validation_alias="STREAM_DECODE_ERRORS"
    )

    # ── Whole-response parsing ────────────────────────────────────
    # BeautifulSoup feature strings selected by the response MIME type.
    # lxml builds the same tree shape as the streaming parser.
    fragment_html_features: str = Field(
        default="lxml", validation_alias="FRAGMENT_HTML_FEATURES"
    )
    fragment_xml_features: str = Field(
        default="xml", validation_alias="FRAGMENT_XML_FEATURES"
    )

    # ── Transport (CLI / behavior loading only) ───────────────────
    # httpx client timeout in seconds.  The parsing core itself never
    # times out; a stalled body stalls the stream.
    http_timeout: float = Field(default=30.0, validation_alias="HTTP_TIMEOUT")

    # Logging verbosity for the CLI process (DEBUG, INFO, WARNING).
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


settings = Settings()
