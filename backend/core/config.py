import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

from meetbot.errors import ConfigError

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name) or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name) or default)
    except ValueError:
        return default


QA_MODE = _env_bool("QA_MODE", False)


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    model_name: str = "gpt-4o"
    classifier_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    tts_model: str = "tts-1"
    tts_voice: str = "onyx"
    pinecone_api_key: str = ""
    pinecone_index_name: str = ""
    deepgram_api_key: str = ""
    meet_url: str = ""
    query_dir: Path = field(default_factory=lambda: Path("./query"))
    use_tts: bool = True
    qa_mode: bool = False
    log_level: str = "INFO"
    llm_timeout_sec: float = 30.0
    llm_retries: int = 1
    watch_force_polling: bool = False
    watch_debounce_ms: int = 500
    shutdown_timeout_sec: float = 10.0
    status_port: int = 0
    persona_name: str = "the host"

    @property
    def transcript_path(self) -> Path:
        return self.query_dir / "query.txt"

    @property
    def analysis_dir(self) -> Path:
        return self.query_dir / "analysis"

    def missing(self, *names: str) -> list[str]:
        """Return the environment variable names whose settings are empty."""
        absent = []
        for name in names:
            if not str(getattr(self, name.lower(), "") or "").strip():
                absent.append(name)
        return absent


def load_settings(require: tuple[str, ...] = ()) -> Settings:
    """
    Build Settings from the environment.
    Raises ConfigError when any variable named in `require` is unset.
    """
    settings = Settings(
        openai_api_key=_env_str("OPENAI_API_KEY"),
        model_name=_env_str("MODEL_NAME", "gpt-4o"),
        classifier_model=_env_str("CLASSIFIER_MODEL", "gpt-4o-mini"),
        embedding_model=_env_str("EMBEDDING_MODEL", "text-embedding-ada-002"),
        tts_model=_env_str("TTS_MODEL", "tts-1"),
        tts_voice=_env_str("TTS_VOICE", "onyx"),
        pinecone_api_key=_env_str("PINECONE_API_KEY"),
        pinecone_index_name=_env_str("PINECONE_INDEX_NAME"),
        deepgram_api_key=_env_str("DEEPGRAM_API_KEY"),
        meet_url=_env_str("MEET_URL"),
        query_dir=Path(_env_str("QUERY_DIR", "./query")),
        use_tts=_env_bool("USE_TTS", True),
        qa_mode=_env_bool("QA_MODE", False),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        llm_timeout_sec=max(1.0, _env_float("LLM_TIMEOUT_SEC", 30.0)),
        llm_retries=max(0, _env_int("LLM_RETRIES", 1)),
        watch_force_polling=_env_bool("WATCH_FORCE_POLLING", False),
        watch_debounce_ms=max(50, _env_int("WATCH_DEBOUNCE_MS", 500)),
        shutdown_timeout_sec=max(1.0, _env_float("SHUTDOWN_TIMEOUT_SEC", 10.0)),
        status_port=max(0, _env_int("STATUS_PORT", 0)),
        persona_name=_env_str("PERSONA_NAME", "the host"),
    )

    absent = settings.missing(*require)
    if absent:
        raise ConfigError(f"Missing required environment variables: {', '.join(absent)}")
    return settings
