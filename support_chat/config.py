"""
Config - YAML app config dengan environment substitution

File: support_chat/config.py

Reads config/app_config.yaml (or SUPPORT_CHAT_CONFIG_DIR), substitutes
${VAR} / ${VAR:default} from the environment and exposes shortcuts via
Settings.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from dotenv import load_dotenv
import threading

from .schemas import SessionFallback

load_dotenv()


DEFAULT_ESCALATION_PHRASES = [
    "связаться с сотрудником",
    "обратитесь к оператору",
]

DEFAULT_CORS_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
]


# =============================================================================
# YAML CONFIG PROVIDER
# =============================================================================

class YAMLConfigProvider:
    """Load config from YAML files"""

    def __init__(self, config_dir: str = None):
        if config_dir is None:
            config_dir = os.getenv(
                "SUPPORT_CHAT_CONFIG_DIR",
                str(Path(__file__).parent.parent / "config"),
            )
        self.config_dir = Path(config_dir)
        self._cache: Dict[str, Any] = {}
        self._cache_time: Dict[str, datetime] = {}
        self._cache_ttl = timedelta(minutes=5)
        self._lock = threading.Lock()

    def _substitute_env_vars(self, value: Any) -> Any:
        """Substitute ${VAR} atau ${VAR:default} dengan environment variables"""
        if isinstance(value, str):
            pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

            def replace(match):
                var_name = match.group(1)
                default = match.group(2) if match.group(2) is not None else ""
                return os.getenv(var_name, default)

            if not re.search(pattern, value):
                return value

            result = re.sub(pattern, replace, value)

            if result.lower() == 'true':
                return True
            elif result.lower() == 'false':
                return False
            if result.lower() in ('null', 'none', ''):
                return None

            try:
                if '.' in result:
                    return float(result)
                return int(result)
            except (ValueError, TypeError):
                pass

            return result

        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        else:
            return value

    def _is_cache_valid(self, key: str) -> bool:
        if key not in self._cache_time:
            return False
        return datetime.now() - self._cache_time[key] < self._cache_ttl

    def load(self, filename: str, use_cache: bool = True) -> Dict[str, Any]:
        """Load configuration file"""
        if not filename.endswith('.yaml') and not filename.endswith('.yml'):
            filename = f"{filename}.yaml"

        with self._lock:
            if use_cache and filename in self._cache and self._is_cache_valid(filename):
                return self._cache[filename]

        filepath = self.config_dir / filename

        if not filepath.exists():
            raise FileNotFoundError(f"Config file not found: {filepath}")

        with open(filepath, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        config = self._substitute_env_vars(config)

        if use_cache:
            with self._lock:
                self._cache[filename] = config
                self._cache_time[filename] = datetime.now()

        return config

    def reload(self):
        """Clear cache to force reload"""
        with self._lock:
            self._cache.clear()
            self._cache_time.clear()


# =============================================================================
# SETTINGS
# =============================================================================

class Settings:
    """
    Quick access to settings.

    Pass app_config to build settings from a dict (tests); otherwise
    app_config.yaml is read lazily on first access.
    """

    def __init__(self, app_config: Optional[Dict[str, Any]] = None,
                 provider: Optional[YAMLConfigProvider] = None):
        self._app_config = app_config
        self._provider = provider

    def _get_app_config(self) -> Dict[str, Any]:
        if self._app_config is None:
            provider = self._provider or YAMLConfigProvider()
            self._app_config = provider.load("app_config")
        return self._app_config

    def _section(self, name: str) -> Dict[str, Any]:
        return self._get_app_config().get(name) or {}

    # ==========================================================================
    # RAW SECTIONS
    # ==========================================================================

    @property
    def app(self) -> Dict[str, Any]:
        return self._section("app")

    @property
    def server(self) -> Dict[str, Any]:
        return self._section("server")

    @property
    def database(self) -> Dict[str, Any]:
        return self._section("database")

    @property
    def auth(self) -> Dict[str, Any]:
        return self._section("auth")

    @property
    def llm(self) -> Dict[str, Any]:
        return self._section("llm")

    @property
    def chat(self) -> Dict[str, Any]:
        return self._section("chat")

    @property
    def cors(self) -> Dict[str, Any]:
        return self._section("cors")

    # ==========================================================================
    # APP & SERVER
    # ==========================================================================

    @property
    def debug(self) -> bool:
        return self.app.get("debug", False)

    @property
    def app_name(self) -> str:
        return self.app.get("name", "Support Chat API")

    @property
    def app_version(self) -> str:
        return self.app.get("version", "1.0.0")

    @property
    def log_level(self) -> str:
        return str(self.app.get("log_level", "INFO")).upper()

    @property
    def host(self) -> str:
        return self.server.get("host", "0.0.0.0")

    @property
    def port(self) -> int:
        return self.server.get("port", 8000)

    @property
    def api_prefix(self) -> str:
        return self.server.get("api_prefix", "/api/v1")

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    @property
    def database_url(self) -> str:
        return self.database.get("url") or "sqlite:///./support_chat.db"

    @property
    def database_echo(self) -> bool:
        return self.database.get("echo", False)

    # ==========================================================================
    # AUTH
    # ==========================================================================

    @property
    def jwt_secret(self) -> str:
        return self.auth.get("jwt_secret") or ""

    @property
    def jwt_audience(self) -> Optional[str]:
        return self.auth.get("audience", "authenticated")

    # ==========================================================================
    # LLM / COMPLETION BACKEND
    # ==========================================================================

    @property
    def llm_api_key(self) -> str:
        return self.llm.get("api_key") or ""

    @property
    def llm_base_url(self) -> str:
        return self.llm.get("base_url", "https://ai.gateway.lovable.dev/v1")

    @property
    def llm_model(self) -> str:
        return self.llm.get("model", "google/gemini-2.5-flash")

    @property
    def llm_timeout(self) -> float:
        return self.llm.get("timeout", 60)

    # ==========================================================================
    # CHAT
    # ==========================================================================

    @property
    def history_page_size(self) -> Optional[int]:
        return self.chat.get("history_page_size", 50)

    @property
    def session_fallback(self) -> SessionFallback:
        return SessionFallback(self.chat.get("session_fallback", SessionFallback.FAIL.value))

    @property
    def escalation_phrases(self) -> List[str]:
        return self.chat.get("escalation_phrases") or list(DEFAULT_ESCALATION_PHRASES)

    @property
    def preamble(self) -> Optional[str]:
        return self.chat.get("preamble")

    @property
    def bot_endpoint_url(self) -> str:
        return self.chat.get("bot_endpoint_url", f"http://localhost:{self.port}{self.api_prefix}/functions/chat-bot")

    # ==========================================================================
    # CORS
    # ==========================================================================

    @property
    def cors_allow_origins(self) -> List[str]:
        return self.cors.get("allow_origins") or ["*"]

    @property
    def cors_allow_headers(self) -> List[str]:
        return self.cors.get("allow_headers") or list(DEFAULT_CORS_HEADERS)

    def reload(self):
        """Reload app config on next access"""
        self._app_config = None
        if self._provider:
            self._provider.reload()
