"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("touchtrial.config")


class Settings(BaseSettings):
    # Backend-as-a-service (REST tables, auth, serverless functions)
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    supabase_service_key: str = ""

    # Advisor endpoint consumed by the chat; empty = the hosted phone-advisor function
    advisor_url: str = ""

    # AI gateway used by the phone-advisor relay
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_gateway_api_key: str = ""
    ai_model: str = "google/gemini-2.5-flash"

    # Chat limits
    chat_history_window: int = 20
    chat_max_message_length: int = 1000

    # Shopper sessions idle longer than this are dropped; 0 disables the sweep
    session_idle_timeout: float = 3600.0

    # Outbound HTTP
    http_timeout: float = 30.0

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def rest_url(self) -> str:
        return self.supabase_url.rstrip("/") + "/rest/v1"

    @property
    def functions_url(self) -> str:
        return self.supabase_url.rstrip("/") + "/functions/v1"

    @property
    def resolved_advisor_url(self) -> str:
        return self.advisor_url or f"{self.functions_url}/phone-advisor"

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"your-anon-key", "your-service-key", "changeme"}

        if not self.supabase_url.startswith(("http://", "https://")):
            raise ValueError(
                f"SUPABASE_URL must be an http(s) URL, got {self.supabase_url!r}."
            )

        if self.chat_history_window < 1:
            raise ValueError("CHAT_HISTORY_WINDOW must be at least 1.")

        if not self.supabase_anon_key or self.supabase_anon_key in _placeholders:
            warnings.append(
                "SUPABASE_ANON_KEY is missing or a placeholder. Catalogue and advisor calls will be rejected."
            )

        if not self.supabase_service_key:
            warnings.append(
                "SUPABASE_SERVICE_KEY not set. Falling back to the anon key for store access."
            )

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Only users with the admin role can reach admin APIs."
                )

        if not self.ai_gateway_api_key:
            warnings.append(
                "AI_GATEWAY_API_KEY not set. The phone-advisor relay will return errors."
            )

        return warnings


settings = Settings()
