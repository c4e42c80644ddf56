from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Cerebras (query optimization, summarization)
    cerebras_api_key: str = ""
    cerebras_base_url: str = "https://api.cerebras.ai/v1"
    cerebras_optimizer_model: str = "llama-3.3-70b"
    cerebras_summary_model: str = "llama-3.3-70b"

    # Groq (decisions, follow-ups, titles, vision)
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_decision_model: str = "llama3-8b-8192"
    groq_follow_up_model: str = "llama-3.3-70b-versatile"
    groq_answer_model: str = "llama-3.3-70b-versatile"
    # comma separated "model:weight" pairs, picked by the selection strategy
    groq_vision_models: str = "llama-3.2-11b-vision-preview:3,llama-3.2-90b-vision-preview:1"

    # OpenAI (fallbacks, answer synthesis)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # Search
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    jina_api_key: str = ""
    jina_reader_base_url: str = "https://r.jina.ai"

    # Credential / model selection: round_robin | weighted_random
    selection_strategy: str = "round_robin"

    # Pipeline shape
    optimized_query_count: int = 3
    follow_up_query_count: int = 5
    results_per_query: int = 5
    web_result_cap: int = 5
    image_result_cap: int = 6
    image_decision_constraint: str = (
        "Would image or diagram responses be helpful in response to the given query?"
    )

    # Fetching
    fetch_timeout_seconds: float = 10.0
    fetch_max_redirects: int = 3
    probe_timeout_seconds: float = 5.0
    search_timeout_seconds: float = 30.0

    # Summarization
    chunk_char_size: int = 8000
    max_chunks: int = 3
    max_chunk_tokens: int = 384
    max_total_tokens: int = 2048
    summary_timeout_seconds: float = 30.0
    image_description_timeout_seconds: float = 10.0
    image_description_max_tokens: int = 384

    # Answer streaming
    answer_channel_size: int = 64

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True
    log_serialize: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @staticmethod
    def split_keys(raw: str) -> list[str]:
        """Split a comma separated credential list, dropping blanks."""
        return [k.strip() for k in raw.split(",") if k.strip()]

    @property
    def vision_model_weights(self) -> list[tuple[str, float]]:
        weighted: list[tuple[str, float]] = []
        for entry in self.groq_vision_models.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, weight = entry.rpartition(":")
            if not name:
                weighted.append((weight, 1.0))
                continue
            try:
                weighted.append((name, float(weight)))
            except ValueError:
                weighted.append((entry, 1.0))
        return weighted


settings = Settings()
