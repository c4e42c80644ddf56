from __future__ import annotations

from loguru import logger

from searchsynth.config import Settings
from searchsynth.services import logger as log_service


def test_configure_logging_is_repeatable(tmp_path):
    cfg = Settings(_env_file=None, log_dir=str(tmp_path / "logs"), log_to_file=True)
    log_service.configure_logging(cfg)
    log_service.configure_logging(cfg)
    assert len(log_service._handler_ids) == 2
    assert (tmp_path / "logs").is_dir()
    log_service.configure_logging(Settings(_env_file=None, log_to_file=False))


def test_pipeline_step_binds_session_fields():
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="INFO")
    try:
        log_service.log_pipeline_step("abcdef123456", "web_search", "running", {"queries": ["q1"]})
        log_service.log_llm_call("groq", "llama", "decide", input_tokens=3, output_tokens=1, duration_ms=12)
    finally:
        logger.remove(sink_id)

    step, call = records
    assert step["extra"]["session_id"] == "abcdef123456"
    assert step["extra"]["stage"] == "web_search"
    assert "queries=['q1']" in step["message"]
    assert call["extra"]["provider"] == "groq"
    assert call["extra"]["input_tokens"] == 3
