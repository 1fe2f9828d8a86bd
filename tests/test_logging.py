import structlog

from app.core.logging import configure_logging


def test_defaults_come_from_settings() -> None:
    configure_logging(None, None)
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_production_renders_json() -> None:
    try:
        configure_logging(environment="production", level="DEBUG")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
    finally:
        configure_logging()
