"""reqpilot: LLM orchestration backend for AI-assisted requirement engineering."""

__version__ = "0.4.0"
