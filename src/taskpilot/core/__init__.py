"""Core integrations (LLM providers)."""
