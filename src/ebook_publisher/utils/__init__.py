"""Shared utilities: retries, LLM factory and tracing."""
