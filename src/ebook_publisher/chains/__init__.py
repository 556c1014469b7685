"""Enrichment chains for topic and lesson content."""

from .content import ContentGenerator
from .web_research import WebResearcher, extract_lesson_slice, format_web_references

__all__ = ["ContentGenerator", "WebResearcher", "extract_lesson_slice", "format_web_references"]
