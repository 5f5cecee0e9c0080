"""Document analysis, summarization and resource suggestions."""

from __future__ import annotations

from pydantic import BaseModel, Field, ValidationError

from athena.core.errors import GenerationError
from athena.services.gemini import GeminiClient


class DocumentAnalysis(BaseModel):
    """Structured analysis of one uploaded document."""

    summary: str = Field(description="Summary of the key information in the text")
    patterns: str | None = Field(default=None, description="Recurring patterns or themes")
    answers: str | None = Field(default=None, description="Answers to the analysis request")

    def to_context(self) -> str:
        lines = [f"Summary: {self.summary}"]
        if self.patterns:
            lines.append(f"Patterns: {self.patterns}")
        if self.answers:
            lines.append(f"Answers: {self.answers}")
        return "\n".join(lines)


class TextSummary(BaseModel):
    summary: str


class ResourceSuggestions(BaseModel):
    resources: list[str] = Field(default_factory=list)


_ANALYZE_PROMPT = """You are an expert AI assistant specializing in analyzing text documents.
Extract key information, identify patterns, and answer specific questions about the content.

Document Text: {text}

Analysis Request: {query}

Answer with a JSON object {{"summary": str, "patterns": str, "answers": str}}.
Provide a concise summary. If an analysis request is given, answer it from the text.
Identify recurring patterns, themes, or notable insights."""

_SUMMARY_PROMPT = """Summarize the following text. Answer with a JSON object {{"summary": str}}.

{text}"""

_RESOURCES_PROMPT = """Based on the following conversation history, suggest relevant articles, videos,
or study material URLs that the user might find helpful.
Answer with a JSON object {{"resources": [str, ...]}}.

Conversation History: {history}"""


class DocumentAnalyzer:
    """Prompts the hosted model and validates its JSON answers."""

    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def analyze(self, text: str, query: str | None = None) -> DocumentAnalysis:
        raw = await self.client.generate_json(_ANALYZE_PROMPT.format(text=text, query=query or "None"))
        return self._parse(raw, DocumentAnalysis)

    async def summarize(self, text: str) -> str:
        raw = await self.client.generate_json(_SUMMARY_PROMPT.format(text=text))
        return self._parse(raw, TextSummary).summary

    async def suggest_resources(self, conversation: str) -> list[str]:
        raw = await self.client.generate_json(_RESOURCES_PROMPT.format(history=conversation))
        return self._parse(raw, ResourceSuggestions).resources

    @staticmethod
    def _parse(raw: str, model: type[BaseModel]):
        try:
            return model.model_validate_json(raw)
        except ValidationError as exc:
            raise GenerationError(f"Unexpected {model.__name__} payload: {exc.error_count()} error(s)") from exc
