from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from statement_intake.modules.extraction.llm import ModelUsage
from statement_intake.modules.extraction.schemas import ParsedPayload

EMPTY_DOCUMENT = "empty_document"
INVALID_MODEL_OUTPUT = "invalid_model_output"
UNREADABLE_SPREADSHEET = "unreadable_spreadsheet"


@dataclass(frozen=True)
class DocumentMeta:
    filename: str
    mime_type: str


@dataclass(frozen=True)
class ParserSuccess:
    summary: ParsedPayload
    confidence: float
    usage: ModelUsage | None = None
    success: Literal[True] = True

    def with_usage(self, usage: ModelUsage | None) -> ParserSuccess:
        return ParserSuccess(summary=self.summary, confidence=self.confidence, usage=usage)

    def scaled(self, factor: float) -> ParserSuccess:
        return ParserSuccess(
            summary=self.summary,
            confidence=round(max(0.0, min(1.0, self.confidence * factor)), 4),
            usage=self.usage,
        )


@dataclass(frozen=True)
class ParserFailure:
    code: str
    error: str
    success: Literal[False] = False


ParserOutput = ParserSuccess | ParserFailure


class DocumentParser(Protocol):
    name: str

    def parse(self, body: bytes, meta: DocumentMeta) -> ParserOutput: ...
