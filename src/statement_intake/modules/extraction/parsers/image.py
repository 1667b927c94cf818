from __future__ import annotations

from statement_intake.modules.extraction.llm import VisionAdapter
from statement_intake.modules.extraction.parsers.base import DocumentMeta, ParserOutput, ParserSuccess
from statement_intake.modules.extraction.prompts import IMAGE_SYSTEM_PROMPT, IMAGE_USER_PROMPT
from statement_intake.modules.extraction.validation import validate_model_output


class ImageParser:
    name = "image"

    def __init__(self, vision: VisionAdapter) -> None:
        self._vision = vision

    def parse(self, body: bytes, meta: DocumentMeta) -> ParserOutput:
        response = self._vision.call_vision_model(
            body,
            mime_type=meta.mime_type,
            system_prompt=IMAGE_SYSTEM_PROMPT,
            user_prompt=IMAGE_USER_PROMPT,
        )
        result = validate_model_output(response.text)
        if isinstance(result, ParserSuccess):
            return result.with_usage(response.usage)
        return result
