"""Terminal tools: pydantic-validated parameters in, one text payload out."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from shellpilot.errors import TerminalError
from shellpilot.tool.truncation import truncate_output

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


@dataclass(frozen=True)
class ToolResult:
    """What a terminal tool hands back: text for the caller, plus an error flag.

    Structured answers (session lists, poll results, log entries) are sent as
    pretty JSON via ``ToolResult.json``; command transcripts and failure
    messages are plain text. ``brief`` is a one-line summary for debug logs.
    """

    output: str = ""
    is_error: bool = False
    brief: str = ""

    @classmethod
    def json(cls, payload: Any, brief: str = "") -> ToolResult:
        text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
        return cls(output=text, brief=brief)

    @classmethod
    def failure(cls, message: str, brief: str = "") -> ToolResult:
        return cls(output=message, is_error=True, brief=brief)


class BaseTool(ABC, Generic[P]):
    """One operation exposed to a caller by name.

    Subclasses set ``name``, ``description`` and ``param_model`` and implement
    ``execute``. ``TerminalError`` raised by the session layer becomes an
    ``Error: <message>`` result; anything else is logged with its traceback.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def __call__(self, arguments: dict[str, Any]) -> tuple[str, bool]:
        """Returns ``(content, is_error)`` with content bounded by ``truncate_output``."""
        try:
            params = self.param_model.model_validate(arguments)
        except ValidationError as e:
            return f"Invalid parameters: {e}", True

        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except TerminalError as e:
            logger.info("Tool %s failed: [%s] %s", self.name, e.code, e.message)
            result = ToolResult.failure(f"Error: {e.message}")
        except Exception as e:
            logger.error("Tool %s execution error: %s", self.name, e, exc_info=True)
            result = ToolResult.failure(f"Error executing {self.name}: {e}")

        if result.brief:
            logger.debug("Tool %s: %s", self.name, result.brief)
        return truncate_output(result.output), result.is_error

    @abstractmethod
    async def execute(self, params: P) -> ToolResult: ...

    @classmethod
    def parameters_schema(cls) -> dict[str, Any]:
        """JSON schema of ``param_model`` without pydantic's title and $defs."""
        schema = cls.param_model.model_json_schema()
        return {k: v for k, v in schema.items() if k not in ("title", "$defs")}

    def to_openai_spec(self) -> dict[str, Any]:
        function = {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema(),
        }
        return {"type": "function", "function": function}
