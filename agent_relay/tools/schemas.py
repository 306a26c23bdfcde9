"""
Pydantic models for tool calls and their schema reconciliation.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class OpenAiFunction(BaseModel):
    name: str
    arguments: str = "{}"


class OpenAiToolCall(BaseModel):
    """Tool call in the OpenAI ``tool_calls`` wire shape."""

    id: str
    type: Literal["function"] = "function"
    function: OpenAiFunction

    @property
    def name(self) -> str:
        return self.function.name

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class ToolCallCandidate(BaseModel):
    """Canonical decode of one upstream ``tool_call`` event.

    ``raw_name`` is the tool key after suffix stripping but before it is
    resolved against the caller's declared tools.
    """

    id: str
    raw_name: str
    args: Any = None
    is_result_only: bool = False


class ArgumentTypeError(BaseModel):
    name: str
    expected_type: str
    actual_type: str


class ValidationResult(BaseModel):
    """Outcome of checking arguments against a declared schema.

    ``ok`` is derived: true iff nothing is missing and nothing mistyped.
    """

    ok: bool = True
    missing: list[str] = Field(default_factory=list)
    type_errors: list[ArgumentTypeError] = Field(default_factory=list)
    unexpected: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _derive_ok(self) -> "ValidationResult":
        self.ok = not self.missing and not self.type_errors
        return self


class CompatResult(BaseModel):
    tool_call: OpenAiToolCall
    normalized_args: dict[str, Any] = Field(default_factory=dict)
    validation: ValidationResult = Field(default_factory=ValidationResult)
    collision_keys: list[str] = Field(default_factory=list)
    repairs: list[str] = Field(default_factory=list)
