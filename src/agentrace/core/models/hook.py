"""Hook-related models for Claude Code integration."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class HookEventType(str, Enum):
    """Hook events agentrace subscribes to."""

    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    STOP = "Stop"


EVENT_NAME_ALIASES: dict[str, HookEventType] = {
    "prompt-submit": HookEventType.USER_PROMPT_SUBMIT,
    "pre-tool": HookEventType.PRE_TOOL_USE,
    "post-tool": HookEventType.POST_TOOL_USE,
    "stop": HookEventType.STOP,
}


def normalize_event_name(value: Any) -> Any:
    """Map short event names onto the Claude Code names."""
    if isinstance(value, HookEventType):
        return value.value
    if isinstance(value, str) and value in EVENT_NAME_ALIASES:
        return EVENT_NAME_ALIASES[value].value
    return value


class _HookInputBase(BaseModel):
    session_id: str = Field(min_length=1)
    cwd: str | None = None
    transcript_path: str | None = None

    model_config = {"extra": "allow", "populate_by_name": True}


class UserPromptSubmitInput(_HookInputBase):
    """A user prompt opens a new turn."""

    hook_event_name: Literal["UserPromptSubmit"] = "UserPromptSubmit"
    prompt: str = ""


class PreToolUseInput(_HookInputBase):
    """Emitted before the assistant runs a tool."""

    hook_event_name: Literal["PreToolUse"] = "PreToolUse"
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)


class PostToolUseInput(_HookInputBase):
    """Emitted after a tool returns."""

    hook_event_name: Literal["PostToolUse"] = "PostToolUse"
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_output: dict[str, Any] | str | list[Any] | None = Field(
        default=None,
        validation_alias="tool_response",
        description="Tool response data. Claude Code sends it as tool_response.",
    )
    success: bool | None = None
    error: str | None = None
    processing_time_ms: int | None = None

    def resolved_success(self) -> bool:
        """Explicit flag first, then the error fields of the tool output."""
        if self.success is not None:
            return self.success
        if self.error:
            return False
        if isinstance(self.tool_output, dict):
            if self.tool_output.get("error") or self.tool_output.get("is_error"):
                return False
            if self.tool_output.get("success") is False:
                return False
            exit_code = self.tool_output.get("exit_code")
            if isinstance(exit_code, int) and exit_code != 0:
                return False
        return True

    def resolved_error(self) -> str | None:
        if self.error:
            return self.error
        if isinstance(self.tool_output, dict) and isinstance(self.tool_output.get("error"), str):
            return self.tool_output["error"]
        return None

    def resolved_duration_ms(self) -> int | None:
        if self.processing_time_ms:
            return self.processing_time_ms
        if isinstance(self.tool_output, dict):
            duration = self.tool_output.get("duration_ms")
            if isinstance(duration, int | float) and duration > 0:
                return int(duration)
        return None


class StopInput(_HookInputBase):
    """Emitted when the assistant finishes responding."""

    hook_event_name: Literal["Stop"] = "Stop"
    stop_hook_active: bool = False


HookInputUnion = Annotated[
    UserPromptSubmitInput | PreToolUseInput | PostToolUseInput | StopInput,
    Field(discriminator="hook_event_name"),
]


def normalize_hook_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """Canonicalize event name aliases and the tool output field name."""
    data = dict(raw)
    data["hook_event_name"] = normalize_event_name(data.get("hook_event_name"))
    if "tool_output" in data and "tool_response" not in data:
        data["tool_response"] = data.pop("tool_output")
    return data


hook_input_adapter: TypeAdapter[HookInputUnion] = TypeAdapter(HookInputUnion)
