"""Realtime event payloads."""

import json
from typing import Any

SESSION_UPDATE = "session.update"
CONVERSATION_ITEM_CREATE = "conversation.item.create"
TRANSCRIPT_DONE = "response.audio_transcript.done"
FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"

DEFAULT_MODALITIES = ("text", "audio")


def session_update(
    tools: list[dict[str, Any]],
    instructions: str,
    modalities: tuple[str, ...] = DEFAULT_MODALITIES
) -> dict[str, Any]:
    return {
        "type": SESSION_UPDATE,
        "session": {
            "modalities": list(modalities),
            "tools": tools,
            "instructions": instructions,
        },
    }


def context_item(text: str) -> dict[str, Any]:
    """A system message carrying application context."""
    return {
        "type": CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "system",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def function_call_output(call_id: str, output: str) -> dict[str, Any]:
    return {
        "type": CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        },
    }


def encode(event: dict[str, Any]) -> str:
    return json.dumps(event)
