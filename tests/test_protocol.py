"""Tests for the completion/next-token wire models."""

import pytest
from pydantic import ValidationError

from whisperer.config import SamplingConfig
from whisperer.protocol import STOP_WORDS, CompletionRequest, TokenEvent, build_prompt


def test_build_prompt_wraps_instruction():
    prompt = build_prompt("$ ls")
    assert prompt.startswith("The following is commands and output from a Zsh terminal.")
    assert prompt.endswith("\n### Instructions:$ ls\n\n### Response:\n\n")


def test_completion_request_payload():
    """Payload carries every field the server expects."""
    request = CompletionRequest.for_instruction("$ ls")
    payload = request.model_dump()

    assert payload == {
        "prompt": build_prompt("$ ls"),
        "batch_size": 512,
        "top_k": 40,
        "top_p": 0.9,
        "n_keep": 0,
        "n_predict": 100,
        "stop": ["###", "Question:", "Human:", "Assistant:"],
        "exclude": [],
        "threads": 8,
        "as_loop": True,
        "interactive": False,
    }


def test_completion_request_custom_sampling():
    sampling = SamplingConfig(n_predict=20, threads=2)
    request = CompletionRequest.for_instruction("x", sampling)
    assert request.n_predict == 20
    assert request.threads == 2
    assert request.stop == list(STOP_WORDS)


def test_completion_request_rejects_empty_prompt():
    with pytest.raises(ValidationError, match="prompt must not be empty"):
        CompletionRequest(prompt="")


def test_empty_instruction_still_has_a_prompt():
    """No history lines still produce the template text."""
    request = CompletionRequest.for_instruction("")
    assert "### Response:" in request.prompt


def test_token_event_parses_next_token_body():
    event = TokenEvent.model_validate_json('{"content": " typo.", "stop": false}')
    assert event.content == " typo."
    assert not event.is_final


def test_token_event_final():
    event = TokenEvent.model_validate({"content": "Done.", "stop": True})
    assert event.is_final


def test_token_event_rejects_wrong_types():
    with pytest.raises(ValidationError):
        TokenEvent.model_validate({"content": ["not", "text"], "stop": False})
