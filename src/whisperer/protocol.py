"""Wire models for the llama.cpp server's completion/next-token API.

The server registers a generation job on POST /completion and hands out
the generated text one fragment at a time on GET /next-token.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from whisperer.config import DEFAULT_SAMPLING, SamplingConfig

# Delimiters the model uses to start a new turn; seeing one ends the stream.
STOP_WORDS = ("###", "Question:", "Human:", "Assistant:")

PREAMBLE = (
    "The following is commands and output from a Zsh terminal. "
    "In the Response, provide a concise analysis of it and debug any errors. "
    "Restricted to 50 words or less."
)


def build_prompt(instruction: str) -> str:
    """Wrap the history text in the instruction/response template."""
    return f"{PREAMBLE}\n### Instructions:{instruction}\n\n### Response:\n\n"


class CompletionRequest(BaseModel):
    """Body of POST /completion.

    Attributes:
        prompt: Full prompt text (never empty)
        batch_size: Prompt processing batch size
        top_k: Top-k sampling
        top_p: Nucleus sampling
        n_keep: Prompt tokens kept when the context is full
        n_predict: Maximum number of tokens to generate
        stop: Stop words, also checked client-side
        exclude: Always empty
        threads: CPU threads used for generation
        as_loop: Stream through /next-token instead of one response body
        interactive: Always False
    """

    model_config = ConfigDict(frozen=True)

    prompt: str
    batch_size: int = DEFAULT_SAMPLING.batch_size
    top_k: int = DEFAULT_SAMPLING.top_k
    top_p: float = DEFAULT_SAMPLING.top_p
    n_keep: int = DEFAULT_SAMPLING.n_keep
    n_predict: int = DEFAULT_SAMPLING.n_predict
    stop: list[str] = Field(default_factory=lambda: list(STOP_WORDS))
    exclude: list[str] = Field(default_factory=list)
    threads: int = DEFAULT_SAMPLING.threads
    as_loop: bool = True
    interactive: bool = False

    @field_validator("prompt")
    @classmethod
    def _prompt_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("prompt must not be empty")
        return value

    @classmethod
    def for_instruction(
        cls,
        instruction: str,
        sampling: SamplingConfig = DEFAULT_SAMPLING,
        stop_words: tuple[str, ...] = STOP_WORDS,
    ) -> "CompletionRequest":
        """Build the request for one invocation from the history text."""
        return cls(
            prompt=build_prompt(instruction),
            batch_size=sampling.batch_size,
            top_k=sampling.top_k,
            top_p=sampling.top_p,
            n_keep=sampling.n_keep,
            n_predict=sampling.n_predict,
            stop=list(stop_words),
            threads=sampling.threads,
        )


class TokenEvent(BaseModel):
    """Body of GET /next-token: one generated fragment.

    Attributes:
        content: Text fragment, not necessarily a whole token
        stop: True when the server has finished generating
    """

    content: str = ""
    stop: bool = False

    @property
    def is_final(self) -> bool:
        return self.stop
