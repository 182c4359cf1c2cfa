"""
Safety Guardrails (Llama Guard)
===============================
Screens the conversation before the model runs (role "User") and screens
each model response before it is stored (role "Agent").

Design decisions:
  - One classifier request per screening. The transcript holds only
    human and ai messages; tool output is never shown to the classifier.
  - The classifier call is tagged "llama_guard" in traces. It is never
    streamed, so none of its text reaches the token relay.
  - Parsing never raises. Output outside the safe/unsafe contract becomes
    an ERROR assessment, and ERROR is routed like SAFE (fail-open).
  - No GROQ_API_KEY → no classifier. ainvoke() returns SAFE without a call.
"""
import logging
from typing import Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from .errors import ClassifierParseError, ProviderError
from .prompts import LLAMA_GUARD_INSTRUCTIONS, UNSAFE_CONTENT_CATEGORIES
from .schema import convert_message_content_to_string
from .state import SafetyAssessment, SafetyVerdict

logger = logging.getLogger(__name__)

LLAMA_GUARD_TAG = "llama_guard"


def _role_label(message: BaseMessage) -> str:
    return "User" if isinstance(message, HumanMessage) else "Agent"


def compile_prompt(role: str, messages: Sequence[BaseMessage]) -> str:
    transcript = "\n\n".join(
        f"{_role_label(m)}: {convert_message_content_to_string(m.content)}"
        for m in messages
        if isinstance(m, (HumanMessage, AIMessage))
    )
    return LLAMA_GUARD_INSTRUCTIONS.format(role=role, conversation_history=transcript)


def category_name(code: str) -> str:
    """Map one category code (e.g. "S10") to its readable name."""
    try:
        return UNSAFE_CONTENT_CATEGORIES[code.strip()]
    except KeyError:
        raise ClassifierParseError(f"Unknown category code: {code!r}") from None


def _parse_strict(output: str) -> SafetyAssessment:
    lines = output.strip().split("\n")
    if lines == ["safe"]:
        return SafetyAssessment.safe()
    if len(lines) != 2 or lines[0].strip() != "unsafe":
        raise ClassifierParseError(f"Unexpected classifier output: {output!r}")
    categories = tuple(category_name(code) for code in lines[1].split(","))
    return SafetyAssessment(SafetyVerdict.UNSAFE, categories)


def parse_llama_guard_output(output: str) -> SafetyAssessment:
    """
    Parse raw Llama Guard text.

      "safe"             → SAFE, no categories
      "unsafe\\nS1,S10"  → UNSAFE, ("Violent Crimes", "Hate")
      anything else      → ERROR, no categories
    """
    try:
        return _parse_strict(output)
    except ClassifierParseError as exc:
        logger.warning("[guard] %s", exc)
        return SafetyAssessment.error()


class LlamaGuard:
    """
    Role-scoped safety classifier.

    Args:
        model: Chat model serving Llama Guard, or None to disable screening.
    """

    def __init__(self, model: BaseChatModel | None):
        self._model = model
        if model is None:
            logger.info("[guard] No classifier configured, screening disabled (fail-open)")

    @property
    def enabled(self) -> bool:
        return self._model is not None

    async def ainvoke(self, role: str, messages: Sequence[BaseMessage]) -> SafetyAssessment:
        if self._model is None:
            return SafetyAssessment.safe()

        prompt = compile_prompt(role, messages)
        try:
            result = await self._model.ainvoke(
                [HumanMessage(content=prompt)],
                config={"tags": [LLAMA_GUARD_TAG]},
            )
        except Exception as exc:
            raise ProviderError(f"Safety classifier call failed: {exc}") from exc

        assessment = parse_llama_guard_output(convert_message_content_to_string(result.content))
        logger.info(
            "[guard] role=%s verdict=%s categories=%s",
            role, assessment.verdict.value, list(assessment.unsafe_categories),
        )
        return assessment
