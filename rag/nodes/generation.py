"""
Response generation node: final synthesis over the assembled context.
"""

import logging
from typing import Optional

from config.settings import QueryParam
from core.llm import BaseLLMClient
from core.prompts import PROMPTS

logger = logging.getLogger(__name__)

_ECHO_MARKERS = ("user", "model")
_SYSTEM_TAGS = ("<system>", "</system>")


def build_system_prompt(context: str, param: QueryParam, naive: bool = False) -> str:
    """Substitute the context into the synthesis prompt."""
    if naive:
        return PROMPTS["naive_rag_response"].format(
            content_data=context, response_type=param.response_type or ""
        )
    return PROMPTS["rag_response"].format(
        context_data=context, response_type=param.response_type or ""
    )


def strip_prompt_echo(response: str, system_prompt: str, query: str) -> str:
    """
    Remove a verbatim echo of the prompt from the completion.

    Some models repeat the system prompt before answering. Only when the system
    prompt appears verbatim in the response is everything through its first
    occurrence cut; role markers, the query and system tags leading the rest
    are then dropped. Responses without an echo are returned unchanged.
    """
    if not system_prompt or system_prompt not in response:
        return response
    cleaned = response[response.index(system_prompt) + len(system_prompt):]
    prefixes = [p for p in (*_ECHO_MARKERS, *_SYSTEM_TAGS, query) if p]
    stripped = True
    while stripped:
        stripped = False
        cleaned = cleaned.lstrip()
        for prefix in prefixes:
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):]
                stripped = True
    return cleaned.strip()


async def generate_response(
    query: str,
    context: Optional[str],
    param: QueryParam,
    llm: BaseLLMClient,
    naive: bool = False,
) -> str:
    """
    Generate the answer for a query from its rendered context.

    Args:
        query: User query string
        context: Rendered context tables (or chunk text for naive mode)
        param: Query parameters (response type, prompt-only flag)
        llm: Completion client
        naive: Use the document prompt instead of the table prompt

    Returns:
        Answer text, the system prompt when only_need_prompt is set, or the
        fail response when there is no context
    """
    if context is None:
        return PROMPTS["fail_response"]

    sys_prompt = build_system_prompt(context, param, naive=naive)
    if param.only_need_prompt:
        return sys_prompt

    response = await llm.complete(query, system_prompt=sys_prompt)
    logger.debug(f"Generated {len(response)} characters for query")
    return strip_prompt_echo(response, sys_prompt, query)
