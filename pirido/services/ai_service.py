"""
AI service for Pirido.

Builds schema-constrained requests to the OpenAI Responses API for two
operations, sub-task generation and todo ranking, and decodes the replies
leniently. The schema constrains the shape of a reply, not its content,
so every decoded result is sanitized again locally.
"""

import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from pirido.config import DEFAULT_AI_ENDPOINT, DEFAULT_AI_TIMEOUT, DEFAULT_MAX_OUTPUT_TOKENS
from pirido.logging_config import get_logger
from pirido.models import (
    NEUTRAL_RANK_PRIORITY,
    AppSettings,
    GeneratedSubTask,
    RankingResult,
    clamp_rank_priority,
)

logger = get_logger(__name__)

MAX_SUB_TASKS = 4


# ==============================================================================
# ERRORS
# ==============================================================================

class AIErrorCode(str, Enum):
    """Machine-readable failure kinds of an AI call."""

    MISSING_API_KEY = "missing_api_key"
    ENDPOINT_ERROR = "endpoint_error"
    INVALID_RESPONSE = "invalid_response"


class AIServiceError(Exception):
    """Base exception for AI service errors."""

    code: AIErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingApiKeyError(AIServiceError):
    """Raised when no API key is configured."""

    code = AIErrorCode.MISSING_API_KEY


class EndpointError(AIServiceError):
    """Raised when the endpoint answers with an error status or is unreachable."""

    code = AIErrorCode.ENDPOINT_ERROR

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidResponseError(AIServiceError):
    """Raised when a reply carries no usable JSON payload."""

    code = AIErrorCode.INVALID_RESPONSE


# ==============================================================================
# PROMPTS AND SCHEMAS
# ==============================================================================

SUB_TASK_SYSTEM_PROMPT = "\n".join([
    "You are an assistant that breaks a todo down into sub-tasks.",
    "Split the parent todo into actionable sub-tasks.",
    "Do not split it more finely than needed; each step should be worth doing on its own.",
    "Return JSON only.",
    'Format: {"subtasks":[{"text":"..."}]}',
    f"Return between 0 and {MAX_SUB_TASKS} subtasks.",
    "Never return a text identical to an existing sub-task.",
])

SUB_TASK_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "subtasks": {
            "type": "array",
            "minItems": 0,
            "maxItems": MAX_SUB_TASKS,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "text": {"type": "string", "minLength": 1},
                },
                "required": ["text"],
            },
        },
    },
    "required": ["subtasks"],
}

RANKING_SYSTEM_PROMPT = "\n".join([
    "You are an assistant that prioritizes a todo list.",
    "Order all of the given todos in the order they should be done.",
    "Give each todo a priority from 1 to 5, where 1 is the most urgent.",
    "Use exactly these criteria:",
    "1: right now (today, deadline imminent, or immediate damage if left)",
    "2: quite urgent (within 1-2 days, large impact if late)",
    "3: normal (this week, not fatal if late but better early)",
    "4: low (this month, when there is spare time)",
    "5: someday (no deadline, whenever convenient)",
    "Priorities may repeat. Make a clear difference between important and unimportant todos.",
    "Return JSON only.",
    'Format: {"ordered":[{"id":"id1","priority":1}]}',
    "Use only the ids given in the input, each exactly once.",
])

RANKING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "ordered": {
            "type": "array",
            "minItems": 0,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "priority": {"type": "integer", "minimum": 1, "maximum": 5},
                },
                "required": ["id", "priority"],
            },
        },
    },
    "required": ["ordered"],
}


# ==============================================================================
# RESPONSE DECODING
# ==============================================================================

def _text_from_output_text(payload: Dict[str, Any]) -> Optional[str]:
    text = payload.get("output_text")
    if isinstance(text, str) and text.strip():
        return text
    return None


def _text_from_content_blocks(payload: Dict[str, Any]) -> Optional[str]:
    output = payload.get("output")
    if not isinstance(output, list):
        return None
    for item in output:
        if not isinstance(item, dict) or not isinstance(item.get("content"), list):
            continue
        for block in item["content"]:
            if not isinstance(block, dict):
                continue
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                return text
    return None


# Tried in order; the envelope shape depends on the response mode.
RESPONSE_TEXT_EXTRACTORS: Tuple[Callable[[Dict[str, Any]], Optional[str]], ...] = (
    _text_from_output_text,
    _text_from_content_blocks,
)


def extract_response_text(payload: Any) -> str:
    """
    Find the model's text output in a response envelope.

    Args:
        payload: Decoded response envelope

    Returns:
        The first non-blank text any extractor finds

    Raises:
        InvalidResponseError: If no extractor finds text
    """
    if not isinstance(payload, dict):
        raise InvalidResponseError("The AI response was empty.")

    for extractor in RESPONSE_TEXT_EXTRACTORS:
        text = extractor(payload)
        if text is not None:
            return text

    raise InvalidResponseError("Could not find any text in the AI response.")


def decode_array_field(payload: Any, field: str) -> List[Any]:
    """
    Extract the model's JSON output and return its required array field.

    Args:
        payload: Decoded response envelope
        field: Name of the required top-level array

    Returns:
        The array, unvalidated item by item

    Raises:
        InvalidResponseError: If there is no text, it is not JSON, or the
            field is missing or not an array
    """
    text = extract_response_text(payload)
    try:
        data = json.loads(text)
    except ValueError:
        logger.warning(f"AI output is not valid JSON: {text[:200]!r}")
        raise InvalidResponseError("Failed to parse the JSON in the AI response.")

    if not isinstance(data, dict) or not isinstance(data.get(field), list):
        raise InvalidResponseError(f"The AI response has no '{field}' array.")
    return data[field]


def _require_api_key(settings: AppSettings) -> str:
    api_key = settings.api_key.strip()
    if not api_key:
        raise MissingApiKeyError("No API key is configured. Set one in the settings.")
    return api_key


# ==============================================================================
# SERVICE
# ==============================================================================

class AIService:
    """
    Client for the AI-assisted operations.

    Calls are made once; there is no retry. Every failure is raised as an
    AIServiceError subclass.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_AI_ENDPOINT,
        timeout: float = DEFAULT_AI_TIMEOUT,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the AI service.

        Args:
            endpoint: Base URL of the API, without the /responses path
            timeout: Request timeout in seconds
            max_output_tokens: Output token cap sent with every request
            client: Optional shared HTTP client; a short-lived client is
                created per call when omitted
        """
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens
        self.client = client

    @classmethod
    def from_config(cls, ai_config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None) -> "AIService":
        """Build a service from ``Config.get_ai_config()`` output."""
        return cls(
            endpoint=ai_config["endpoint"],
            timeout=ai_config["timeout"],
            max_output_tokens=ai_config["max_output_tokens"],
            client=client,
        )

    def build_request(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        schema: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Build the JSON body of a schema-constrained Responses API call."""
        return {
            "model": model.strip(),
            "input": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_output_tokens": self.max_output_tokens,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                },
            },
        }

    async def _post(self, api_key: str, body: Dict[str, Any]) -> httpx.Response:
        url = f"{self.endpoint}/responses"
        headers = {"Authorization": f"Bearer {api_key}"}
        if self.client is not None:
            return await self.client.post(url, json=body, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=body, headers=headers)

    async def _call(self, api_key: str, body: Dict[str, Any]) -> Any:
        """
        Send a request and return the decoded response envelope.

        Raises:
            EndpointError: On a non-success status or a transport failure
            InvalidResponseError: If the envelope is not JSON
        """
        logger.debug(f"Calling AI endpoint: model={body['model']}, schema={body['text']['format']['name']}")
        try:
            response = await self._post(api_key, body)
        except httpx.HTTPError as e:
            logger.error(f"AI request failed: {e}", exc_info=True)
            raise EndpointError(f"Could not reach the AI endpoint: {e}")

        if not response.is_success:
            detail = response.text.strip()
            logger.error(f"AI endpoint returned {response.status_code}")
            message = f"AI endpoint error: {response.status_code}"
            if detail:
                message = f"{message} {detail}"
            raise EndpointError(message, status=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise InvalidResponseError("The AI endpoint response is not JSON.")

    async def generate_sub_tasks(
        self,
        todo_text: str,
        existing_sub_task_texts: Sequence[str],
        settings: AppSettings,
    ) -> List[GeneratedSubTask]:
        """
        Propose up to four new sub-tasks for a todo.

        Args:
            todo_text: Text of the parent todo
            existing_sub_task_texts: Texts the proposals must not repeat
            settings: Supplies the API key and model

        Returns:
            Sanitized proposals, possibly empty

        Raises:
            MissingApiKeyError: If no API key is configured
            EndpointError: If the call fails
            InvalidResponseError: If the reply cannot be decoded
        """
        api_key = _require_api_key(settings)
        existing = []
        for text in existing_sub_task_texts:
            text = text.strip()
            if text and text not in existing:
                existing.append(text)

        user_prompt = "\n".join([
            f"Parent todo: {todo_text}",
            f"Existing sub-tasks: {json.dumps(existing, ensure_ascii=False)}",
        ])
        body = self.build_request(
            settings.model, SUB_TASK_SYSTEM_PROMPT, user_prompt, "subtasks_response", SUB_TASK_SCHEMA
        )
        items = decode_array_field(await self._call(api_key, body), "subtasks")

        existing_set = set(existing)
        seen = set()
        results: List[GeneratedSubTask] = []
        for item in items:
            text = item.get("text") if isinstance(item, dict) else None
            text = text.strip() if isinstance(text, str) else ""
            if not text or text in existing_set or text in seen:
                continue
            seen.add(text)
            results.append(GeneratedSubTask(text=text))

        if len(items) != len(results):
            logger.warning(f"Dropped {len(items) - len(results)} generated sub-tasks during sanitization")
        results = results[:MAX_SUB_TASKS]
        logger.info(f"Generated {len(results)} sub-tasks")
        return results

    async def rank_todos(
        self,
        todos: Sequence[Tuple[str, str]],
        settings: AppSettings,
    ) -> RankingResult:
        """
        Order incomplete todos and assign each a priority from 1 to 5.

        Lists of zero or one todo are answered locally without a request.

        Args:
            todos: (id, text) pairs of the todos to rank
            settings: Supplies the API key and model

        Returns:
            RankingResult restricted to the given ids

        Raises:
            MissingApiKeyError: If no API key is configured
            EndpointError: If the call fails
            InvalidResponseError: If the reply cannot be decoded
        """
        api_key = _require_api_key(settings)

        if len(todos) <= 1:
            return RankingResult(
                ordered_ids=[todo_id for todo_id, _ in todos],
                priorities={todo_id: NEUTRAL_RANK_PRIORITY for todo_id, _ in todos},
            )

        payload = [{"id": todo_id, "text": text} for todo_id, text in todos]
        user_prompt = f"Todos: {json.dumps(payload, ensure_ascii=False)}"
        body = self.build_request(
            settings.model, RANKING_SYSTEM_PROMPT, user_prompt, "todo_order_response", RANKING_SCHEMA
        )
        items = decode_array_field(await self._call(api_key, body), "ordered")

        input_ids = {todo_id for todo_id, _ in todos}
        ordered_ids: List[str] = []
        priorities: Dict[str, int] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            todo_id = item.get("id")
            if not isinstance(todo_id, str) or todo_id not in input_ids or todo_id in priorities:
                continue
            ordered_ids.append(todo_id)
            priorities[todo_id] = clamp_rank_priority(item.get("priority"))

        if len(ordered_ids) != len(items):
            logger.warning(f"Dropped {len(items) - len(ordered_ids)} ranking entries during sanitization")
        logger.info(f"Ranked {len(ordered_ids)} of {len(todos)} todos")
        return RankingResult(ordered_ids=ordered_ids, priorities=priorities)
