# studyvault/edge_api/client.py
#
#
# Imports
import json
from typing import Any, AsyncGenerator, Dict, List, Optional, Type, TypeVar
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError
#
# Local Imports
from studyvault.Constants import (
    EDGE_FN_CHAT,
    EDGE_FN_NOTE_ENHANCER,
    EDGE_FN_QUIZ_GENERATOR,
    EDGE_FN_SMART_ORGANIZER,
    EDGE_FUNCTION_TIMEOUT_SECONDS,
)
from studyvault.Notifications.Notification_Service import NotificationService, NotificationType
from .exceptions import (
    AIResponseFormatError,
    AuthenticationError,
    EdgeAPIError,
    EdgeConnectionError,
    EdgeFunctionError,
    RateLimitError,
)
from .schemas import (
    ChatReply,
    ChatRequest,
    ChatStreamEvent,
    NoteEnhancementRequest,
    NoteEnhancementResponse,
    OrganizationRequest,
    OrganizationResponse,
    QuizGenerationRequest,
    QuizGenerationResponse,
)
from .utils import ensure_parsed, model_to_json_body, parse_sse_data
#
########################################################################################################################
#
# Functions:

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class EdgeFunctionClient:
    """
    Async client for the backend's AI edge functions (`/functions/v1/<name>`).

    With a notifier attached every failure is also reported as a notification
    (`api_quota` for 429 responses, `system_alert` otherwise) before it is raised.
    """

    def __init__(self, base_url: str, anon_key: str, access_token: Optional[str] = None,
                 timeout: float = EDGE_FUNCTION_TIMEOUT_SECONDS, notifier: Optional[NotificationService] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self.notifier = notifier
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "apikey": self.anon_key,
                "Authorization": f"Bearer {self.access_token or self.anon_key}",
            }
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "EdgeFunctionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # --- Error handling ---
    @staticmethod
    def _raise_for_response(response: httpx.Response):
        response_data = None
        error_detail = response.reason_phrase or "Request failed"
        try:
            response_data = response.json()
            if isinstance(response_data, dict):
                error_detail = response_data.get("error") or response_data.get("details") or error_detail
        except json.JSONDecodeError:
            if response.text:
                error_detail = response.text[:500]

        if response.status_code == 401:
            raise AuthenticationError(401, f"Authentication failed: {error_detail}", response_data)
        if response.status_code == 429:
            raise RateLimitError(429, str(error_detail), response_data)
        raise EdgeFunctionError(response.status_code, str(error_detail), response_data)

    def _notify_failure(self, function_name: str, error: EdgeAPIError):
        logger.error(f"Edge function '{function_name}' failed: {error}")
        if self.notifier is None:
            return
        if isinstance(error, RateLimitError):
            self.notifier.create(NotificationType.API_QUOTA, {
                "title": "API Quota Warning",
                "message": f"{function_name}: {error.message}. Consider updating your API key.",
                "data": {"function": function_name, "status": error.status_code},
            })
        elif isinstance(error, AIResponseFormatError):
            self.notifier.system_alert(f"{function_name} returned a response in an unexpected format.", "warning")
        else:
            self.notifier.system_alert(f"{function_name} failed: {error}", "error")

    @staticmethod
    def _parse(model_cls: Type[ResponseModel], data: Dict[str, Any]) -> ResponseModel:
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            raise AIResponseFormatError(f"Unexpected response shape for {model_cls.__name__}: {e}",
                                        raw_text=json.dumps(data)[:2000]) from e

    # --- Requests ---
    async def _invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._get_client()
        endpoint = f"/functions/v1/{function_name}"
        try:
            response = await client.post(endpoint, json=body)
        except httpx.RequestError as e:  # ConnectError, TimeoutException, etc.
            raise EdgeConnectionError(f"Connection error to {self.base_url}{endpoint}: {e}") from e
        if response.is_error:
            self._raise_for_response(response)
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise AIResponseFormatError("Failed to decode JSON response", raw_text=response.text) from e
        if not isinstance(data, dict):
            raise AIResponseFormatError("Expected a JSON object", raw_text=response.text)
        if data.get("error"):
            raise EdgeFunctionError(response.status_code, str(data["error"]), data)
        return data

    async def _call(self, function_name: str, request: BaseModel, response_cls: Type[ResponseModel],
                    parsed_fields: List[str]) -> ResponseModel:
        try:
            data = await self._invoke(function_name, model_to_json_body(request))
            for field_name in parsed_fields:
                if field_name in data:
                    data[field_name] = ensure_parsed(data[field_name])
            return self._parse(response_cls, data)
        except EdgeAPIError as e:
            self._notify_failure(function_name, e)
            raise

    async def enhance_note(self, note_id: Optional[str], content: str,
                           enhancement_type: str) -> NoteEnhancementResponse:
        request = NoteEnhancementRequest(note_id=note_id, content=content, enhancement_type=enhancement_type)
        return await self._call(EDGE_FN_NOTE_ENHANCER, request, NoteEnhancementResponse, ["enhancement"])

    async def generate_quiz(self, content: str, quiz_type: str = "multiple_choice", question_count: int = 5,
                            difficulty: str = "medium", source: Optional[str] = None) -> QuizGenerationResponse:
        request = QuizGenerationRequest(content=content, quiz_type=quiz_type, question_count=question_count,
                                        difficulty=difficulty, source=source)
        return await self._call(EDGE_FN_QUIZ_GENERATOR, request, QuizGenerationResponse, ["quiz"])

    async def suggest_organization(self, items: List[Dict[str, Any]],
                                   organization_type: str = "categorize") -> OrganizationResponse:
        request = OrganizationRequest(items=items, organization_type=organization_type)
        return await self._call(EDGE_FN_SMART_ORGANIZER, request, OrganizationResponse, ["suggestions"])

    async def stream_chat(self, message: str, session_id: str,
                          file_references: Optional[List[str]] = None) -> AsyncGenerator[ChatStreamEvent, None]:
        """Yields `chunk` events and a final `complete` event from the chat handler's event stream."""
        request = ChatRequest(message=message, session_id=session_id, file_references=file_references or [])
        client = await self._get_client()
        endpoint = f"/functions/v1/{EDGE_FN_CHAT}"
        try:
            try:
                async with client.stream("POST", endpoint, json=model_to_json_body(request)) as response:
                    if response.is_error:
                        await response.aread()
                        self._raise_for_response(response)
                    async for line in response.aiter_lines():
                        payload = parse_sse_data(line)
                        if payload is None:
                            continue
                        try:
                            event = ChatStreamEvent.model_validate(payload)
                        except ValidationError as e:
                            raise AIResponseFormatError(f"Unexpected chat event: {e}", raw_text=line) from e
                        if event.type == "error":
                            raise EdgeFunctionError(response.status_code, event.message or "Chat stream failed",
                                                    payload)
                        yield event
                        if event.type == "complete":
                            return
            except httpx.RequestError as e:
                raise EdgeConnectionError(f"Connection error to {self.base_url}{endpoint}: {e}") from e
        except EdgeAPIError as e:
            self._notify_failure(EDGE_FN_CHAT, e)
            raise

    async def chat(self, message: str, session_id: str, file_references: Optional[List[str]] = None) -> ChatReply:
        """Collects the streamed reply into a single message."""
        chunks = []
        completed = False
        async for event in self.stream_chat(message, session_id, file_references):
            if event.type == "chunk" and event.content:
                chunks.append(event.content)
            elif event.type == "complete":
                completed = True
        if not completed and not chunks:
            error = AIResponseFormatError("Chat stream ended without any events")
            self._notify_failure(EDGE_FN_CHAT, error)
            raise error
        return ChatReply(session_id=session_id, content="".join(chunks))

#
# End of studyvault/edge_api/client.py
########################################################################################################################
