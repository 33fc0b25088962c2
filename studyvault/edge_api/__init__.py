from .client import EdgeFunctionClient
from .exceptions import (
    EdgeAPIError, EdgeConnectionError, EdgeFunctionError,
    AuthenticationError, RateLimitError, AIResponseFormatError
)
from .schemas import (
    NoteEnhancementRequest, NoteEnhancementResponse,
    QuizGenerationRequest, QuizGenerationResponse, QuizGenerationMetadata,
    ChatRequest, ChatStreamEvent, ChatReply,
    OrganizationRequest, OrganizationResponse, OrganizationSummary,
    EnhancementType
)
from .utils import parse_ai_json

__all__ = [
    "EdgeFunctionClient",
    "EdgeAPIError", "EdgeConnectionError", "EdgeFunctionError",
    "AuthenticationError", "RateLimitError", "AIResponseFormatError",
    "NoteEnhancementRequest", "NoteEnhancementResponse",
    "QuizGenerationRequest", "QuizGenerationResponse", "QuizGenerationMetadata",
    "ChatRequest", "ChatStreamEvent", "ChatReply",
    "OrganizationRequest", "OrganizationResponse", "OrganizationSummary",
    "EnhancementType",
    "parse_ai_json",
]
