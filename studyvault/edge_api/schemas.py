# studyvault/edge_api/schemas.py
# Description: Request/response models for the AI edge functions. Wire names are camelCase.
#
# Imports
from typing import Any, Dict, List, Literal, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field
#
#######################################################################################################################
#
# Functions:

EnhancementType = Literal["summary", "key_points", "questions", "flashcards", "outline"]


class EdgeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- ai-note-enhancer ---
class NoteEnhancementRequest(EdgeModel):
    note_id: Optional[str] = Field(None, alias="noteId")
    content: str = Field(..., min_length=1)
    enhancement_type: EnhancementType = Field(..., alias="enhancementType")


class NoteEnhancementResponse(EdgeModel):
    success: bool = True
    enhancement: Any = None
    enhancement_id: Optional[str] = Field(None, alias="enhancementId")
    type: Optional[str] = None


# --- ai-quiz-generator ---
class QuizGenerationRequest(EdgeModel):
    content: str = Field(..., min_length=1)
    quiz_type: str = Field("multiple_choice", alias="quizType")
    question_count: int = Field(5, ge=1, le=50, alias="questionCount")
    difficulty: str = "medium"
    source: Optional[str] = None


class QuizGenerationMetadata(EdgeModel):
    type: Optional[str] = None
    question_count: Optional[int] = Field(None, alias="questionCount")
    difficulty: Optional[str] = None


class QuizGenerationResponse(EdgeModel):
    success: bool = True
    quiz: Any = None
    metadata: QuizGenerationMetadata = Field(default_factory=QuizGenerationMetadata)


# --- ai-chat-handler ---
class ChatRequest(EdgeModel):
    message: str = Field(..., min_length=1)
    session_id: str = Field(..., alias="sessionId")
    file_references: List[str] = Field(default_factory=list, alias="fileReferences")


class ChatStreamEvent(EdgeModel):
    type: Literal["chunk", "complete", "error"]
    content: Optional[str] = None
    message: Optional[str] = None


class ChatReply(EdgeModel):
    session_id: str
    content: str


# --- ai-smart-organizer ---
class OrganizationRequest(EdgeModel):
    items: List[Dict[str, Any]] = Field(..., min_length=1)
    organization_type: str = Field("categorize", alias="organizationType")


class OrganizationSummary(EdgeModel):
    total_items: int = Field(0, alias="totalItems")
    suggested_categories: int = Field(0, alias="suggestedCategories")
    organization_type: Optional[str] = Field(None, alias="organizationType")


class OrganizationResponse(EdgeModel):
    success: bool = True
    suggestions: Dict[str, Any] = Field(default_factory=dict)
    summary: OrganizationSummary = Field(default_factory=OrganizationSummary)

#
# End of studyvault/edge_api/schemas.py
########################################################################################################################
