# quiz_models.py
# Description: Quiz configuration and question models carried inside autosave snapshots
#
# Imports
from typing import Any, Dict, List, Literal, Optional
#
# 3rd-Party Imports
from pydantic import BaseModel, ConfigDict, Field
#
# Local Imports
#
########################################################################################################################
#
# Functions:

QuestionType = Literal[
    "multiple_choice_extended",
    "true_false_explained",
    "scenario_based",
    "visual_interpretation",
    "multi_part",
    "diagram_labeling",
    "chart_analysis",
    "comparison",
    "essay_short",
]


class QuizConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content_type: Literal["text", "visual", "mixed"] = "text"
    question_types: List[QuestionType] = Field(default_factory=lambda: ["multiple_choice_extended"])
    difficulty: Literal["beginner", "intermediate", "advanced", "expert"] = "intermediate"
    question_count: int = Field(10, ge=1)
    question_depth: Literal["shallow", "medium", "deep"] = "medium"
    categories: List[str] = Field(default_factory=list)
    custom_keywords: List[str] = Field(default_factory=list)
    include_explanations: bool = True
    enable_multi_part: bool = False
    visual_content_support: bool = False


class QuestionMetadata(BaseModel):
    difficulty: float = 0
    categories: List[str] = Field(default_factory=list)
    estimated_time: float = 0  # seconds
    learning_objective: str = ""


class QuizQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: QuestionType
    question: str
    sub_questions: Optional[List[str]] = None
    options: Optional[List[str]] = None
    correct_answer: Any = None
    explanation: str = ""
    metadata: QuestionMetadata = Field(default_factory=QuestionMetadata)


def parse_questions(raw_questions: List[Dict[str, Any]]) -> List[QuizQuestion]:
    return [QuizQuestion.model_validate(q) for q in raw_questions]

#
# End of quiz_models.py
########################################################################################################################
