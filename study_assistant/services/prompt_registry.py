"""Prompt templates and inventory helpers for the study assistant."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List


PROMPT_REGISTRY_VERSION = "2026-10-19"


SYSTEM_SUMMARY = "You are an expert at creating concise, comprehensive summaries of educational content. Create a well-structured summary that captures all key concepts and main points."

SYSTEM_NOTES = "You are an expert at creating detailed study notes. Organize the content into clear sections with headings, bullet points, and key concepts highlighted."

SYSTEM_FLASHCARDS = "You are an expert at creating educational flashcards. Return only JSON, without markdown or commentary."

SYSTEM_QUIZ = "You are an expert at creating quiz questions. Return only JSON, without markdown or commentary."

SYSTEM_QA = "You are a helpful study assistant. Answer questions based on the provided content accurately and concisely."

SYSTEM_ANSWER_CHECK = "You are a fair tutor grading a student's flashcard answer. Judge meaning, not wording. Return only JSON, without markdown or commentary."

PROMPT_SUMMARY = """Please create a comprehensive summary of the following content.
Rules:
- Start with one short overview paragraph.
- Follow with the main points as bullet points.
- Do not invent information that is not in the content.

CONTENT:
{source_text}
"""

PROMPT_NOTES = """Please create detailed study notes from the following content.

OUTPUT FORMAT (REQUIRED):
1. Markdown only, starting directly with a `#` title line.
2. Use `##` and `###` headings with a clear logical structure.
3. Highlight key terms in **bold**.
4. End with a `## Key Takeaways` section of 5-10 bullet points.

CONTENT:
{source_text}
"""

PROMPT_FLASHCARDS = """Create exactly {count} flashcards from the following content.

RULES:
- The 'question' is a clear question about a single term or concept.
- The 'answer' is a concise, accurate answer taken from the content.
- Do not invent outside information.

REQUIRED OUTPUT FORMAT:
Respond with strictly valid JSON matching this structure:
{{
  "flashcards": [{{"question": "string", "answer": "string"}}]
}}

CONTENT:
{source_text}
"""

PROMPT_QUIZ = """Create exactly {count} multiple-choice quiz questions from the following content.

RULES:
- Provide exactly 4 options per question as an array of strings.
- 'correctAnswer' is the 0-based index (0-3) of the correct option.
- Provide a brief 'explanation' of why the answer is correct.
- Do not invent outside information.
{previous_questions_block}
REQUIRED OUTPUT FORMAT:
Respond with strictly valid JSON matching this structure:
{{
  "questions": [{{"question": "string", "options": ["string", "string", "string", "string"], "correctAnswer": 0, "explanation": "string"}}]
}}

CONTENT:
{source_text}
"""

PROMPT_QUIZ_PREVIOUS_QUESTIONS = """
IMPORTANT - AVOID REPEATS:
These questions were already asked. Write new questions about different details or angles:
{previous_questions}
"""

PROMPT_MEDIA_SOURCE = "the attached video (analyze its spoken content and visuals)"

PROMPT_QA = """Based on the following content, please answer this question.

Content:
{source_text}

Question: {question}
"""

PROMPT_ANSWER_CHECK = """Decide whether the student's answer to this flashcard is correct.

RULES:
- Accept answers that express the same meaning as the expected answer, even in different words.
- Accept minor spelling mistakes.
- Reject answers that are vague, incomplete on the key point, or wrong.
- Feedback is one or two encouraging sentences; when the answer is wrong, say what was missing.

REQUIRED OUTPUT FORMAT:
Respond with strictly valid JSON matching this structure:
{{"isCorrect": true, "feedback": "string"}}

Question: {question}
Expected answer: {expected_answer}
Student answer: {user_answer}
"""


@dataclass(frozen=True)
class PromptRecord:
    prompt_id: str
    name: str
    template: str


PROMPT_RECORDS: List[PromptRecord] = [
    PromptRecord("summary", "Document summary", PROMPT_SUMMARY),
    PromptRecord("notes", "Study notes", PROMPT_NOTES),
    PromptRecord("flashcards", "Flashcards (JSON)", PROMPT_FLASHCARDS),
    PromptRecord("quiz", "Quiz questions (JSON)", PROMPT_QUIZ),
    PromptRecord("quiz_previous_questions", "Quiz repeat-avoidance block", PROMPT_QUIZ_PREVIOUS_QUESTIONS),
    PromptRecord("qa", "Document Q&A", PROMPT_QA),
    PromptRecord("answer_check", "Flashcard answer check (JSON)", PROMPT_ANSWER_CHECK),
]


def get_prompt_template(prompt_id: str) -> str:
    safe_id = str(prompt_id or "").strip()
    for record in PROMPT_RECORDS:
        if record.prompt_id == safe_id:
            return record.template
    raise KeyError(f"Unknown prompt id: {safe_id}")


def get_prompt_metadata() -> Dict[str, object]:
    return {
        "version": PROMPT_REGISTRY_VERSION,
        "count": len(PROMPT_RECORDS),
        "ids": [record.prompt_id for record in PROMPT_RECORDS],
    }
