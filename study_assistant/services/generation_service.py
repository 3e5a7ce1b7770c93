"""Content generators: summary, notes, flashcards, quiz questions, Q&A and answer checks.

Each generator issues one inference call. Model output has no guaranteed
schema, so structured generators unwrap the payload defensively: a direct
parse of the trimmed response first, then each embedded JSON array/object
in turn until one holds a list of items. Flashcard and quiz generators
degrade to an empty list when nothing usable is found; summary and notes
raise ``GenerationError``.
"""

import json
import logging
import re
from dataclasses import dataclass

from study_assistant.errors import GenerationError
from study_assistant.logging_config import log_event
from study_assistant.services import prompt_registry

MAX_ITEM_TEXT_LEN = 2000
QUIZ_OPTION_COUNT = 4
JSON_START_RE = re.compile(r'[\[{]')
CODE_FENCE_RE = re.compile(r'^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$', re.DOTALL)
OPTION_LETTERS = 'ABCD'
DEFAULT_NOTES_TITLE = 'Study Notes'
QA_FALLBACK_ANSWER = 'I apologize, but I could not generate an answer.'

FLASHCARD_LIST_KEYS = ('flashcards', 'cards', 'items')
QUIZ_LIST_KEYS = ('questions', 'quiz', 'quiz_questions', 'items')
ANSWER_CHECK_KEYS = ('isCorrect', 'is_correct', 'correct')
TRUE_WORDS = {'true', 'yes', 'correct'}
FALSE_WORDS = {'false', 'no', 'incorrect'}


@dataclass(frozen=True)
class GenerationSource:
    """What a generator reads: extracted text, or a media URL for video."""

    text: str = ''
    media_url: str = ''

    @property
    def prompt_source(self):
        if self.text:
            return self.text
        return prompt_registry.PROMPT_MEDIA_SOURCE


def strip_code_fences(raw_text):
    text = str(raw_text or '').strip()
    match = CODE_FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def iter_json_candidates(raw_text):
    """Yield the whole response parsed as JSON, then every array/object embedded in it."""
    text = strip_code_fences(raw_text)
    if not text:
        return
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        yield parsed
    decoder = json.JSONDecoder()
    for match in JSON_START_RE.finditer(text):
        try:
            parsed, _end = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, (list, dict)):
            yield parsed


def parse_json_payload(raw_text):
    """Return the first parsed JSON array/object in ``raw_text`` or ``None``."""
    for parsed in iter_json_candidates(raw_text):
        if isinstance(parsed, (list, dict)):
            return parsed
    return None


def unwrap_item_list(parsed, keys):
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in keys:
            value = parsed.get(key)
            if isinstance(value, list):
                return value
    return None


def parse_item_list(raw_text, keys):
    """First JSON candidate in ``raw_text`` that unwraps to a list holding objects."""
    for parsed in iter_json_candidates(raw_text):
        items = unwrap_item_list(parsed, keys)
        if items and any(isinstance(item, dict) for item in items):
            return items
    return None


def _clean_text(value):
    return str(value if value is not None else '').strip()[:MAX_ITEM_TEXT_LEN]


def sanitize_flashcards(items, max_items):
    if not isinstance(items, list):
        return []
    cleaned = []
    seen = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        question = _clean_text(item.get('question', item.get('front')))
        answer = _clean_text(item.get('answer', item.get('back')))
        if not question or not answer:
            continue
        key = (question.lower(), answer.lower())
        if key in seen:
            continue
        seen.add(key)
        cleaned.append({'question': question, 'answer': answer})
        if len(cleaned) >= max_items:
            break
    return cleaned


def resolve_correct_answer(raw_answer, options):
    """Map an index, digit, letter or option text to a 0-based index."""
    if isinstance(raw_answer, bool):
        return None
    if isinstance(raw_answer, int):
        return raw_answer if 0 <= raw_answer < len(options) else None
    if isinstance(raw_answer, float) and raw_answer.is_integer():
        return resolve_correct_answer(int(raw_answer), options)
    text = _clean_text(raw_answer)
    if not text:
        return None
    if text.isdigit():
        return resolve_correct_answer(int(text), options)
    if len(text) == 1 and text.upper() in OPTION_LETTERS[:len(options)]:
        return OPTION_LETTERS.index(text.upper())
    lowered = [option.lower() for option in options]
    if text.lower() in lowered:
        return lowered.index(text.lower())
    return None


def sanitize_quiz_questions(items, max_items):
    if not isinstance(items, list):
        return []
    cleaned = []
    seen = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        question = _clean_text(item.get('question'))
        options = item.get('options')
        if not question or not isinstance(options, list) or len(options) != QUIZ_OPTION_COUNT:
            continue
        option_strings = [_clean_text(option) for option in options]
        if any(not option for option in option_strings) or len(set(option_strings)) != QUIZ_OPTION_COUNT:
            continue
        raw_answer = item.get('correctAnswer', item.get('correct_answer', item.get('answer')))
        correct_answer = resolve_correct_answer(raw_answer, option_strings)
        if correct_answer is None:
            continue
        dedupe_key = question.lower()
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)
        cleaned.append({
            'question': question,
            'options': option_strings,
            'correct_answer': correct_answer,
            'explanation': _clean_text(item.get('explanation')),
        })
        if len(cleaned) >= max_items:
            break
    return cleaned


def format_previous_questions(questions):
    lines = []
    for index, question in enumerate(questions or [], start=1):
        text = question.get('question', '') if isinstance(question, dict) else str(question or '')
        text = text.strip()
        if text:
            lines.append(f"{index}. {text}")
    return '\n'.join(lines) or None


def derive_notes_title(markdown_text):
    for line in str(markdown_text or '').splitlines():
        stripped = line.strip()
        if stripped.startswith('# '):
            return stripped[2:].strip()[:200] or DEFAULT_NOTES_TITLE
        if stripped:
            break
    return DEFAULT_NOTES_TITLE


async def _call(inference, operation, prompt, source, system_instruction, max_output_tokens, cost_hook):
    result = await inference.generate(
        prompt,
        media_url=source.media_url if not source.text else '',
        system_instruction=system_instruction,
        max_output_tokens=max_output_tokens,
    )
    if cost_hook is not None:
        cost_hook(operation, result, prompt)
    return result


async def generate_summary(inference, source, *, cost_hook=None):
    prompt = prompt_registry.get_prompt_template('summary').format(source_text=source.prompt_source)
    result = await _call(inference, 'generate_summary', prompt, source, prompt_registry.SYSTEM_SUMMARY, 2048, cost_hook)
    content = (result.text or '').strip()
    if not content:
        raise GenerationError('Summary generation returned empty content', operation='generate_summary')
    return content


async def generate_notes(inference, source, *, cost_hook=None):
    prompt = prompt_registry.get_prompt_template('notes').format(source_text=source.prompt_source)
    result = await _call(inference, 'generate_notes', prompt, source, prompt_registry.SYSTEM_NOTES, 8192, cost_hook)
    content = strip_code_fences(result.text)
    if not content:
        raise GenerationError('Notes generation returned empty content', operation='generate_notes')
    return {'title': derive_notes_title(content), 'content': content}


async def generate_flashcards(inference, source, count=10, *, cost_hook=None):
    prompt = prompt_registry.get_prompt_template('flashcards').format(count=count, source_text=source.prompt_source)
    result = await _call(inference, 'generate_flashcards', prompt, source, prompt_registry.SYSTEM_FLASHCARDS, 4096, cost_hook)
    items = parse_item_list(result.text, FLASHCARD_LIST_KEYS)
    if items is None:
        log_event(logging.WARNING, 'generator_parse_failed', operation='generate_flashcards', preview=(result.text or '')[:200])
        return []
    return sanitize_flashcards(items, count)


async def generate_quiz_questions(inference, source, count=10, previous_questions=None, *, cost_hook=None):
    previous_block = ''
    if previous_questions:
        previous_block = prompt_registry.get_prompt_template('quiz_previous_questions').format(previous_questions=previous_questions)
    prompt = prompt_registry.get_prompt_template('quiz').format(
        count=count,
        previous_questions_block=previous_block,
        source_text=source.prompt_source,
    )
    result = await _call(inference, 'generate_quiz_questions', prompt, source, prompt_registry.SYSTEM_QUIZ, 4096, cost_hook)
    items = parse_item_list(result.text, QUIZ_LIST_KEYS)
    if items is None:
        log_event(logging.WARNING, 'generator_parse_failed', operation='generate_quiz_questions', preview=(result.text or '')[:200])
        return []
    return sanitize_quiz_questions(items, count)


async def answer_question(inference, source, question, *, cost_hook=None):
    prompt = prompt_registry.get_prompt_template('qa').format(source_text=source.prompt_source, question=question)
    result = await _call(inference, 'answer_question', prompt, source, prompt_registry.SYSTEM_QA, 1024, cost_hook)
    return (result.text or '').strip() or QA_FALLBACK_ANSWER


def _coerce_verdict(value):
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else '').strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    return None


def parse_answer_check(raw_text):
    """Return ``(is_correct, feedback)`` from a grading response, or ``None``."""
    for parsed in iter_json_candidates(raw_text):
        if not isinstance(parsed, dict):
            continue
        for key in ANSWER_CHECK_KEYS:
            verdict = _coerce_verdict(parsed.get(key))
            if verdict is not None:
                return verdict, _clean_text(parsed.get('feedback'))
    return None


async def check_flashcard_answer(inference, question, expected_answer, user_answer, *, cost_hook=None):
    prompt = prompt_registry.get_prompt_template('answer_check').format(
        question=question,
        expected_answer=expected_answer,
        user_answer=user_answer,
    )
    result = await _call(
        inference, 'check_flashcard_answer', prompt, GenerationSource(),
        prompt_registry.SYSTEM_ANSWER_CHECK, 512, cost_hook,
    )
    verdict = parse_answer_check(result.text)
    if verdict is None:
        log_event(logging.WARNING, 'generator_parse_failed', operation='check_flashcard_answer', preview=(result.text or '')[:200])
        raise GenerationError('Could not verify the answer. Please try again.', operation='check_flashcard_answer')
    is_correct, feedback = verdict
    if not feedback:
        feedback = 'Correct!' if is_correct else f'Not quite. The expected answer is: {expected_answer}'
    return {'is_correct': is_correct, 'feedback': feedback}
