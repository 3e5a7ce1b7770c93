"""Token usage and cost accounting for inference calls."""

import logging
import math
import time

from study_assistant.logging_config import log_event
from study_assistant.repositories import ai_costs_repo

# USD per token (input, output).
GEMINI_PRICING = {
    'gemini-2.5-flash': (0.30 / 1_000_000, 2.50 / 1_000_000),
    'gemini-2.5-flash-lite': (0.10 / 1_000_000, 0.40 / 1_000_000),
    'gemini-2.5-pro': (1.25 / 1_000_000, 10.00 / 1_000_000),
    'gemini-2.0-flash': (0.10 / 1_000_000, 0.40 / 1_000_000),
}
DEFAULT_PRICING_MODEL = 'gemini-2.5-flash'
HIGH_COST_THRESHOLD_USD = 0.01


def normalize_model_name(model_name):
    name = str(model_name or '').strip()
    if name.startswith('models/'):
        name = name[len('models/'):]
    return name


def estimate_tokens(text):
    return int(math.ceil(len(text or '') / 4))


def calculate_cost(model_name, input_tokens, output_tokens):
    pricing = GEMINI_PRICING.get(normalize_model_name(model_name))
    if pricing is None:
        pricing = GEMINI_PRICING[DEFAULT_PRICING_MODEL]
    input_price, output_price = pricing
    return (input_tokens * input_price) + (output_tokens * output_price)


def build_cost_record(operation, result, prompt_text, *, uid='', document_id='', now_ts=None):
    input_tokens = result.input_tokens
    output_tokens = result.output_tokens
    estimated = not result.usage_reported
    if estimated:
        input_tokens = estimate_tokens(prompt_text)
        output_tokens = estimate_tokens(result.text)
    cost = calculate_cost(result.model, input_tokens, output_tokens)
    return {
        'uid': uid,
        'document_id': document_id,
        'operation': operation,
        'model_name': normalize_model_name(result.model),
        'input_tokens': input_tokens,
        'output_tokens': output_tokens,
        'total_tokens': input_tokens + output_tokens,
        'cost': round(cost, 8),
        'estimated': estimated,
        'created_at': now_ts if now_ts is not None else time.time(),
    }


def record_ai_cost(db, operation, result, prompt_text, *, uid='', document_id=''):
    """Log and persist the cost of one call. Never raises."""
    try:
        record = build_cost_record(operation, result, prompt_text, uid=uid, document_id=document_id)
        log_event(
            logging.INFO,
            'ai_cost',
            operation=operation,
            model=record['model_name'],
            input_tokens=record['input_tokens'],
            output_tokens=record['output_tokens'],
            cost=record['cost'],
            document_id=document_id,
        )
        if record['cost'] > HIGH_COST_THRESHOLD_USD:
            log_event(logging.WARNING, 'ai_cost_high', operation=operation, cost=record['cost'], document_id=document_id)
        if db is not None:
            ai_costs_repo.add_cost_record(db, record)
        return record
    except Exception as exc:
        log_event(logging.WARNING, 'ai_cost_record_failed', operation=operation, error=str(exc)[:200])
        return None
