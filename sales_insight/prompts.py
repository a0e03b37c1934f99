"""
Stage prompt construction.

Rationale:
- Prompt wording lives in per-language text files under prompt_templates/,
  loaded once per language; the builder functions below are pure string
  formatting over the loaded bundle.
- Every stage template tells the model to answer with exactly one JSON object
  holding the full updated context, in the target language only. The
  extractor downstream depends on that instruction.
- Only stage 1 sees raw rows (a bounded excerpt); later stages see the
  accumulated context only.
"""

import json
import os
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel

# Prompt file paths
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATES_DIR = os.path.join(BASE_DIR, "prompt_templates")

# Data excerpt bounds for the data-understanding stage
MAX_EXCERPT_ROWS = 20
MAX_EXCERPT_COLUMNS = 10


class StageNames(BaseModel):
    data_understanding: str
    analytical_reasoning: str
    result_generation: str


class ColumnNames(BaseModel):
    date: str
    product: str
    region: str
    sales: str
    customer: str


class ReportKeys(BaseModel):
    summary: str
    insights: str
    recommendations: str
    recommendation: str
    steps: str
    strategic_impact: str
    future_opportunities: str


class Vocabulary(BaseModel):
    """Language-specific names: stages, roles, dataset columns and report keys."""

    language_name: str
    stages: StageNames
    roles: StageNames
    columns: ColumnNames
    report_keys: ReportKeys

    @property
    def schema_fields(self) -> List[str]:
        c = self.columns
        return [c.date, c.product, c.region, c.sales, c.customer]


@dataclass(frozen=True)
class PromptTemplates:
    language: str
    vocabulary: Vocabulary
    role: str
    data_understanding: str
    analytical_reasoning: str
    result_generation: str


def _read_prompt(path: str) -> str:
    """Read a prompt text file."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def available_languages() -> List[str]:
    return sorted(
        name for name in os.listdir(TEMPLATES_DIR)
        if os.path.isdir(os.path.join(TEMPLATES_DIR, name))
    )


@lru_cache(maxsize=None)
def load_templates(language: str) -> PromptTemplates:
    """Load the template bundle for `language` (e.g. "zh-Hant", "en")."""
    folder = os.path.join(TEMPLATES_DIR, language)
    if not os.path.isdir(folder):
        raise ValueError(
            f"Unsupported language '{language}'. Available: {', '.join(available_languages())}"
        )

    vocabulary = Vocabulary.model_validate_json(_read_prompt(os.path.join(folder, "vocabulary.json")))
    return PromptTemplates(
        language=language,
        vocabulary=vocabulary,
        role=_read_prompt(os.path.join(folder, "role.txt")),
        data_understanding=_read_prompt(os.path.join(folder, "data_understanding.txt")),
        analytical_reasoning=_read_prompt(os.path.join(folder, "analytical_reasoning.txt")),
        result_generation=_read_prompt(os.path.join(folder, "result_generation.txt")),
    )


def _json_default(o: Any):
    """Serialize dates and numpy scalars that can appear in spreadsheet rows."""
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if hasattr(o, "item"):
        return o.item()
    return str(o)


def format_data_excerpt(rows: Sequence[Dict[str, Any]]) -> str:
    """First MAX_EXCERPT_ROWS rows, first MAX_EXCERPT_COLUMNS keys of each, as JSON."""
    limited = [
        dict(list(row.items())[:MAX_EXCERPT_COLUMNS])
        for row in list(rows)[:MAX_EXCERPT_ROWS]
    ]
    return json.dumps(limited, ensure_ascii=False, indent=2, default=_json_default)


def serialize_context(context: Dict[str, Any]) -> str:
    """Full JSON rendering of the context as it is embedded in prompts."""
    return json.dumps(context, ensure_ascii=False, indent=2, default=_json_default)


def _render(templates: PromptTemplates, template: str, **values: Any) -> str:
    keys = templates.vocabulary.report_keys
    return template.format(
        language_name=templates.vocabulary.language_name,
        summary_key=keys.summary,
        insights_key=keys.insights,
        recommendations_key=keys.recommendations,
        recommendation_key=keys.recommendation,
        steps_key=keys.steps,
        strategic_impact_key=keys.strategic_impact,
        future_opportunities_key=keys.future_opportunities,
        **values,
    ).strip()


def create_role_prompt(templates: PromptTemplates, role_description: str) -> str:
    return _render(templates, templates.role, role_description=role_description)


def create_data_understanding_prompt(
    templates: PromptTemplates,
    rows: Sequence[Dict[str, Any]],
    context: Dict[str, Any],
) -> str:
    role = create_role_prompt(templates, templates.vocabulary.roles.data_understanding)
    return _render(
        templates,
        templates.data_understanding,
        role_prompt=role,
        data=format_data_excerpt(rows),
        context=serialize_context(context),
    )


def create_analysis_prompt(templates: PromptTemplates, context: Dict[str, Any]) -> str:
    role = create_role_prompt(templates, templates.vocabulary.roles.analytical_reasoning)
    return _render(
        templates,
        templates.analytical_reasoning,
        role_prompt=role,
        context=serialize_context(context),
    )


def create_result_generation_prompt(templates: PromptTemplates, context: Dict[str, Any]) -> str:
    role = create_role_prompt(templates, templates.vocabulary.roles.result_generation)
    return _render(
        templates,
        templates.result_generation,
        role_prompt=role,
        context=serialize_context(context),
    )
