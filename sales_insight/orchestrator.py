"""
Three-stage context-accumulation pipeline.

Flow (strictly sequential, no branching, no retries):
1. Data understanding   - prompt with a row excerpt + seed context
2. Analytical reasoning - prompt with the stage-1 context only
3. Result generation    - prompt with the stage-2 context only

Each stage: build prompt -> model call -> extract JSON -> validate -> the
validated object replaces the current context and is recorded in the
transcript. Any failure aborts the run; the raised error carries the failing
stage and the transcript up to that point.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .errors import ModelInvocationError, PipelineError, StageContractViolation
from .extractor import extract_json
from .llm_client import GenerationSettings, ModelClient
from .prompts import (
    PromptTemplates,
    ReportKeys,
    create_analysis_prompt,
    create_data_understanding_prompt,
    create_result_generation_prompt,
)
from .schemas import AnalysisContext, Report

logger = logging.getLogger(__name__)

STAGE_SEQUENCE = ("data_understanding", "analytical_reasoning", "result_generation")


@dataclass
class StageRecord:
    stage: str
    prompt: str
    result: Optional[Dict[str, Any]] = None
    header_preserved: bool = True


@dataclass
class StageRun:
    context: Dict[str, Any]
    records: List[StageRecord] = field(default_factory=list)

    @property
    def prompts(self) -> List[Dict[str, str]]:
        return [{"stage": r.stage, "prompt": r.prompt} for r in self.records]

    @property
    def transcript(self) -> List[Dict[str, Any]]:
        return [{"stage": r.stage, "result": r.result} for r in self.records if r.result is not None]

    @property
    def report(self) -> Dict[str, Any]:
        return self.context["results"]


def _problems(error: ValidationError, names: Optional[Dict[str, str]] = None) -> List[str]:
    names = names or {}
    problems = []
    for err in error.errors():
        loc = [names.get(p, p) if isinstance(p, str) else p for p in err["loc"]]
        problems.append(f"{'.'.join(str(p) for p in loc)}: {err['msg']}")
    return problems


def validate_report(results: Dict[str, Any], keys: ReportKeys) -> Report:
    """Check the localized report fields in `results` and return them as a Report."""
    recommendations = results.get(keys.recommendations)
    if isinstance(recommendations, list):
        recommendations = [
            {"recommendation": r.get(keys.recommendation), "steps": r.get(keys.steps)}
            if isinstance(r, dict) else r
            for r in recommendations
        ]

    data = {
        "summary": results.get(keys.summary),
        "insights": results.get(keys.insights),
        "recommendations": recommendations,
        "strategic_impact": results.get(keys.strategic_impact),
        "future_opportunities": results.get(keys.future_opportunities),
    }
    try:
        return Report.model_validate(data)
    except ValidationError as e:
        problems = _problems(e, names=keys.model_dump())
        raise StageContractViolation(f"Report is missing or has invalid fields: {'; '.join(problems)}", problems)


def validate_stage_output(
    previous: Dict[str, Any],
    candidate: Any,
    report_keys: ReportKeys,
    final: bool = False,
) -> Dict[str, Any]:
    """
    Accept `candidate` as the next context only if it has the context shape,
    keeps every previous `thinking` key and, on the final stage, carries a
    valid report in `results`.
    """
    if not isinstance(candidate, dict):
        raise StageContractViolation(
            "Stage output is not a JSON object",
            [f"expected object, got {type(candidate).__name__}"],
        )

    try:
        AnalysisContext.model_validate(candidate)
    except ValidationError as e:
        problems = _problems(e)
        raise StageContractViolation(f"Stage output does not match the context shape: {'; '.join(problems)}", problems)

    dropped = [key for key in previous.get("thinking", {}) if key not in candidate["thinking"]]
    if dropped:
        raise StageContractViolation(
            f"Stage output removed existing thinking entries: {', '.join(dropped)}",
            [f"thinking.{key}: removed" for key in dropped],
        )

    rewritten = [key for key, value in previous.get("thinking", {}).items() if candidate["thinking"][key] != value]
    if rewritten:
        logger.warning(f"Stage output rewrote existing thinking entries: {', '.join(rewritten)}")

    if final:
        validate_report(candidate["results"], report_keys)
    elif candidate["results"]:
        logger.warning("Intermediate stage populated 'results' before the result-generation stage")

    return candidate


def header_preserved(previous: Dict[str, Any], candidate: Dict[str, Any]) -> bool:
    return previous.get("context") == candidate.get("context")


class StageOrchestrator:
    def __init__(self, client: ModelClient, generation: GenerationSettings, templates: PromptTemplates):
        self.client = client
        self.generation = generation
        self.templates = templates

    @property
    def stage_names(self) -> List[str]:
        stages = self.templates.vocabulary.stages
        return [getattr(stages, key) for key in STAGE_SEQUENCE]

    def _build_prompt(self, key: str, rows: Sequence[Dict[str, Any]], context: Dict[str, Any]) -> str:
        if key == "data_understanding":
            return create_data_understanding_prompt(self.templates, rows, context)
        if key == "analytical_reasoning":
            return create_analysis_prompt(self.templates, context)
        return create_result_generation_prompt(self.templates, context)

    def _generate(self, prompt: str) -> str:
        try:
            return self.client.generate(prompt, self.generation)
        except PipelineError:
            raise
        except Exception as e:
            raise ModelInvocationError(f"Model call failed: {e}")

    def run(self, rows: Sequence[Dict[str, Any]], seed: Dict[str, Any]) -> StageRun:
        run = StageRun(context=seed)
        current = seed
        report_keys = self.templates.vocabulary.report_keys

        for index, (key, stage) in enumerate(zip(STAGE_SEQUENCE, self.stage_names)):
            final = index == len(STAGE_SEQUENCE) - 1
            logger.info(f"Starting stage {index + 1}/{len(STAGE_SEQUENCE)}: {stage}")
            try:
                record = StageRecord(stage=stage, prompt=self._build_prompt(key, rows, current))
                run.records.append(record)

                response = self._generate(record.prompt)
                logger.debug(f"Stage '{stage}' raw response: {response}")

                candidate = validate_stage_output(current, extract_json(response), report_keys, final=final)
            except PipelineError as e:
                logger.error(f"Stage '{stage}' failed: {e}")
                raise e.attach(stage, run.transcript)

            if not header_preserved(current, candidate):
                # Unresolved trust boundary: flagged, not rejected
                logger.warning(f"Stage '{stage}' rewrote the context header block")
                record.header_preserved = False

            record.result = candidate
            current = candidate
            run.context = current
            logger.info(f"Stage '{stage}' completed")

        return run
