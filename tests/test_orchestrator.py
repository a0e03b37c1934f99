import copy
import json

import pytest

from sales_insight.errors import (
    ExtractionFailure,
    ModelInvocationError,
    StageContractViolation,
)
from sales_insight.llm_client import GenerationSettings
from sales_insight.orchestrator import StageOrchestrator, validate_report, validate_stage_output
from sales_insight.prompts import load_templates, serialize_context


@pytest.fixture
def templates():
    return load_templates("zh-Hant")


def _dumps(obj):
    return json.dumps(obj, ensure_ascii=False)


def _orchestrator(client, templates):
    return StageOrchestrator(client, GenerationSettings(), templates)


def test_stages_thread_context(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, r2, r3 = stage_contexts
    client = make_client([
        "```json\n" + _dumps(r1) + "\n```",
        _dumps(r2),
        "以下是結果：" + _dumps(r3) + " 完成。",
    ])

    run = _orchestrator(client, templates).run(sample_rows, seed_context)

    assert [entry["stage"] for entry in run.transcript] == ["數據理解", "分析推理", "結果產生"]
    assert [entry["result"] for entry in run.transcript] == [r1, r2, r3]
    assert [p["stage"] for p in run.prompts] == ["數據理解", "分析推理", "結果產生"]
    assert run.prompts[1]["prompt"] == client.prompts[1]
    assert serialize_context(r1) in client.prompts[1]
    assert serialize_context(r2) in client.prompts[2]
    assert run.report == r3["results"]
    assert run.context == r3


def test_generation_settings_are_passed_to_every_call(make_client, templates, sample_rows, seed_context, stage_contexts):
    client = make_client([_dumps(c) for c in stage_contexts])
    generation = GenerationSettings(temperature=0.1, max_output_tokens=1024)

    StageOrchestrator(client, generation, templates).run(sample_rows, seed_context)

    assert client.configs == [generation] * 3


def test_unparsable_stage_two_aborts(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, _, r3 = stage_contexts
    client = make_client([_dumps(r1), "抱歉，我無法完成這個分析。", _dumps(r3)])

    with pytest.raises(ExtractionFailure) as excinfo:
        _orchestrator(client, templates).run(sample_rows, seed_context)

    err = excinfo.value
    assert err.stage == "分析推理"
    assert [entry["stage"] for entry in err.transcript] == ["數據理解"]
    assert len(client.prompts) == 2


def test_model_failure_is_wrapped(make_client, templates, sample_rows, seed_context):
    client = make_client([RuntimeError("connection reset")])

    with pytest.raises(ModelInvocationError, match="connection reset") as excinfo:
        _orchestrator(client, templates).run(sample_rows, seed_context)

    assert excinfo.value.stage == "數據理解"
    assert excinfo.value.transcript == []


def test_model_invocation_error_passes_through(make_client, templates, sample_rows, seed_context):
    client = make_client([ModelInvocationError("Gemini blocked response. Finish reason: 3")])

    with pytest.raises(ModelInvocationError, match="blocked"):
        _orchestrator(client, templates).run(sample_rows, seed_context)


def test_dropping_thinking_entries_is_a_violation(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, r2, _ = stage_contexts
    r2 = copy.deepcopy(r2)
    del r2["thinking"]["數據模式"]
    client = make_client([_dumps(r1), _dumps(r2)])

    with pytest.raises(StageContractViolation) as excinfo:
        _orchestrator(client, templates).run(sample_rows, seed_context)

    assert excinfo.value.problems == ["thinking.數據模式: removed"]
    assert excinfo.value.stage == "分析推理"


def test_missing_section_is_a_violation(seed_context, templates):
    candidate = {"context": seed_context["context"], "thinking": {}}

    with pytest.raises(StageContractViolation) as excinfo:
        validate_stage_output(seed_context, candidate, templates.vocabulary.report_keys)

    assert any(p.startswith("results") for p in excinfo.value.problems)


def test_non_object_output_is_a_violation(seed_context, templates):
    with pytest.raises(StageContractViolation, match="not a JSON object"):
        validate_stage_output(seed_context, [1, 2], templates.vocabulary.report_keys)


def test_final_stage_requires_report_fields(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, r2, r3 = stage_contexts
    r3 = copy.deepcopy(r3)
    del r3["results"]["總結"]
    r3["results"]["重點見解"] = "北區貢獻最多營收"
    client = make_client([_dumps(r1), _dumps(r2), _dumps(r3)])

    with pytest.raises(StageContractViolation) as excinfo:
        _orchestrator(client, templates).run(sample_rows, seed_context)

    problems = excinfo.value.problems
    assert any(p.startswith("總結") for p in problems)
    assert any(p.startswith("重點見解") for p in problems)
    assert len(excinfo.value.transcript) == 2


def test_recommendation_steps_must_be_a_list(templates, stage_contexts):
    results = copy.deepcopy(stage_contexts[2]["results"])
    results["建議"][0]["步驟"] = "一步完成"

    with pytest.raises(StageContractViolation) as excinfo:
        validate_report(results, templates.vocabulary.report_keys)

    assert excinfo.value.problems[0].startswith("建議.0.步驟")


def test_validate_report_returns_typed_report(templates, stage_contexts):
    report = validate_report(stage_contexts[2]["results"], templates.vocabulary.report_keys)

    assert report.insights == ["北區貢獻最多營收", "產品B單筆金額最高"]
    assert report.recommendations[0].steps == ["分析南區客群", "推出區域促銷"]
    assert report.summary.startswith("整體銷售表現")


def test_header_rewrite_is_flagged_not_rejected(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, r2, r3 = copy.deepcopy(stage_contexts)
    r1["context"]["task"] = "something_else"
    client = make_client([_dumps(r1), _dumps(r2), _dumps(r3)])

    run = _orchestrator(client, templates).run(sample_rows, seed_context)

    assert [r.header_preserved for r in run.records] == [False, False, True]


def test_extra_sections_are_preserved(make_client, templates, sample_rows, seed_context, stage_contexts):
    r1, r2, r3 = copy.deepcopy(stage_contexts)
    for context in (r1, r2, r3):
        context["metadata"] = {"模型備註": "額外資訊"}
    client = make_client([_dumps(r1), _dumps(r2), _dumps(r3)])

    run = _orchestrator(client, templates).run(sample_rows, seed_context)

    assert run.context["metadata"] == {"模型備註": "額外資訊"}
    assert '"metadata"' in client.prompts[1]


def test_rewritten_thinking_value_is_logged(templates, stage_contexts, caplog):
    r1, r2, _ = copy.deepcopy(stage_contexts)
    r2["thinking"]["數據模式"] = "南區銷售額最高"

    with caplog.at_level("WARNING", logger="sales_insight.orchestrator"):
        accepted = validate_stage_output(r1, r2, templates.vocabulary.report_keys)

    assert accepted is r2
    assert "數據模式" in caplog.text


def test_unchanged_thinking_is_not_logged(templates, stage_contexts, caplog):
    r1, r2, _ = copy.deepcopy(stage_contexts)

    with caplog.at_level("WARNING", logger="sales_insight.orchestrator"):
        validate_stage_output(r1, r2, templates.vocabulary.report_keys)

    assert "rewrote existing thinking" not in caplog.text
