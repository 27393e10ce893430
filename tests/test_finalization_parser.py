from pi_memory.memory.parser import parse_finalization_output, synthesize_header

FULL_OUTPUT = """## Session Header
- Goals: fix the parser crash
- Files: src/parse.py

## Session Summary
Fixed a null dereference in parse() triggered by empty input.
Added a guard and a regression test.

## Memory Patch
### Invariants
- parse() never returns None
### Decisions
- Use SQLite for session storage because it's embeddable.
### Known Issues
- none
### Debug Playbook
- Empty-input crashes: check the guard in parse()

## Retrieval Tags
- parse.py, null-deref
- regression-test

## Next Steps
1. Add fuzzing for parse()
2. Release 0.3.1
"""


def test_parses_all_sections() -> None:
    out = parse_finalization_output(FULL_OUTPUT)

    assert out.header.startswith("- Goals: fix the parser crash")
    assert out.narrative.startswith("Fixed a null dereference")
    assert "regression test" in out.narrative
    assert out.memory_patch.invariants == ["parse() never returns None"]
    assert out.memory_patch.decisions == ["Use SQLite for session storage because it's embeddable."]
    assert out.memory_patch.known_issues == []
    assert out.memory_patch.debug_playbook == ["Empty-input crashes: check the guard in parse()"]
    assert out.retrieval_tags == ["parse.py", "null-deref", "regression-test"]
    assert out.next_steps == ["Add fuzzing for parse()", "Release 0.3.1"]


def test_unwraps_code_fence() -> None:
    out = parse_finalization_output(f"```markdown\n{FULL_OUTPUT}```")
    assert out.memory_patch.invariants == ["parse() never returns None"]


def test_missing_header_is_synthesized_from_summary_and_next_steps() -> None:
    text = "## Session Summary\nRefactored the cache layer.\n\n## Next Steps\n- Benchmark it\n"
    out = parse_finalization_output(text)
    assert out.header == "- Summary: Refactored the cache layer.\n- Next Steps: Benchmark it"


def test_synthesized_header_is_capped() -> None:
    header = synthesize_header("x" * 1000, [])
    assert header == "- Summary: " + "x" * 240 + "..."


def test_missing_memory_patch_yields_empty_patch() -> None:
    out = parse_finalization_output("## Session Summary\nJust talked.\n")
    assert out.memory_patch.is_empty()
    assert out.retrieval_tags == []


def test_patch_headings_are_case_and_format_tolerant() -> None:
    text = (
        "## Session Summary\nWork.\n\n## Memory Patch\n"
        "### ACTIVE WORKSTREAMS\n* Port the CLI\n### **known_issues**\n+ Flaky test on CI\n"
    )
    out = parse_finalization_output(text)
    assert out.memory_patch.active_workstreams == ["Port the CLI"]
    assert out.memory_patch.known_issues == ["Flaky test on CI"]


def test_legacy_json_output_is_accepted() -> None:
    text = (
        '{"sessionSummary": "Moved config to pydantic.", '
        '"memoryPatch": {"decisions": ["Config is pydantic v2"], "knownIssues": "Old keys still accepted"}, '
        '"retrievalTags": ["config, pydantic"], "nextSteps": ["Drop legacy keys"],}'
    )
    out = parse_finalization_output(text)
    assert out.narrative == "Moved config to pydantic."
    assert out.memory_patch.decisions == ["Config is pydantic v2"]
    assert out.memory_patch.known_issues == ["Old keys still accepted"]
    assert out.retrieval_tags == ["config", "pydantic"]
    assert out.next_steps == ["Drop legacy keys"]


def test_unstructured_text_becomes_narrative() -> None:
    out = parse_finalization_output("We mostly discussed naming.")
    assert out.narrative == "We mostly discussed naming."
    assert out.memory_patch.is_empty()
    assert out.header == "- Summary: We mostly discussed naming."
