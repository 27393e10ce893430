"""Instructions for finalization, chunk, merge, compaction and resume calls."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pi_memory.memory.summaries import SessionSummary

FINALIZATION_SYSTEM_PROMPT = (
    "You are a session finalization assistant. Output only the requested markdown sections."
)
CHUNK_SYSTEM_PROMPT = "You are a conversation summarizer. Be concise and factual."
COMPACTION_SYSTEM_PROMPT = "You are a memory compaction assistant. Output only the compacted markdown."
RESUME_SYSTEM_PROMPT = "You are a session resume assistant. Be concise and actionable."

FINALIZATION_MAX_TOKENS = 2048
CHUNK_MAX_TOKENS = 1024
COMPACTION_MAX_TOKENS = 4096
RESUME_MAX_TOKENS = 512

OUTPUT_FORMAT = """Respond with exactly these markdown sections, in this order:

## Session Header
- Goals: what the session set out to do
- Decisions: choices made and why
- Constraints: limits or requirements discovered
- Files: key files touched or referenced
- Open Issues: anything left unresolved
- Next Steps: the immediate follow-ups

## Session Summary
250-400 tokens of prose: what changed, what was learned, unresolved items, key file references.

## Memory Patch
### Invariants
- core assumptions that must remain true
### Contracts
- interface contracts and API boundaries
### Decisions
- architectural decisions, each with its rationale
### Active Workstreams
- work in progress
### Known Issues
- bugs, limitations, technical debt
### Debug Playbook
- solutions to recurring problems

## Retrieval Tags
- 3-5 specific keywords (file names, concepts, error types)

## Next Steps
1. 2-4 concrete, prioritized actions

Rules:
- Session Summary: focus on outcomes and learnings, not play-by-play.
- Memory Patch: only list items that are new or changed; leave a category empty (or write "none") otherwise. Each item should say why it matters.
- Do not wrap the answer in a code block and do not add other sections."""

CHUNK_SUMMARY_PROMPT = """Summarize this conversation chunk concisely. Focus on:
- What tasks were attempted or completed
- Key decisions made
- Files modified or created
- Errors encountered and how they were resolved
- Important context for understanding later chunks

Output a concise prose summary (150-250 words) without headings or other structure."""

MERGE_SUMMARIES_PROMPT = """You have multiple chunk summaries from one long session, in chronological order. Merge them into a single coherent finalization output.

- Merge overlapping information, don't duplicate
- Preserve the chronological flow of work
- Focus on final outcomes, not intermediate steps
- Include all unique file references and decisions"""

RESUME_PROMPT = """Based on the project memory and previous session summary below, generate a brief resume statement.

Format:
## Resume Brief
**Current Goals**: [What we're working on]
**Key Constraints**: [Important limitations or requirements]
**Open Problems**: [Unresolved issues]
**Next 3 Actions**: [Immediate next steps]

Keep it concise (100-150 words). Focus on actionable context."""


def build_finalization_prompt(project_memory: str, conversation: str) -> str:
    return f"""Analyze the conversation and produce the session finalization output.

{OUTPUT_FORMAT}

Current Project Memory:
{project_memory}

Conversation to summarize:
{conversation}"""


def build_chunk_prompt(chunk: str, index: int, total: int) -> str:
    """*index* is zero-based; the prompt numbers chunks from 1."""
    return f"""{CHUNK_SUMMARY_PROMPT}

Chunk {index + 1} of {total}:
{chunk}"""


def build_merge_prompt(chunk_summaries: list[str], project_memory: str) -> str:
    summaries = "\n\n".join(f"### Chunk {i + 1}\n{s}" for i, s in enumerate(chunk_summaries))
    return f"""{MERGE_SUMMARIES_PROMPT}

{OUTPUT_FORMAT}

Current Project Memory:
{project_memory}

Chunk Summaries:
{summaries}"""


def build_compaction_prompt(memory: str, target_tokens: int) -> str:
    return f"""Compact this project memory while preserving essential information.

Current memory:
{memory}

Rules:
- Keep critical invariants and contracts
- Summarize older decisions, keep recent ones detailed
- Archive resolved workstreams (just mention they were completed)
- Keep active known issues and debug playbook entries
- Keep exactly these sections as "## " headings: Invariants, Contracts, Decisions, Active Workstreams, Known Issues, Debug Playbook
- Target ~{target_tokens} tokens

Output the compacted memory in the same markdown format."""


def build_resume_prompt(project_memory: str, previous: SessionSummary | None) -> str:
    previous_context = ""
    if previous is not None:
        steps = "\n".join(f"- {s}" for s in previous.next_steps) or "- (none)"
        previous_context = (
            f"\nPrevious Session Summary:\n{previous.narrative}\n\n"
            f"Next Steps from previous session:\n{steps}"
        )
    return f"""{RESUME_PROMPT}

Project Memory:
{project_memory}
{previous_context}"""
