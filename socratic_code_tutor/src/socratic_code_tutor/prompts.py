"""
Prompt templates for the question service.
"""

import json
from typing import Dict, List, Optional

from socratic_code_tutor.misconceptions import MISCONCEPTION_TAXONOMY, MisconceptionId, TAXONOMY_BY_ID

SYSTEM_PROMPT = """You are a Socratic programming tutor. You never give answers, fixes, or code.

How to respond:
- If the student has fully worked out the solution, reply "That's correct!" and nothing else.
- Otherwise reply with exactly ONE short question (under 20 words) that moves them one step forward.

Progression:
1. Help them notice the problem: ask about behavior, edge cases, or inputs that trigger it.
2. Help them see the consequence: ask why that behavior produces a wrong result.
3. Help them find the remedy: ask what check or change would prevent it.
4. Help with placement: ask where that change belongs.

Never:
- explain, give hints, give examples, or suggest code changes
- write more than one sentence or use markdown
- repeat a question you already asked
- ask what the student is trying to do
"""

STRATEGY_INSTRUCTIONS: Dict[str, str] = {
    "diagnostic": "Ask a question that reveals what the student expects the code to do at the failing point.",
    "narrowing": "The student is fairly confident. Ask a question that narrows the search to one line or one value.",
    "conceptual-contrast": "Ask a question that contrasts the student's belief with what actually happens, for the targeted misconception.",
    "reflective": "Ask a question that makes the student explain their own reasoning back in one sentence.",
}


def taxonomy_block() -> str:
    lines = []
    for item in MISCONCEPTION_TAXONOMY:
        lines.append(f"- {item.id.value}: {item.label}. {item.description} (e.g. {'; '.join(item.examples)})")
    return "\n".join(lines)


def build_classify_prompt(
    message: str,
    context: Optional[str],
    prior_summary: str,
    last_question: Optional[str],
) -> str:
    return f"""Classify which programming misconceptions the student's latest message shows.

Misconceptions:
{taxonomy_block()}

Conversation so far: {prior_summary or "(new conversation)"}
Tutor's last question: {last_question or "(none)"}
Student message: {message}
Code context:
{context or "(none)"}

For each misconception the message gives evidence about, return a verdict:
- "new": first sign of it
- "reinforced": more evidence for one already suspected
- "weakened": the student shows they understand it better
- "absent": the student clearly does not hold it

Respond in JSON format:
{{
    "verdicts": [
        {{"id": "<misconception id>", "status": "new|reinforced|weakened|absent", "certainty": 0.0-1.0, "rationale": "short reason"}}
    ]
}}"""


def build_generate_prompt(
    targeted: Optional[MisconceptionId],
    strategy: str,
    message: str,
    summary: str,
    context: Optional[str],
    last_question: Optional[str],
) -> str:
    focus = "No specific misconception yet."
    if targeted is not None:
        descriptor = TAXONOMY_BY_ID[targeted]
        focus = f"Targeted misconception: {descriptor.label} ({descriptor.description})"

    prompt = f"""STUDENT MESSAGE:
{message}

{focus}
Strategy: {STRATEGY_INSTRUCTIONS.get(strategy, STRATEGY_INSTRUCTIONS["diagnostic"])}
Conversation so far: {summary or "(new conversation)"}
Do not repeat this question: {last_question or "(none)"}

Respond with ONE short question (<20 words) tailored to their code. Nothing else."""
    if context:
        prompt += f"\n\n[Current Editor Context]:\n```\n{context}\n```"
    return prompt


def build_summary_prompt(history: List[Dict[str, str]]) -> str:
    return f"""Based on the following tutoring conversation, write a brief summary (at most 3 sentences).
Include the concepts discussed and the key questions the student asked.

History:
{json.dumps(history, ensure_ascii=False)}"""
