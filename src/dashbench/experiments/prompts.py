"""
Prompt rendering for generation and judge calls.

Templates use ``{{name}}`` placeholders:
- Generation prompts: ``{{output}}`` receives the test case's user prompt
- Judge prompts: ``{{user_input}}``, ``{{expected_json}}``, ``{{generated_json}}``
"""

from __future__ import annotations

import json
import re
from typing import Any

GENERATION_PLACEHOLDER = "{{output}}"
_JUDGE_PLACEHOLDER = re.compile(r"\{\{(user_input|expected_json|generated_json)\}\}")

DEFAULT_JUDGE_PROMPT = """EVALUATION TASK: Compare AI-generated weather dashboard configurations.
IMPORTANT: You are an EVALUATOR, not a JSON generator. Do NOT create layer JSON.

USER REQUEST: "{{user_input}}"

EXPECTED JSON (Reference):
{{expected_json}}

GENERATED JSON (To Evaluate):
{{generated_json}}

Evaluate how well the generated JSON matches the expected JSON. Consider:
1. **Weather Layers**: Correct weather parameters included?
2. **Layer Configuration**: Proper layer settings and parameters?
3. **Structure**: Valid JSON structure and completeness?
4. **Additional Value**: Useful additional layers beyond minimum?

Penalize missing layers much more than additional layers that are not part of the original JSON. As long as the map depicts what the user asked for, the score should be above 8.

CRITICAL INSTRUCTIONS:
- You are EVALUATING, not generating new JSON
- Do NOT return layer configurations
- Do NOT return JSON arrays or objects
- ONLY return the XML format below

REQUIRED RESPONSE FORMAT (copy exactly):
<score>8</score>
<details>Your evaluation explanation here</details>

Example response:
<score>7</score>
<details>Generated JSON has correct weather parameters but missing opacity settings and has different color_map values than expected.</details>"""


def to_prompt_json(value: Any) -> str:
    """Serialise a document for embedding in a prompt (stable 2-space indent)."""
    return json.dumps(value, indent=2, ensure_ascii=False)


def render_generation_prompt(template: str, user_prompt: str) -> str:
    """Substitute the user's request into a generation prompt template."""
    return template.replace(GENERATION_PLACEHOLDER, user_prompt)


def render_judge_prompt(
    template: str | None,
    user_input: str,
    expected_json: Any,
    generated_json: Any,
) -> str:
    """
    Fill a judge prompt template.

    Args:
        template: Judge template, or None for DEFAULT_JUDGE_PROMPT
        user_input: The test case's natural-language request
        expected_json: Reference document
        generated_json: Document produced by the model under test

    Returns:
        Rendered prompt
    """
    values = {
        "user_input": user_input,
        "expected_json": to_prompt_json(expected_json),
        "generated_json": to_prompt_json(generated_json),
    }
    # Single pass so placeholder-like text inside the values is left alone
    return _JUDGE_PLACEHOLDER.sub(lambda m: values[m.group(1)], template or DEFAULT_JUDGE_PROMPT)
