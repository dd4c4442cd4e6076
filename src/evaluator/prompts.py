"""
Prompt assembly for CV + project report evaluation.
"""

from typing import Sequence, Union

from shared.models import ReferenceJob, ScoredJob

# Weighted sub-criteria, in percent. Each group sums to 100.
CV_CRITERIA = {
    "technical_skills_match": (40, "backend, databases, APIs, cloud, and AI/LLM exposure"),
    "experience_level": (25, "years, project complexity"),
    "relevant_achievements": (20, "impact, scale"),
    "cultural_fit": (15, "communication, learning attitude"),
}

PROJECT_CRITERIA = {
    "correctness": (30, "prompt design, chaining, RAG, handling errors"),
    "code_quality": (25, "clean, modular, testable"),
    "resilience": (20, "handles failures, retries"),
    "documentation": (15, "clear README, explanation of trade-offs"),
    "creativity_or_bonus": (10, "optional improvements like authentication, deployment, dashboards, etc."),
}

SYSTEM_PROMPT = """You are an experienced technical recruiter. Your task is to evaluate a candidate's CV and project report against the job requirements provided as context.

Score every breakdown criterion from 1 to 5:
- 1 (Poor): Little or no evidence.
- 2 (Weak): Some evidence with major gaps.
- 3 (Moderate): Reasonable evidence with notable gaps.
- 4 (Good): Strong evidence, minor gaps.
- 5 (Excellent): Exceeds expectations.

Derive the headline scores from the breakdown:
- cv_match_rate = weighted average of the cv breakdown scores divided by 5 (range 0-1, 2 decimal places)
- project_score = weighted average of the project_report breakdown scores multiplied by 2 (range 0-10, 2 decimal places)

IMPORTANT: Respond ONLY with valid JSON in the exact format specified. No other text."""


def _criteria_block(criteria: dict[str, tuple[int, str]], indent: str) -> str:
    lines = [
        f'{indent}"{name}": <number 1-5, weight: {weight}%, criteria: {description}>'
        for name, (weight, description) in criteria.items()
    ]
    return ",\n".join(lines)


RESPONSE_SCHEMA = f"""{{
  "cv_match_rate": <float 0-1>,
  "cv_feedback": "<feedback about the CV>",
  "project_score": <float 0-10>,
  "project_feedback": "<feedback about the project report>",
  "overall_summary": "<overall impression, strengths, and areas to improve>",
  "breakdown": {{
    "cv": {{
{_criteria_block(CV_CRITERIA, "      ")}
    }},
    "project_report": {{
{_criteria_block(PROJECT_CRITERIA, "      ")}
    }}
  }}
}}"""


def format_job_context(jobs: Sequence[Union[ReferenceJob, ScoredJob]]) -> str:
    """Render retrieved jobs, in ranked order, as prompt context."""
    blocks = []
    for i, item in enumerate(jobs, start=1):
        job = item.job if isinstance(item, ScoredJob) else item
        blocks.append(f"Job {i}: {job.title}\nRequirements: {job.content}")
    return "\n\n".join(blocks)


def build_evaluation_prompt(
    jobs: Sequence[Union[ReferenceJob, ScoredJob]], cv: str, report: str
) -> str:
    """Single prompt: instructions, job context, schema, CV and report."""
    job_context = format_job_context(jobs) or "(no reference jobs available)"

    return f"""{SYSTEM_PROMPT}

## Job Requirements:
{job_context}

## Task:
Analyze the following CV and Project Report against these job requirements.
Return your answer STRICTLY in JSON with this schema:

{RESPONSE_SCHEMA}

## CV:
{cv}

## Project Report:
{report}
"""
