"""Content KPI Engine — Reasoning Prompts.

Prompt builders for the LLM-backed rules. Each returns a ReasoningRequest
whose schema lists the keys the answer must contain.
"""

from __future__ import annotations

from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.extraction.signals import BrandContext

# ── Output Schemas ───────────────────────────────────────
EXPERT_AUTHORITY_SCHEMA = {
    "score": "int",
    "has_named_author": "bool",
    "credentials": "list",
    "first_hand_experience": "bool",
    "reasoning": "str",
}

BRAND_ALIGNMENT_SCHEMA = {
    "score": "int",
    "attributes_covered": "list",
    "attributes_missing": "list",
    "competitor_mentions": "list",
    "reasoning": "str",
}

_MAX_OUTPUT_TOKENS = 600


def build_expert_authority_request(url: str, title: str, content: str) -> ReasoningRequest:
    """Ask whether a page demonstrates expert authorship.

    Args:
        url: Page URL.
        title: Page title.
        content: Clean page text (already truncated by the caller).

    Returns:
        ReasoningRequest labelled 'expert-authority'.
    """
    prompt = f"""Assess whether this page is written by, or cites, a credible expert.

EVALUATION CRITERIA:
1. **Named author**: a real person is credited (byline, author box, signature).
2. **Credentials**: job title, qualifications, years of experience or affiliations
   that make the author credible on this topic. Quote them exactly.
3. **First-hand experience**: the text describes things the author actually did,
   tested or measured, not generic advice.

EDGE CASES:
- "Admin", "Team" or a company name is NOT a named author.
- Quotes from outside experts count as credentials only when attributed.

SCORING (0-100):
- 80-100: named expert with relevant credentials and first-hand experience
- 50-79: named author with some credentials OR clear first-hand experience
- 20-49: weak signals only
- 0-19: anonymous, generic content

URL: {url}
Title: {title}

Content:
{content}

Respond with a JSON object with exactly these keys:
{{"score": int, "has_named_author": bool, "credentials": [str],
  "first_hand_experience": bool, "reasoning": str}}"""

    return ReasoningRequest(
        prompt=prompt,
        schema=EXPERT_AUTHORITY_SCHEMA,
        options={"max_tokens": _MAX_OUTPUT_TOKENS, "temperature": 0.2},
        label="expert-authority",
    )


def build_brand_alignment_request(
    url: str, content: str, brand: BrandContext
) -> ReasoningRequest:
    """Ask how well a page conveys the brand's key attributes.

    Args:
        url: Page URL.
        content: Clean page text (already truncated by the caller).
        brand: Brand name, attributes and competitors.

    Returns:
        ReasoningRequest labelled 'brand-alignment'.
    """
    attributes = ", ".join(brand.key_attributes) or "Not specified"
    competitors = ", ".join(brand.competitors) or "None"

    prompt = f"""Evaluate how well this page represents the brand "{brand.brand_name}".

=== BRAND ===
Name: {brand.brand_name}
Key attributes: {attributes}
Competitors: {competitors}

=== TASK ===
1. List the key attributes the page clearly conveys (attributes_covered).
2. List the key attributes it does not convey (attributes_missing).
3. List competitor names mentioned on the page (competitor_mentions).
4. Score 0-100: how strongly and accurately the page reinforces the brand.
   Pages that promote competitors more than the brand score below 30.

URL: {url}

Content:
{content}

Respond with a JSON object with exactly these keys:
{{"score": int, "attributes_covered": [str], "attributes_missing": [str],
  "competitor_mentions": [str], "reasoning": str}}"""

    return ReasoningRequest(
        prompt=prompt,
        schema=BRAND_ALIGNMENT_SCHEMA,
        options={"max_tokens": _MAX_OUTPUT_TOKENS, "temperature": 0.2},
        label="brand-alignment",
    )
