"""
Prompt construction for transaction extraction.

The rule sections are rendered from the CategoryTaxonomy so the prompt
text never hardcodes a deployment's merchants or subjects.
"""

from expense_agent.config import CategoryTaxonomy

EXPECTED_KEYS = ("date", "merchant", "amount", "category", "description")

_HEADER = """\
Act as a financial data extractor. Analyze the following bank transaction email.
"""

_GENERAL_RULE = """\
GENERAL RULE: Use the merchant name to infer the category if it's not explicitly listed.
"""

_OUTPUT_CONTRACT = """\
Expected Output: ONLY a single valid JSON object (no markdown, no code blocks,
no commentary) with exactly these keys:
{{
  "date": "YYYY-MM-DD" (use email date if not found in text: {fallback_date}),
  "merchant": "Clean merchant name",
  "amount": "Number only (float)",
  "category": "One of the categories above",
  "description": "Brief description based on rules above"
}}
"""

_EMAIL_CONTEXT = """\
Email Context:
Subject: {subject}
Body: {body}
"""


def _render_overrides(taxonomy: CategoryTaxonomy) -> str:
    if not taxonomy.subject_overrides:
        return ""
    lines = ["### PRIORITY RULES (Check these first):", ""]
    for idx, rule in enumerate(taxonomy.subject_overrides, start=1):
        merchant = f'"{rule.merchant}".' if rule.merchant else rule.merchant_hint
        lines.append(f'{idx}. IF Subject contains "{rule.subject_contains}":')
        lines.append(f"   - Merchant: {merchant}")
        lines.append(f'   - Category: "{rule.category}".')
        lines.append(f"   - Description: {rule.description_hint}")
        lines.append("")
    return "\n".join(lines)


def _render_categories(taxonomy: CategoryTaxonomy) -> str:
    heading = "### STANDARD CATEGORIES"
    if taxonomy.subject_overrides:
        heading += " (Only use if above rules don't apply)"
    lines = [heading + ":"]
    for idx, cat in enumerate(taxonomy.categories, start=1):
        lines.append(f'{idx}. "{cat.name}":')
        if cat.match_terms:
            lines.append("   - Specific brands: " + ", ".join(cat.match_terms) + ".")
        if cat.keywords:
            lines.append("   - KEYWORDS: " + ", ".join(f'"{k}"' for k in cat.keywords) + ".")
    lines.append("")
    return "\n".join(lines)


def build_prompt(body: str, subject: str, fallback_date: str,
                 taxonomy: CategoryTaxonomy) -> str:
    """Assemble the full extraction prompt.

    *body* must already be truncated by the caller.
    """
    parts = [
        _HEADER,
        _render_overrides(taxonomy),
        _render_categories(taxonomy),
        _GENERAL_RULE,
        _OUTPUT_CONTRACT.format(fallback_date=fallback_date),
        _EMAIL_CONTEXT.format(subject=subject or "", body=body or ""),
    ]
    return "\n".join(p for p in parts if p)
