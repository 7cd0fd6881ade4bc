"""Prompt templates for statement extraction.

Prompts are versioned so stored extracts can be traced back to the
instructions that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# v2.0: single prompt for text and vision routes, strict output schema
PROMPT_VERSION = "v2.0"

MODEL_CATEGORIES = [
    "Food",
    "Transport",
    "Utilities",
    "Subscription",
    "Shopping",
    "Income",
    "Transfer",
    "Other",
]

# JSON schema handed to the service as the structured-output format
OUTPUT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "opening_balance": {"type": ["number", "null"]},
        "closing_balance": {"type": ["number", "null"]},
        "transactions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "ISO-8601 date YYYY-MM-DD"},
                    "description": {"type": "string"},
                    "amount": {
                        "type": "number",
                        "description": "Negative for debits, positive for credits",
                    },
                    "currency": {"type": "string"},
                    "category": {"type": "string", "enum": MODEL_CATEGORIES},
                    "balance": {"type": ["number", "null"]},
                },
                "required": ["date", "description", "amount", "currency"],
            },
        },
    },
    "required": ["transactions"],
}


@dataclass
class StatementPrompt:
    """Prompt template for statement transaction extraction.

    Attributes:
        version: Prompt version.
        system_prompt: System message setting model behavior.
        text_template: User message for native-text statements.
        vision_template: User message accompanying page images.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You extract transactions from bank and credit card statements.

Rules:
1. Return ONLY JSON matching the requested schema, no commentary
2. One entry per transaction line; skip headers, totals and balance lines
3. Dates in ISO-8601 (YYYY-MM-DD); infer the year from the statement period
4. amount is negative for debits/withdrawals and positive for credits/deposits
5. balance is the running balance printed on the line, or null
6. opening_balance / closing_balance are the balances brought and carried
   forward, or null when the statement does not print them
7. Never invent transactions or balances that are not on the statement"""

    text_template: str = """Extract every transaction from this statement text.
Default currency if none is printed: {currency}.

Statement text:
---
{text}
---"""

    vision_template: str = """Extract every transaction from these statement page images, in order.
Default currency if none is printed: {currency}.{hint}"""

    schema: dict = field(default_factory=lambda: OUTPUT_SCHEMA)

    def format_text_message(self, text: str, currency: str) -> str:
        """Format the user message for the text route."""
        return self.text_template.format(text=text, currency=currency)

    def format_vision_message(self, currency: str, hint_text: str | None = None) -> str:
        """Format the user message for the vision route.

        Args:
            currency: Default currency code.
            hint_text: Any native text recovered alongside the images.

        Returns:
            Formatted user message.
        """
        hint = ""
        if hint_text:
            hint = f"\n\nText recovered from part of the upload:\n---\n{hint_text}\n---"
        return self.vision_template.format(currency=currency, hint=hint)


PAGE_SELECTION_SCHEMA: dict = {
    "type": "object",
    "properties": {"pages": {"type": "array", "items": {"type": "integer"}}},
    "required": ["pages"],
}


@dataclass
class PageSelectionPrompt:
    """Prompt asking which pages of a long statement hold transaction tables."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You say which bank statement pages contain transaction tables.

A transaction table has date, description and amount columns over several rows.
Ignore pages with only summaries, balances, overviews or legal text.
Return ONLY JSON of the form {"pages": [2, 3]} with 1-based page numbers."""

    page_excerpt_chars: int = 600

    schema: dict = field(default_factory=lambda: PAGE_SELECTION_SCHEMA)

    def format_pages_message(self, pages: list[str]) -> str:
        """Summarize each page by its first and last characters."""
        n = self.page_excerpt_chars
        summaries = []
        for number, text in enumerate(pages, start=1):
            excerpt = text if len(text) <= 2 * n else f"{text[:n]} ... {text[-n:]}"
            summaries.append(f"PAGE {number} ({len(text)} chars):\n{excerpt}")
        return "Which pages contain transaction tables?\n\n" + "\n\n".join(summaries)
