"""
Prompt Management Module

Loads advisor prompts from text files next to this module, so prompt wording
can be iterated on without touching code.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

PROMPTS_DIR = Path(__file__).parent

# Set ADVISORQ_INSIGHT_PROMPT to try an alternate template (e.g. "advisor_insight_v2")
INSIGHT_PROMPT_NAME = os.getenv("ADVISORQ_INSIGHT_PROMPT", "advisor_insight")
SYSTEM_PROMPT_NAME = "advisor_system"

LANGUAGE_NAMES = {
    "tr": "Turkish",
    "en": "English",
    "ru": "Russian",
}

# Example of the JSON the provider must return
RESPONSE_SHAPE: dict[str, Any] = {
    "summary": "string",
    "topFindings": ["string"],
    "suggestedActions": ["string"],
    "warnings": ["string"],
    "savings": {
        "targetRate": 0.2,
        "monthlyTargetAmount": 0,
        "next7DaysActions": ["string"],
        "autoTransferSuggestion": "string",
    },
    "investment": {
        "profiles": [
            {"level": "low", "title": "string", "rationale": "string", "options": ["string"]},
        ],
        "guidance": ["string"],
    },
    "expenseOptimization": {
        "cutCandidates": [
            {"label": "string", "suggestedReductionPercent": 15, "alternativeAction": "string"},
        ],
        "quickWins": ["string"],
    },
    "tips": ["string"],
}


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR):
        self.prompts_dir = prompts_dir
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        """
        Load a prompt template from file.

        Args:
            prompt_name: Name of the prompt file (without .txt extension)

        Returns:
            Prompt template string
        """
        if prompt_name not in self._cache:
            prompt_path = self.prompts_dir / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            self._cache[prompt_name] = prompt_path.read_text(encoding="utf-8")

        return self._cache[prompt_name]

    def get_system_prompt(self) -> str:
        return self.load_prompt(SYSTEM_PROMPT_NAME).strip()

    def get_insight_prompt(
        self,
        language: str,
        payload: dict[str, Any],
        variant_nonce: str | None = None,
    ) -> str:
        """
        Build the user prompt for one insight.

        Args:
            language: Language code (tr, en, ru)
            payload: Anonymized snapshot, serialized as JSON into the prompt
            variant_nonce: Regeneration nonce; asks for a fresh wording

        Returns:
            Formatted prompt string
        """
        variant_line = ""
        if variant_nonce:
            variant_line = (
                f"Variation id: {variant_nonce}. Offer a fresh angle and wording compared "
                "to earlier answers for the same data.\n"
            )

        template = self.load_prompt(INSIGHT_PROMPT_NAME)
        return template.format(
            language_name=LANGUAGE_NAMES.get(language, "English"),
            response_shape=json.dumps(RESPONSE_SHAPE),
            variant_line=variant_line,
            payload=json.dumps(payload, ensure_ascii=False, sort_keys=True),
        ).strip()
