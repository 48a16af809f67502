"""
Voice Notes - LLM Note Agent

Cleans up spoken transcripts and writes daily reviews using the
DashScope OpenAI-compatible chat API.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"


@dataclass
class OptimizedText:
    """Transcript after filler-word removal."""

    text: str
    original_text: str


@dataclass
class DailyReview:
    """Structured review of one day's notes."""

    summary: str = ""
    key_points: list[str] = field(default_factory=list)
    todos: list[str] = field(default_factory=list)
    raw_response: str = ""


class NoteTaker:
    """LLM-powered transcript cleanup and daily review generator."""

    REMOVE_FILLER_PROMPT = """You are an editor who turns spoken transcripts into clean written text.

Rules:
1. Remove filler words, false starts, repetitions and verbal tics (um, uh, like, you know, 嗯, 那个, 就是说).
2. Fix punctuation and split run-on sentences.
3. Keep the speaker's meaning, facts, names and numbers exactly.
4. Do not add information, commentary or headings.
5. Reply in the same language as the input.

Return only the optimized text."""

    DAILY_REVIEW_PROMPT = """You review a person's voice notes from a single day.

Given the notes, produce:
1. **Summary**: 2-4 sentences on what the day was about
2. **Key Points**: Important ideas or information (bullet points)
3. **Todos**: Concrete follow-up tasks mentioned in the notes

Format your response EXACTLY like this:
## Summary
[Your summary here]

## Key Points
- [Point 1]

## Todos
- [ ] [Task 1]

If a section has no items, write "None" instead of leaving it empty.
Reply in the same language as the notes."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = "qwen-plus",
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the note taker.

        Args:
            api_key: DashScope API key.
            base_url: OpenAI-compatible endpoint. Defaults to DashScope compatible mode.
            model: Model name to use.
            client: Optional preconfigured OpenAI client.
        """
        self.api_key = api_key
        self.base_url = base_url or DEFAULT_BASE_URL
        self.model = model

        self._client: Optional[OpenAI] = client

    def _get_client(self) -> OpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=30.0)
        return self._client

    def optimize_text(self, text: str) -> OptimizedText:
        """
        Remove filler words from a transcript.

        Args:
            text: Raw transcript text.

        Returns:
            OptimizedText with the cleaned text and the original.
        """
        client = self._get_client()
        logger.info(f"Optimizing text of length {len(text)}")

        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.REMOVE_FILLER_PROMPT},
                {"role": "user", "content": f"Please optimize the following text:\n\n{text}"},
            ],
            temperature=0.3,
            top_p=0.8,
        )

        content = response.choices[0].message.content or ""
        return OptimizedText(text=content.strip(), original_text=text)

    def daily_review(self, notes: Sequence[str], day: dt.date) -> DailyReview:
        """
        Summarize one day's notes.

        Args:
            notes: Note contents, oldest first.
            day: The day being reviewed.

        Returns:
            DailyReview parsed from the model response.
        """
        client = self._get_client()

        numbered = "\n\n".join(f"Note {i}:\n{content}" for i, content in enumerate(notes, 1))
        user_message = f"Voice notes from {day.isoformat()}:\n\n{numbered}"

        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.DAILY_REVIEW_PROMPT},
                {"role": "user", "content": user_message},
            ],
            temperature=0.3,
            max_tokens=2000,
        )

        raw_response = response.choices[0].message.content or ""
        return self._parse_review(raw_response)

    def _parse_review(self, response: str) -> DailyReview:
        """Parse LLM response into a structured DailyReview."""
        review = DailyReview(raw_response=response)

        sections = {
            "summary": [],
            "key_points": [],
            "todos": [],
        }

        current_section = None

        for line in response.strip().split("\n"):
            line_lower = line.lower().strip()

            # Detect section headers
            if line_lower.startswith("#") and "summary" in line_lower:
                current_section = "summary"
            elif line_lower.startswith("#") and "key point" in line_lower:
                current_section = "key_points"
            elif line_lower.startswith("#") and ("todo" in line_lower or "to-do" in line_lower):
                current_section = "todos"
            elif current_section and line.strip():
                # Clean up bullet points and checkboxes
                clean_line = line.strip()
                if clean_line.startswith(("-", "*")):
                    clean_line = clean_line[1:].strip()
                if clean_line.startswith(("[ ]", "[x]", "[X]")):
                    clean_line = clean_line[3:].strip()

                if clean_line and clean_line.lower() != "none":
                    sections[current_section].append(clean_line)

        review.summary = " ".join(sections["summary"])
        review.key_points = sections["key_points"]
        review.todos = sections["todos"]

        return review
