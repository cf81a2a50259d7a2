"""Prompt templates for rewriting document text for listening."""
from dataclasses import dataclass

TEXT_CHUNK_PLACEHOLDER = "{TEXT_CHUNK}"

DEFAULT_SYSTEM_PROMPT = """You are an AI assistant specializing in transforming complex PDF documents into clear, accessible, and conversational text suitable for Text-to-Speech (TTS) systems. Your primary goal is to make technical or dense information easy to understand for a listening audience.
Key Directives:
- Simplify complex sentences without losing the core meaning.
- Expand all acronyms upon their first use.
- Convert tables, charts, and diagrams into descriptive narrative summaries.
- Describe the purpose and logic of code blocks in plain English; do not read the code itself.
- Translate mathematical formulas into spoken words (e.g., "E equals m c squared").
- Maintain a logical flow and use natural transitions.
- Remove citations, footnotes, and metadata.
- Ensure the final output is well-structured for listening, with clear paragraphs and pauses."""

DEFAULT_TRANSFORM_TEMPLATE = """Based on the system instructions, transform the following text chunk into a clear, conversational, and TTS-friendly format.
--- TEXT CHUNK START ---
{TEXT_CHUNK}
--- TEXT CHUNK END ---
Your transformed output must be clean, easy to read aloud, and contain only the processed text."""


@dataclass(frozen=True)
class TransformPrompt:
    """System instruction plus a user template with a text placeholder."""

    system_message: str = DEFAULT_SYSTEM_PROMPT
    template: str = DEFAULT_TRANSFORM_TEMPLATE

    def build(self, source_text: str) -> str:
        """
        Render the user prompt for one chunk.

        Only the first placeholder is substituted, so a chunk that itself
        contains the placeholder text is passed through untouched.

        Args:
            source_text: Original text of the chunk

        Returns:
            Rendered user prompt
        """
        return self.template.replace(TEXT_CHUNK_PLACEHOLDER, source_text, 1)
