"""User-configurable settings record and its defaults."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cogniflow.exceptions import ConfigurationError
from cogniflow.prompts import (
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TRANSFORM_TEMPLATE,
    TEXT_CHUNK_PLACEHOLDER,
    TransformPrompt,
)


class ModelInfo(BaseModel):
    """Metadata for a selectable completion model."""

    name: str
    display_name: str
    description: str


CEREBRAS_MODELS: List[ModelInfo] = [
    ModelInfo(name="zai-glm-4.6", display_name="Zai GLM 4.6 (357B)", description="Tier 1: Frontier Intelligence"),
    ModelInfo(name="qwen-3-235b-a22b-instruct-2507", display_name="Qwen-3 235B", description="Tier 2: Heavy Reasoning"),
    ModelInfo(name="gpt-oss-120b", display_name="GPT-OSS (120B)", description="Tier 3: General Purpose"),
    ModelInfo(name="llama-3.3-70b", display_name="Llama 3.3 (70B)", description="Tier 4: Balanced Workhorse"),
    ModelInfo(name="qwen-3-32b", display_name="Qwen-3 (32B)", description="Tier 5: Fast Inference"),
    ModelInfo(name="llama3.1-8b", display_name="Llama 3.1 (8B)", description="Tier 6: Ultra-Fast/Instant"),
]


class AppSettings(BaseModel):
    """Settings record persisted under a single key."""

    # API & model configuration
    api_key: str = ""
    backup_api_key: str = ""
    model_priority: List[str] = Field(
        default_factory=lambda: [
            "zai-glm-4.6",
            "qwen-3-235b-a22b-instruct-2507",
            "llama-3.3-70b",
        ]
    )

    # Processing & concurrency
    turbo_mode: bool = True
    parallel_chunks: int = Field(default=5, ge=1)  # Safe limit for the free tier
    batch_size: int = Field(default=12000, gt=0)  # Tokens per chunk (estimated)
    overlap_size: int = Field(default=500, ge=0)  # Tokens shared by consecutive chunks

    # Reliability
    auto_retry: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=2000, ge=0)  # ms, base of the exponential backoff
    rate_limit_delay: int = Field(default=1000, ge=0)  # ms, wait after an HTTP 429
    api_timeout: float = Field(default=120.0, gt=0)  # seconds per completion request

    # Generation parameters
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    max_output_tokens: int = Field(default=32768, gt=0)  # Cerebras free tier limit

    # Prompts
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    text_transform_prompt: str = DEFAULT_TRANSFORM_TEMPLATE

    # PDF output styling
    pdf_font_size: float = Field(default=12, gt=0)
    pdf_line_height: float = Field(default=1.5, gt=0)
    pdf_margin: float = Field(default=25, ge=0)  # pt

    @field_validator("model_priority")
    @classmethod
    def check_model_priority(cls, v: List[str]) -> List[str]:
        cleaned = [m.strip() for m in v if m and m.strip()]
        if not cleaned:
            raise ValueError("Model priority list cannot be empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("Model priority list contains duplicate entries")
        return cleaned

    @field_validator("text_transform_prompt")
    @classmethod
    def check_placeholder(cls, v: str) -> str:
        if TEXT_CHUNK_PLACEHOLDER not in v:
            raise ValueError(f"Transform prompt must contain the {TEXT_CHUNK_PLACEHOLDER} placeholder")
        return v

    @model_validator(mode="after")
    def check_overlap(self) -> "AppSettings":
        if self.overlap_size >= self.batch_size:
            raise ValueError(
                f"overlap_size ({self.overlap_size}) must be smaller than batch_size ({self.batch_size})"
            )
        return self

    @property
    def concurrency_limit(self) -> int:
        """Chunks allowed in flight: one unless turbo mode is on."""
        return self.parallel_chunks if self.turbo_mode else 1

    @property
    def effective_max_retries(self) -> int:
        return self.max_retries if self.auto_retry else 0

    def candidate_credentials(self) -> List[str]:
        """Credentials in the order they should be tried."""
        return [self.api_key, self.backup_api_key]

    def transform_prompt(self) -> TransformPrompt:
        return TransformPrompt(system_message=self.system_prompt, template=self.text_transform_prompt)


def resolve_credential(candidates: List[Optional[str]]) -> str:
    """
    Pick the first usable credential from an ordered candidate list.

    Args:
        candidates: Credentials in priority order (primary first)

    Returns:
        The first non-blank credential

    Raises:
        ConfigurationError: If every candidate is blank
    """
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    raise ConfigurationError("Cerebras API key is not configured.")


def merge_settings(defaults: AppSettings, stored: Optional[Dict[str, Any]]) -> AppSettings:
    """
    Overlay a stored settings record on the defaults.

    Fields missing from an older stored record keep their default value.

    Raises:
        ConfigurationError: If the merged record does not validate
    """
    merged = defaults.model_dump()
    if stored:
        merged.update({k: v for k, v in stored.items() if k in AppSettings.model_fields})
    try:
        return AppSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
