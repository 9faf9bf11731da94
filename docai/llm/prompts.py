"""Prompt templates for LLM normalization.

The system prompt and rule variables live in a YAML document in the
object store so they can change without a deploy. Templates use
``{name}`` placeholders; placeholders without a value are left as-is so
literal JSON braces survive rendering.
"""

import re
from typing import Any

import yaml
from pydantic import BaseModel, Field

from docai.errors import NotFound, ValidationError
from docai.pipeline.interfaces import ObjectStore
from docai.utils.logger import get_logger

logger = get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_SYSTEM_TEMPLATE = (
    "You are an expert at interpreting US vehicle title documents. "
    "Return only JSON that conforms to the provided schema."
)

CHUNK_USER_TEMPLATE = """\
Convert the following OCR output into the target JSON format.
STRICT RULES:
- Your response MUST strictly follow the provided JSON schema (no extra fields).
- Use labeled values (form fields, table rows, query answers) as the primary source.
- Use the surrounding lines to fill gaps and confirm ambiguous fields.
- If a field is not found, return null (or [] for arrays).
- Always return the full JSON object (all schema-required fields present).
- Avoid hallucinating values that aren't supported by the inputs.

OCR output:
{rawText}
"""

EVIDENCE_USER_TEMPLATE = """\
Convert the following OCR evidence into the target JSON format.
STRICT RULES:
- Your response MUST strictly follow the provided JSON schema (no extra fields).
- Use the retrieved evidence snippets as the authoritative source.
- Fill only fields that are explicitly supported by evidence.
- If a field is not found in the evidence, return null (or [] for arrays).
- Always return the full JSON object (all schema-required fields present).
- Do NOT hallucinate values.
- Task context: {task}

Retrieved Evidence:
{evidence}
"""

RETRIEVAL_TASK = (
    "Extract vehicle (VIN, year, make, model, body type, mileage), owner name "
    "and address, lienholders, issuing date and prior title state from a US "
    "vehicle title. If a field is not found, set it to null."
)


class PromptConfig(BaseModel):
    """Prompt document loaded from the object store."""

    system: str = DEFAULT_SYSTEM_TEMPLATE
    user: str | None = None
    version: str | None = None
    rules: dict[str, str] = Field(default_factory=dict)


def render(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders that have a value in ``variables``."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        return str(variables[name]) if name in variables else match.group(0)

    return PLACEHOLDER_RE.sub(replace, template)


def parse_prompt_config(raw: bytes | str) -> PromptConfig:
    """Parse a YAML (or JSON) prompt document.

    Rule values are converted to strings.

    Raises:
        ValidationError: If the document is not a mapping or not valid YAML.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ValidationError(f"prompt document is not valid YAML: {exc}") from exc
    if data is None:
        return PromptConfig()
    if not isinstance(data, dict):
        raise ValidationError("prompt document must be a mapping")

    rules = data.get("rules")
    return PromptConfig(
        system=str(data.get("system") or DEFAULT_SYSTEM_TEMPLATE),
        user=str(data["user"]) if data.get("user") is not None else None,
        version=str(data["version"]) if data.get("version") is not None else None,
        rules={
            str(k): "" if v is None else str(v)
            for k, v in (rules.items() if isinstance(rules, dict) else [])
        },
    )


async def load_prompt_config(
    object_store: ObjectStore,
    bucket: str,
    key: str,
    default: PromptConfig | None = None,
) -> PromptConfig:
    """Load prompts from ``bucket``/``key``.

    A missing document yields ``default``, or the built-in prompts when
    no default is given.

    Raises:
        ValidationError: If the document is not a YAML mapping.
    """
    try:
        raw = await object_store.get_bytes(bucket, key)
    except NotFound:
        logger.warning(
            "Prompt document s3://%s/%s not found, using defaults", bucket, key
        )
        return default or PromptConfig()
    config = parse_prompt_config(raw)
    logger.info("Prompt loaded from s3://%s/%s version=%s", bucket, key, config.version)
    return config
