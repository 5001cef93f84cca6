"""
Generated-text feature catalogue.

Each feature fixes its instruction prompt, sampling parameters, cache slot,
input requirements and the way generator output is turned into content.
Classification-like features run colder than free-form text.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import UpstreamGenerationError, ValidationError
from issue_ai_guard.storage.models import ArtifactSlot

Message = Dict[str, str]

# Duplicate detection only offers the most recent issues to the model
MAX_DUPLICATE_CANDIDATES = 20
MIN_DUPLICATE_SIMILARITY = 50
MAX_RECOMMENDATIONS = 3


class Feature(Enum):
    """Generated-text features offered on issues and projects."""
    SUMMARY = "summary"
    SUGGESTION = "suggestion"
    LABEL_RECOMMENDATION = "label_recommendation"
    DUPLICATE_DETECTION = "duplicate_detection"
    COMMENT_SUMMARY = "comment_summary"


@dataclass(frozen=True)
class FeatureSpec:
    """Fixed generation parameters for one feature."""
    feature: Feature
    system_prompt: str
    temperature: float
    max_tokens: int
    slot: Optional[ArtifactSlot]
    build_prompt: Callable[[Mapping[str, Any]], str]
    parse: Callable[[str, Mapping[str, Any]], Any]
    structured: bool = False

    @property
    def caches(self) -> bool:
        return self.slot is not None

    def build_messages(self, inputs: Mapping[str, Any]) -> List[Message]:
        """Role-tagged messages: fixed instruction, then the caller's inputs."""
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.build_prompt(inputs)},
        ]

    def serialize(self, content: Any) -> str:
        """Encode parsed content for the cache slot."""
        if self.structured:
            return json.dumps(content, ensure_ascii=False)
        return content

    def deserialize(self, raw: str) -> Any:
        """Decode a cache slot back into content."""
        if self.structured:
            return json.loads(raw)
        return raw


def validate_inputs(
    feature: Feature,
    inputs: Mapping[str, Any],
    min_input_length: int,
    min_items_for_digest: int
) -> None:
    """Check the caller's inputs are well-formed and rich enough to be worth a generation.

    Raises:
        ValidationError: If the inputs fall short for this feature
    """
    if not isinstance(inputs, Mapping):
        raise ValidationError("Inputs must be an object")

    if feature in (Feature.SUMMARY, Feature.SUGGESTION):
        description = inputs.get("description") or ""
        if not isinstance(description, str):
            raise ValidationError("Description must be text")
        if len(description) <= min_input_length:
            raise ValidationError(
                f"Description must be longer than {min_input_length} characters for AI features"
            )
    elif feature == Feature.COMMENT_SUMMARY:
        comments = _require_items(inputs, "comments", ("content",))
        if len(comments) < min_items_for_digest:
            raise ValidationError(
                f"At least {min_items_for_digest} comments are required for summarization"
            )
    elif feature == Feature.LABEL_RECOMMENDATION:
        _require_title(inputs)
        if not _require_items(inputs, "labels", ("id", "name")):
            raise ValidationError("No labels available in this project")
    elif feature == Feature.DUPLICATE_DETECTION:
        _require_title(inputs)
        if not _require_items(inputs, "issues", ("id", "title")):
            raise ValidationError("No existing issues to compare")


def _require_items(
    inputs: Mapping[str, Any],
    key: str,
    fields: Tuple[str, ...]
) -> List[Mapping[str, Any]]:
    """Return the list under `key`, checking each entry carries text `fields`."""
    items = inputs.get(key) or []
    if not isinstance(items, list):
        raise ValidationError(f"'{key}' must be a list")
    for position, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ValidationError(f"'{key}' entry {position} must be an object")
        for field in fields:
            if not isinstance(item.get(field), str):
                raise ValidationError(f"'{key}' entry {position} is missing '{field}'")
    return items


def _require_title(inputs: Mapping[str, Any]) -> None:
    title = inputs.get("title")
    if not title or not str(title).strip():
        raise ValidationError("Title is required")


def _issue_prompt(action: str) -> Callable[[Mapping[str, Any]], str]:
    def build(inputs: Mapping[str, Any]) -> str:
        return f"{action}:\n\nTitle: {inputs.get('title', '')}\n\nDescription: {inputs['description']}"
    return build


def _labels_prompt(inputs: Mapping[str, Any]) -> str:
    label_names = ", ".join(label["name"] for label in inputs["labels"])
    description = inputs.get("description") or "No description provided"
    return (
        f"Available labels: {label_names}\n\n"
        f"Issue Title: {inputs['title']}\n\n"
        f"Issue Description: {description}"
    )


def _duplicates_prompt(inputs: Mapping[str, Any]) -> str:
    candidates = inputs["issues"][:MAX_DUPLICATE_CANDIDATES]
    issue_list = "\n".join(
        f"{index}. {issue['title']}" for index, issue in enumerate(candidates, start=1)
    )
    return f"New issue title: {inputs['title']}\n\nExisting issues:\n{issue_list}"


def _format_day(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    return str(value)[:10]


def _comments_prompt(inputs: Mapping[str, Any]) -> str:
    comment_text = "\n\n".join(
        f"{comment.get('author') or 'Unknown'} ({_format_day(comment.get('created_at'))}): "
        f"{comment['content']}"
        for comment in inputs["comments"]
    )
    return f"Issue: {inputs.get('title', '')}\n\nDiscussion:\n{comment_text}"


def _parse_text(content: str, inputs: Mapping[str, Any]) -> str:
    text = (content or "").strip()
    if not text:
        raise UpstreamGenerationError("Generator returned an empty response")
    return text


def _extract_json(content: str, pattern: str) -> Any:
    match = re.search(pattern, content or "", re.DOTALL)
    if not match:
        raise UpstreamGenerationError(f"Generator response is not JSON: {content!r}")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise UpstreamGenerationError(f"Generator returned malformed JSON: {e}") from e


def _parse_labels(content: str, inputs: Mapping[str, Any]) -> List[Dict[str, str]]:
    names = _extract_json(content, r"\[.*\]")
    if not isinstance(names, list):
        raise UpstreamGenerationError("Label recommendation must be a JSON array")
    wanted = {str(name).lower() for name in names}
    matched = [
        {"id": label["id"], "name": label["name"]}
        for label in inputs["labels"]
        if label["name"].lower() in wanted
    ]
    return matched[:MAX_RECOMMENDATIONS]


def _parse_duplicates(content: str, inputs: Mapping[str, Any]) -> List[Dict[str, Any]]:
    similarities = _extract_json(content, r"\[.*\]")
    if not isinstance(similarities, list):
        raise UpstreamGenerationError("Duplicate detection must be a JSON array")

    candidates = inputs["issues"][:MAX_DUPLICATE_CANDIDATES]
    duplicates = []
    for item in similarities:
        if not isinstance(item, dict):
            raise UpstreamGenerationError(f"Unexpected duplicate entry: {item!r}")
        index = item.get("index")
        similarity = item.get("similarity")
        if not isinstance(index, int) or not isinstance(similarity, (int, float)):
            raise UpstreamGenerationError(f"Unexpected duplicate entry: {item!r}")
        # Indexes are 1-based; the model occasionally points past the list
        if similarity < MIN_DUPLICATE_SIMILARITY or not 1 <= index <= len(candidates):
            continue
        issue = candidates[index - 1]
        duplicates.append({"id": issue["id"], "title": issue["title"], "similarity": similarity})
    return duplicates[:MAX_RECOMMENDATIONS]


def _parse_comment_summary(content: str, inputs: Mapping[str, Any]) -> Dict[str, Any]:
    text = _parse_text(content, inputs)
    match = re.search(r"\{[\s\S]*\}", text)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("summary"), str):
            decisions = data.get("keyDecisions") or []
            return {
                "summary": data["summary"],
                "keyDecisions": [str(decision) for decision in decisions],
            }
    # Plain prose is still a usable digest
    return {"summary": text, "keyDecisions": []}


FEATURE_SPECS: Dict[Feature, FeatureSpec] = {
    Feature.SUMMARY: FeatureSpec(
        feature=Feature.SUMMARY,
        system_prompt=(
            "You are a helpful assistant that summarizes technical issues. "
            "Provide concise 2-4 sentence summaries that capture the key points."
        ),
        temperature=0.5,
        max_tokens=200,
        slot=ArtifactSlot.SUMMARY,
        build_prompt=_issue_prompt("Please summarize this issue"),
        parse=_parse_text,
    ),
    Feature.SUGGESTION: FeatureSpec(
        feature=Feature.SUGGESTION,
        system_prompt=(
            "You are a helpful technical assistant. Provide practical approaches "
            "to solve the given issue. Be specific and actionable."
        ),
        temperature=0.7,
        max_tokens=500,
        slot=ArtifactSlot.SUGGESTION,
        build_prompt=_issue_prompt("Suggest an approach to solve this issue"),
        parse=_parse_text,
    ),
    Feature.LABEL_RECOMMENDATION: FeatureSpec(
        feature=Feature.LABEL_RECOMMENDATION,
        system_prompt=(
            "You are a helpful assistant that categorizes issues. Based on the issue "
            "content, recommend the most relevant labels from the available options. "
            "Return ONLY a JSON array of label names (max 3), nothing else."
        ),
        temperature=0.3,
        max_tokens=100,
        slot=None,
        build_prompt=_labels_prompt,
        parse=_parse_labels,
    ),
    Feature.DUPLICATE_DETECTION: FeatureSpec(
        feature=Feature.DUPLICATE_DETECTION,
        system_prompt=(
            "You are a helpful assistant that detects duplicate or similar issues. "
            "Given a new issue title and a list of existing issues, identify the most "
            "similar ones. Return ONLY a JSON array of objects with \"index\" (1-based) "
            "and \"similarity\" (0-100) properties, max 3 items. Return [] if no similar "
            "issues found."
        ),
        temperature=0.3,
        max_tokens=200,
        slot=None,
        build_prompt=_duplicates_prompt,
        parse=_parse_duplicates,
    ),
    Feature.COMMENT_SUMMARY: FeatureSpec(
        feature=Feature.COMMENT_SUMMARY,
        system_prompt=(
            "You are a helpful assistant that summarizes technical discussions. "
            "Provide a 3-5 sentence summary of the discussion and identify any key "
            "decisions made. Return a JSON object with \"summary\" (string) and "
            "\"keyDecisions\" (array of strings)."
        ),
        temperature=0.5,
        max_tokens=400,
        slot=ArtifactSlot.COMMENT_SUMMARY,
        build_prompt=_comments_prompt,
        parse=_parse_comment_summary,
        structured=True,
    ),
}


def get_feature_spec(feature: Feature) -> FeatureSpec:
    """Get the generation parameters for a feature.

    Raises:
        ValueError: If feature is not supported
    """
    if feature not in FEATURE_SPECS:
        raise ValueError(f"Unsupported feature: {feature}")
    return FEATURE_SPECS[feature]
