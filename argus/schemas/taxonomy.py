"""Shape of the model-driven taxonomy extraction response."""

from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, Field, field_validator

from argus.schemas.extraction_state import StateModel
from argus.schemas.fields import LenientText, TextList, object_list


def _object_or_none(value: Any) -> Any:
    return value if isinstance(value, dict) else None


class ProposedConcept(StateModel):
    label: LenientText = None
    synonyms: TextList = Field(default_factory=list)


OptionalProposal = Annotated[Optional[ProposedConcept], BeforeValidator(_object_or_none)]


class SubkeywordMatch(StateModel):
    subkeyword_id: LenientText = None
    new_subkeyword: OptionalProposal = None
    evidence: LenientText = None


class KeywordMatch(StateModel):
    keyword_id: LenientText = None
    new_keyword: OptionalProposal = None
    evidence: LenientText = None
    subkeyword_matches: Annotated[list[SubkeywordMatch], BeforeValidator(object_list)] = Field(default_factory=list)


class TaxonomyExtraction(StateModel):
    """A category's matches; ``category_id`` must echo the requested category."""
    category_id: str
    keyword_matches: Annotated[list[KeywordMatch], BeforeValidator(object_list)] = Field(default_factory=list)

    @field_validator("category_id", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("category_id must be a non-empty string")
        return value.strip().lower()
