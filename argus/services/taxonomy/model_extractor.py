"""Model-driven taxonomy extraction.

For each category the model sees the category's current vocabulary and
either matches existing keyword/subkeyword IDs or proposes new concepts.
Proposals get namespaced IDs from :mod:`argus.services.taxonomy.ids` and are
stored with status ``review``. Synonyms that already belong to another
keyword (anywhere in the taxonomy) or to a sibling subkeyword are dropped
from the proposal before it is stored; existing concepts are never modified.

Categories run one after another for a document, never in parallel.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.exceptions import UnknownCategoryError
from argus.database.models import TaxonomyCategory, TaxonomyKeyword, TaxonomySubkeyword
from argus.prompts.system_prompts import TAXONOMY_EXTRACTION_PROMPT
from argus.repositories.taxonomy_repository import STATUS_REVIEW, TaxonomyRepository
from argus.schemas.taxonomy import KeywordMatch, ProposedConcept, TaxonomyExtraction
from argus.services.inference.gateway import DocumentRef, InferenceGateway, PromptTemplate
from argus.services.taxonomy import ids
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

SOURCE_MODEL = "model"

STATUS_TAGGED = "tagged"
STATUS_FAILED = "failed"
STATUS_DISCARDED = "discarded"


@dataclass
class CategoryOutcome:
    category_id: str
    status: str
    terms: int = 0
    created_keywords: List[str] = field(default_factory=list)
    created_subkeywords: List[str] = field(default_factory=list)


def render_vocabulary(
    keywords: Sequence[TaxonomyKeyword],
    subkeywords: Dict[str, List[TaxonomySubkeyword]],
) -> str:
    if not keywords:
        return "(no keywords yet)"
    lines = []
    for keyword in keywords:
        lines.append(f"{keyword.id} | {keyword.label} | {', '.join(keyword.synonyms_json or [])}")
        for subkeyword in subkeywords.get(keyword.id, []):
            lines.append(f"    {subkeyword.id} | {subkeyword.label} | {', '.join(subkeyword.synonyms_json or [])}")
    return "\n".join(lines)


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for value in values:
        key = value.casefold()
        if key not in seen:
            seen.add(key)
            unique.append(value)
    return unique


class ModelTaxonomyExtractor:
    def __init__(self, gateway: InferenceGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model

    async def extract_categories(
        self,
        session_factory: Callable[[], AsyncSession],
        document_ref: DocumentRef,
        document_id: UUID,
        category_ids: Sequence[str],
    ) -> List[CategoryOutcome]:
        """Run every category in order, each in its own transaction.

        A failure in one category is logged and does not stop the others.
        """
        outcomes = []
        for category_id in category_ids:
            try:
                async with session_factory() as session:
                    outcome = await self.extract_category(session, document_ref, document_id, category_id)
                    await session.commit()
            except Exception as e:
                LOGGER.error(
                    "Model taxonomy extraction failed for category",
                    exc_info=True,
                    extra={
                        "document_id": str(document_id),
                        "stage": "model_taxonomy",
                        "category_id": category_id,
                        "error": str(e),
                    },
                )
                outcome = CategoryOutcome(category_id, STATUS_FAILED)
            outcomes.append(outcome)
        return outcomes

    async def extract_category(
        self,
        session: AsyncSession,
        document_ref: DocumentRef,
        document_id: UUID,
        category_id: str,
    ) -> CategoryOutcome:
        """Tag one document for one category. The caller commits.

        Raises:
            UnknownCategoryError: If the category is not seeded
        """
        log_context = {"document_id": str(document_id), "stage": "model_taxonomy", "category_id": category_id}
        repository = TaxonomyRepository(session)

        category = await session.get(TaxonomyCategory, category_id)
        if category is None:
            raise UnknownCategoryError(f"Unknown taxonomy category: {category_id}")

        keywords = await repository.list_keywords(category_id)
        subkeywords = await repository.list_subkeywords([k.id for k in keywords])

        template = PromptTemplate(
            name=f"taxonomy:{category_id}",
            instructions=TAXONOMY_EXTRACTION_PROMPT.format(
                category_label=category.label,
                category_id=category_id,
                vocabulary=render_vocabulary(keywords, subkeywords),
            ),
            model=self.model,
        )
        result = await self.gateway.infer(template, document_ref, TaxonomyExtraction)
        if not result.ok:
            LOGGER.warning("Model taxonomy output unusable, category skipped", extra={**log_context, "reason": result.reason})
            return CategoryOutcome(category_id, STATUS_FAILED)

        extraction: TaxonomyExtraction = result.data
        if extraction.category_id != category_id:
            LOGGER.warning(
                "Model answered for a different category, response discarded",
                extra={**log_context, "returned_category_id": extraction.category_id},
            )
            return CategoryOutcome(category_id, STATUS_DISCARDED)

        await repository.delete_terms(document_id, [category_id], SOURCE_MODEL)

        outcome = CategoryOutcome(category_id, STATUS_TAGGED)
        known_keywords: Dict[str, TaxonomyKeyword] = {k.id: k for k in keywords}
        synonym_owners = await repository.keyword_synonym_owners()

        for match in extraction.keyword_matches:
            keyword_id = await self._resolve_keyword(
                repository, category_id, match, known_keywords, synonym_owners, outcome, log_context
            )
            if keyword_id is None:
                continue

            if await repository.insert_term_if_absent(document_id, category_id, keyword_id, None, SOURCE_MODEL):
                outcome.terms += 1
            if match.evidence:
                await repository.add_evidence(document_id, category_id, keyword_id, None, SOURCE_MODEL, match.evidence)

            siblings: Dict[str, TaxonomySubkeyword] = {s.id: s for s in subkeywords.get(keyword_id, [])}
            for sub_match in match.subkeyword_matches:
                subkeyword_id = await self._resolve_subkeyword(
                    repository, keyword_id, sub_match.subkeyword_id, sub_match.new_subkeyword, siblings, outcome, log_context
                )
                if subkeyword_id is None:
                    continue
                if await repository.insert_term_if_absent(document_id, category_id, keyword_id, subkeyword_id, SOURCE_MODEL):
                    outcome.terms += 1
                if sub_match.evidence:
                    await repository.add_evidence(
                        document_id, category_id, keyword_id, subkeyword_id, SOURCE_MODEL, sub_match.evidence
                    )

        LOGGER.info(
            "Model taxonomy applied",
            extra={
                **log_context,
                "terms": outcome.terms,
                "created_keywords": outcome.created_keywords,
                "created_subkeywords": outcome.created_subkeywords,
            },
        )
        return outcome

    async def _resolve_keyword(
        self,
        repository: TaxonomyRepository,
        category_id: str,
        match: KeywordMatch,
        known_keywords: Dict[str, TaxonomyKeyword],
        synonym_owners: Dict[str, str],
        outcome: CategoryOutcome,
        log_context: dict,
    ) -> Optional[str]:
        if match.keyword_id and match.keyword_id in known_keywords:
            return match.keyword_id

        proposal = match.new_keyword
        if proposal is None:
            LOGGER.warning("Model matched an unknown keyword, ignored", extra={**log_context, "keyword_id": match.keyword_id})
            return None

        keyword_id = ids.keyword_id(category_id, proposal.label)
        if keyword_id is None:
            LOGGER.warning("Proposed keyword label has no usable slug, rejected", extra={**log_context, "label": proposal.label})
            return None
        if keyword_id in known_keywords:
            return keyword_id

        synonyms = self._disjoint_synonyms(proposal, synonym_owners, keyword_id, log_context)
        created = await repository.insert_keyword_if_absent(
            keyword_id=keyword_id,
            category_id=category_id,
            label=proposal.label,
            synonyms=synonyms,
            status=STATUS_REVIEW,
        )
        if created:
            outcome.created_keywords.append(keyword_id)
            for synonym in synonyms:
                synonym_owners.setdefault(synonym.casefold(), keyword_id)

        stored = await repository.get_keyword(keyword_id)
        if stored is None or stored.category_id != category_id:
            LOGGER.warning("Proposed keyword collides with another category, rejected", extra={**log_context, "keyword_id": keyword_id})
            return None
        known_keywords[keyword_id] = stored
        return keyword_id

    async def _resolve_subkeyword(
        self,
        repository: TaxonomyRepository,
        keyword_id: str,
        subkeyword_id: Optional[str],
        proposal: Optional[ProposedConcept],
        siblings: Dict[str, TaxonomySubkeyword],
        outcome: CategoryOutcome,
        log_context: dict,
    ) -> Optional[str]:
        if subkeyword_id and subkeyword_id in siblings:
            return subkeyword_id

        if proposal is None:
            LOGGER.warning("Model matched an unknown subkeyword, ignored", extra={**log_context, "subkeyword_id": subkeyword_id})
            return None

        new_id = ids.subkeyword_id(keyword_id, proposal.label)
        if new_id is None:
            LOGGER.warning("Proposed subkeyword label has no usable slug, rejected", extra={**log_context, "label": proposal.label})
            return None
        if new_id in siblings:
            return new_id

        sibling_synonyms = {
            synonym.casefold(): sibling.id
            for sibling in siblings.values()
            for synonym in (sibling.synonyms_json or [])
        }
        synonyms = self._disjoint_synonyms(proposal, sibling_synonyms, new_id, log_context)
        created = await repository.insert_subkeyword_if_absent(
            subkeyword_id=new_id,
            keyword_id=keyword_id,
            label=proposal.label,
            synonyms=synonyms,
            status=STATUS_REVIEW,
        )
        if created:
            outcome.created_subkeywords.append(new_id)

        stored = await repository.get_subkeyword(new_id)
        if stored is None:
            return None
        siblings[new_id] = stored
        return new_id

    @staticmethod
    def _disjoint_synonyms(
        proposal: ProposedConcept,
        owners: Dict[str, str],
        concept_id: str,
        log_context: dict,
    ) -> List[str]:
        """Proposed synonyms (label first) minus those another concept already owns."""
        kept = []
        for synonym in _dedupe([proposal.label, *proposal.synonyms]):
            owner = owners.get(synonym.casefold())
            if owner is not None and owner != concept_id:
                LOGGER.info(
                    "Dropped synonym already owned by another concept",
                    extra={**log_context, "concept_id": concept_id, "synonym": synonym, "owner": owner},
                )
                continue
            kept.append(synonym)
        return kept
