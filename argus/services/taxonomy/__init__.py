"""Rule-based and model-driven taxonomy tagging."""

from argus.services.taxonomy.model_extractor import ModelTaxonomyExtractor
from argus.services.taxonomy.rule_projector import RuleTaxonomyProjector, derive_rule_tags
from argus.services.taxonomy.seed import seed_taxonomy

__all__ = [
    "ModelTaxonomyExtractor",
    "RuleTaxonomyProjector",
    "derive_rule_tags",
    "seed_taxonomy",
]
