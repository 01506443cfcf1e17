"""Module selection: which structured-extraction modules apply to a document."""

from typing import Optional

from argus.core.constants import MODULE_LABELS
from argus.prompts.system_prompts import MODULE_SELECTION_PROMPT
from argus.schemas.extraction_state import HighLevelClassification, ModuleSelection
from argus.services.inference.gateway import DocumentRef, InferenceGateway, PromptTemplate
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

UNKNOWN_HINT = "unknown"


class ModuleSelector:
    def __init__(self, gateway: InferenceGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model

    def build_template(self, hint: str) -> PromptTemplate:
        modules = "\n".join(f"- {name}: {label}" for name, label in MODULE_LABELS.items())
        return PromptTemplate(
            name="module_selection",
            instructions=MODULE_SELECTION_PROMPT.format(high_level_type=hint, modules=modules),
            model=self.model,
        )

    async def select(
        self,
        document_ref: DocumentRef,
        high_level: Optional[HighLevelClassification],
    ) -> Optional[ModuleSelection]:
        """Ask which modules apply, using the high-level type as a hint.

        Names outside the allow-list are dropped during validation.

        Returns:
            The selection, or None when the call failed. An empty selection
            is returned as-is; the caller decides it is not a completed pass.
        """
        hint = high_level.type.value if high_level else UNKNOWN_HINT
        result = await self.gateway.infer(self.build_template(hint), document_ref, ModuleSelection)
        if not result.ok:
            LOGGER.warning(
                "Module selection unavailable",
                extra={"document_id": document_ref.document_id, "stage": "module_selection", "reason": result.reason},
            )
            return None

        selection = result.data.model_copy(update={"hint": hint})
        LOGGER.info(
            "Modules selected",
            extra={"document_id": document_ref.document_id, "hint": hint, "modules": selection.modules},
        )
        return selection
