"""Per-module structured extraction.

Runs one inference call per selected module, concurrently across modules.
All calls share the gateway's process-wide limiter, so the number of modules
in flight never exceeds the global cap no matter how many documents are being
processed. Each module succeeds or fails on its own.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from argus.core.exceptions import UnknownModuleError
from argus.prompts.system_prompts import MODULE_EXTRACTION_PROMPTS
from argus.schemas.extraction_state import MODULE_PAYLOAD_MODELS, StateModel
from argus.services.inference.gateway import DocumentRef, InferenceGateway, PromptTemplate
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ModuleExtractionResult:
    """Outcome of one extraction pass over a set of modules.

    Attributes:
        payloads: Validated payload per module that succeeded
        failed: Module names whose call failed or returned malformed output
        processing_time_ms: Wall time for the whole batch
    """
    payloads: Dict[str, StateModel] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def succeeded(self) -> List[str]:
        return list(self.payloads)


class ModuleExtractionOrchestrator:
    def __init__(self, gateway: InferenceGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model

    def template_for(self, module_name: str) -> PromptTemplate:
        try:
            instructions = MODULE_EXTRACTION_PROMPTS[module_name]
        except KeyError as e:
            raise UnknownModuleError(f"Unknown extraction module: {module_name}") from e
        return PromptTemplate(name=f"module:{module_name}", instructions=instructions, model=self.model)

    async def extract_module(self, document_ref: DocumentRef, module_name: str) -> Optional[StateModel]:
        """Extract a single module.

        Raises:
            UnknownModuleError: If ``module_name`` is not in the allow-list
        """
        template = self.template_for(module_name)
        result = await self.gateway.infer(template, document_ref, MODULE_PAYLOAD_MODELS[module_name])
        if not result.ok:
            LOGGER.warning(
                "Module extraction failed",
                extra={
                    "document_id": document_ref.document_id,
                    "stage": "module_extraction",
                    "module": module_name,
                    "reason": result.reason,
                },
            )
            return None
        return result.data

    async def extract_modules(self, document_ref: DocumentRef, module_names: List[str]) -> ModuleExtractionResult:
        """Extract all ``module_names`` concurrently.

        Args:
            document_ref: Document to extract from
            module_names: Module names, already filtered to the allow-list

        Returns:
            ModuleExtractionResult with payloads for the modules that succeeded
        """
        started = time.monotonic()
        outcome = ModuleExtractionResult()
        if not module_names:
            return outcome

        results = await asyncio.gather(
            *(self.extract_module(document_ref, name) for name in module_names),
            return_exceptions=True,
        )

        for name, result in zip(module_names, results):
            if isinstance(result, BaseException):
                LOGGER.error(
                    "Module extraction raised",
                    exc_info=result,
                    extra={"document_id": document_ref.document_id, "module": name},
                )
                outcome.failed.append(name)
            elif result is None:
                outcome.failed.append(name)
            else:
                outcome.payloads[name] = result

        outcome.processing_time_ms = int((time.monotonic() - started) * 1000)
        LOGGER.info(
            "Module extraction complete",
            extra={
                "document_id": document_ref.document_id,
                "succeeded": outcome.succeeded,
                "failed": outcome.failed,
                "processing_time_ms": outcome.processing_time_ms,
            },
        )
        return outcome
