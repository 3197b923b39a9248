from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from context_compress.domain.sections import WorkflowResult
from context_compress.observability.structured_log import log_json
from context_compress.services.bootstrap_compression import compress_bootstrap
from context_compress.services.error_codes import CompressError, detect_error_code
from context_compress.services.memory_consolidation import consolidate_memory
from context_compress.services.run_context import CompressContext
from context_compress.services.skill_index import build_skill_index

logger = logging.getLogger(__name__)

Workflow = Callable[[CompressContext], WorkflowResult]

WORKFLOWS: Tuple[Tuple[str, Workflow], ...] = (
    ("memory", consolidate_memory),
    ("bootstrap", compress_bootstrap),
    ("skills", build_skill_index),
)


def run_workflows(
    ctx: CompressContext,
    skip_memory: bool = False,
    skip_bootstrap: bool = False,
    skip_skills: bool = False,
) -> List[WorkflowResult]:
    """Run the enabled workflows in their fixed order.

    The workflows are independent: a failure is recorded on its result and the
    next workflow still runs.
    """
    skipped = {"memory": skip_memory, "bootstrap": skip_bootstrap, "skills": skip_skills}
    results: List[WorkflowResult] = []
    for name, workflow in WORKFLOWS:
        if skipped[name]:
            logger.debug("workflows: %s disabled by flag", name)
            continue
        try:
            result = workflow(ctx)
        except (CompressError, OSError) as exc:
            code = detect_error_code(exc)
            logger.error("workflows: %s failed [%s]: %s", name, code, exc)
            log_json(logger, "workflow_failed", level=logging.ERROR, workflow=name, code=code)
            result = WorkflowResult(name=name, summary=f"Failed: {exc}", error_code=code)
        results.append(result)
    return results
