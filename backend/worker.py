# backend/worker.py

import asyncio
import logging
from typing import Any, Dict, Optional

from config.settings import Settings

from .context import ServiceContext, build_context
from .orchestrator import GenerationOrchestrator
from .utils import configure_logging

logger = logging.getLogger(__name__)


async def process_job(orchestrator: GenerationOrchestrator, job_data: Dict[str, Any]) -> None:
    generation_id = job_data.get("generation_id")
    chat_id = job_data.get("chat_id")
    if not generation_id or not chat_id:
        logger.error("[Worker] Job missing generation_id/chat_id: %s", list(job_data.keys()))
        return

    logger.info("[Worker] Processing generation %s", generation_id)
    generation = await orchestrator.resolve(
        generation_id, chat_id=chat_id, images=job_data.get("images")
    )
    if generation is not None:
        logger.info("[Worker] Generation %s -> %s", generation_id, generation.status)


async def worker_loop(
    ctx: ServiceContext,
    worker_id: int,
    stop_event: Optional[asyncio.Event] = None,
    pop_timeout: float = 5,
) -> None:
    orchestrator = GenerationOrchestrator(ctx)
    logger.info("[Worker %d] Started", worker_id)

    while stop_event is None or not stop_event.is_set():
        job_data = await ctx.jobs.pop(timeout=pop_timeout)
        if job_data is None:
            continue
        try:
            await process_job(orchestrator, job_data)
        except Exception:
            # Lỗi hạ tầng (Redis, ...) không được làm chết worker
            logger.exception(
                "[Worker %d] Unhandled error for job %s", worker_id, job_data.get("generation_id")
            )

    logger.info("[Worker %d] Stopped", worker_id)


async def main(settings: Optional[Settings] = None) -> None:
    settings = settings or Settings.from_env()
    configure_logging(settings.LOG_LEVEL)

    ctx = build_context(settings)
    # Mỗi worker = 1 job đồng thời
    tasks = [
        asyncio.create_task(worker_loop(ctx, i)) for i in range(settings.WORKER_CONCURRENCY)
    ]
    try:
        await asyncio.gather(*tasks)
    finally:
        await ctx.close()


if __name__ == "__main__":
    asyncio.run(main())
