"""
Dry-run planner: opens each URL in job_url.txt, discovers its fields and logs
the deterministic fill plan for one profile, without filling anything.

    python main.py profile.json [job_url.txt]
"""

import asyncio
import json
import logging
import sys
import uuid

from autofill.browser_manager import SessionRegistry
from autofill.field_discovery import collect_page_fields
from autofill.label_aliases import build_alias_index
from autofill.logging import get_logger
from autofill.models import BaseInfo
from autofill.planners import PlanningContext, build_fill_plan, default_planners
from autofill.value_map import build_autofill_value_map

get_logger()
logger = logging.getLogger(__name__)


def read_urls(path: str) -> list[str]:
    with open(path, "r") as f:
        return [line.strip() for line in f if line.strip()]


async def plan_url(registry: SessionRegistry, idx: int, url: str, total: int, base_info: BaseInfo):
    logger.info(url)
    logger.info(f"Processing {idx + 1} of {total}")
    session_id = str(uuid.uuid4())
    try:
        page = await registry.start_session(session_id, url)
        fields = await collect_page_fields(page)
        context = PlanningContext(
            fields=fields,
            alias_index=build_alias_index(),
            values=build_autofill_value_map(base_info),
            base_info=base_info,
            page_context={"url": url},
        )
        plan = await build_fill_plan(context, default_planners(use_llm=False))
        logger.info(
            f"{url}: {len(fields)} fields, {len(plan.filled)} filled, "
            f"{len(plan.suggestions)} suggestions, {len(plan.blocked)} blocked"
        )
        return True
    except Exception as e:
        logger.error(f"Error planning {url}: {e}")
        return False
    finally:
        await registry.stop_session(session_id)


async def main(profile_file: str, url_file: str = "job_url.txt"):
    with open(profile_file, "r") as f:
        base_info = BaseInfo.model_validate(json.load(f))
    urls = read_urls(url_file)
    batch_size = 5
    total = len(urls)

    registry = SessionRegistry()
    all_results = []
    try:
        for batch_idx in range(0, total, batch_size):
            urls_batch = urls[batch_idx : batch_idx + batch_size]

            logger.info(
                f"Processing batch {batch_idx // batch_size + 1} of {(total + batch_size - 1) // batch_size}"
            )

            tasks = [
                plan_url(registry, batch_idx + idx, url, total, base_info)
                for idx, url in enumerate(urls_batch)
            ]
            results = await asyncio.gather(*tasks)
            all_results.extend(results)
    finally:
        await registry.shutdown()

    return all_results


if __name__ == "__main__":
    if len(sys.argv) < 2:
        sys.exit("usage: python main.py profile.json [job_url.txt]")
    results = asyncio.run(main(*sys.argv[1:3]))
    logger.info(f"Total successful: {sum(results)}")
