import logging

from playwright.async_api import Page

from autofill.logging import get_logger
from autofill.models import FillAction, FilledEntry, FillPlanResult

get_logger()
logger = logging.getLogger(__name__)

ACTION_TIMEOUT_MS = 15000


def resolve_selector(action: FillAction) -> str | None:
    if action.selector:
        return action.selector
    if action.field_id:
        fid = action.field_id
        return f'[name="{fid}"], #{fid}, [id*="{fid}"]'
    return None


async def apply_fill_plan(page: Page, actions: list[FillAction]) -> FillPlanResult:
    """
    Apply actions to the live page one at a time.

    A failing action is recorded in `blocked` and the next one still runs.
    Nothing is retried or rolled back.
    """
    result = FillPlanResult()

    for action in actions:
        selector = resolve_selector(action)
        if not selector:
            result.blocked.append(action.field_id or "field")
            continue

        field_name = action.field_id or selector
        try:
            if action.action == "fill":
                await page.fill(selector, action.value, timeout=ACTION_TIMEOUT_MS)
                result.filled.append(
                    FilledEntry(field=field_name, value=action.value, confidence=action.confidence)
                )
            elif action.action == "select":
                await page.select_option(selector, label=action.value, timeout=ACTION_TIMEOUT_MS)
                result.filled.append(
                    FilledEntry(field=field_name, value=action.value, confidence=action.confidence)
                )
            elif action.action in ("check", "uncheck"):
                if action.action == "check":
                    await page.check(selector, timeout=ACTION_TIMEOUT_MS)
                else:
                    await page.uncheck(selector, timeout=ACTION_TIMEOUT_MS)
                result.filled.append(FilledEntry(field=field_name, value=action.action))
            elif action.requires_user_review:
                result.blocked.append(field_name)
            else:
                logger.debug(f"Not executing '{action.action}' for {field_name}")
        except Exception as e:
            logger.warning(f"Action {action.action} failed for {field_name}: {e}")
            result.blocked.append(field_name)

    logger.info(
        f"Applied plan: {len(result.filled)} filled, {len(result.blocked)} blocked"
    )
    return result
