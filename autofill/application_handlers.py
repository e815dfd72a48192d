import logging
import uuid

from typing import Optional
from urllib.parse import urlparse

from autofill.browser_manager import SessionRegistry
from autofill.env import ALIASES_FILE
from autofill.errors import AliasConflict, NoLivePage, ProfileNotFound, SessionNotFound
from autofill.executor import apply_fill_plan
from autofill.field_discovery import collect_page_fields
from autofill.label_aliases import (
    build_alias_index,
    build_application_success_phrases,
    load_aliases_file,
    validate_alias,
)
from autofill.logging import get_logger
from autofill.models import (
    ApplicationSession,
    AutofillRequest,
    AutofillResponse,
    CreateSessionParams,
    FieldDescriptor,
    LabelAlias,
    LabelAliasUpdate,
)
from autofill.planners import Planner, PlanningContext, build_fill_plan, default_planners
from autofill.services.db import new_event, utcnow
from autofill.value_map import SensitiveValuePolicy, build_autofill_value_map

get_logger()
logger = logging.getLogger(__name__)


def extract_domain(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def require_session(store, session_id: str) -> ApplicationSession:
    session = store.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return session


def load_custom_aliases(store, aliases_file: Optional[str] = ALIASES_FILE) -> list[LabelAlias]:
    """Store aliases first, then the override file so its entries win."""
    aliases = store.list_label_aliases()
    if aliases_file:
        try:
            aliases = [*aliases, *load_aliases_file(aliases_file)]
        except (OSError, ValueError) as e:
            logger.error(f"Could not load alias file {aliases_file}: {e}")
    return aliases


# --- Session lifecycle ---


async def create_session(store, params: CreateSessionParams) -> ApplicationSession:
    if store.get_profile(params.profile_id) is None:
        raise ProfileNotFound(params.profile_id)

    session = ApplicationSession(
        id=str(uuid.uuid4()),
        profile_id=params.profile_id,
        url=params.url,
        domain=extract_domain(params.url),
        status="OPEN",
        started_at=utcnow(),
    )
    session = store.insert_session(session)
    store.insert_event(new_event(session.id, "SESSION_CREATED", {"url": session.url}))
    logger.info(f"Created session {session.id} for {session.domain}")
    return session


async def go(store, registry: SessionRegistry, session_id: str) -> dict:
    """
    Open (or re-navigate) the live page for a session.
    Navigation failures are logged and reported, the session stays usable.
    """
    session = require_session(store, session_id)
    store.update_session(session_id, status="OPEN")

    ok = True
    try:
        await registry.start_session(session_id, session.url)
    except Exception as e:
        logger.error(f"Failed to start browser session {session_id}: {e}")
        ok = False

    store.insert_event(new_event(session_id, "GO_CLICKED", {"url": session.url, "ok": ok}))
    return {"ok": ok}


async def run_autofill(
    store,
    registry: SessionRegistry,
    session_id: str,
    request: AutofillRequest,
    planners: Optional[list[Planner]] = None,
    policy: Optional[SensitiveValuePolicy] = None,
) -> AutofillResponse:
    """
    Discover fields, build a fill plan through the planner tiers and,
    when asked, apply it to the live page.

    Client-supplied descriptors skip the live scan. Without them a live page
    is required, otherwise NoLivePage is raised. Work on one session runs
    under that session's lock.
    """
    session = require_session(store, session_id)
    profile = store.get_profile(session.profile_id)
    if profile is None:
        raise ProfileNotFound(session.profile_id)

    has_client_fields = request.page_fields is not None
    if (not has_client_fields or request.apply) and registry.get_page(session_id) is None:
        raise NoLivePage(session_id)

    policy = policy or SensitiveValuePolicy()
    planners = planners if planners is not None else default_planners(use_llm=request.use_llm)

    async with registry.session_lock(session_id):
        if has_client_fields:
            page_fields = [
                f for f in (FieldDescriptor.from_raw(raw) for raw in request.page_fields) if f
            ]
            dropped = len(request.page_fields) - len(page_fields)
            if dropped:
                logger.warning(f"Dropped {dropped} malformed field descriptors for session {session_id}")
        else:
            page = registry.require_page(session_id)
            try:
                page_fields = await collect_page_fields(page)
            except Exception as e:
                logger.error(f"Field discovery failed for session {session_id}: {e}")
                page_fields = []

        candidate_fields = page_fields
        context = PlanningContext(
            fields=candidate_fields,
            alias_index=build_alias_index(load_custom_aliases(store)),
            values=build_autofill_value_map(profile.base_info, session.job_context, policy),
            base_info=profile.base_info,
            job_context=session.job_context,
            page_context={"url": session.url},
            policy=policy,
        )
        fill_plan = await build_fill_plan(context, planners)

        executed = None
        if request.apply and fill_plan.actions:
            executed = await apply_fill_plan(registry.require_page(session_id), fill_plan.actions)

    store.update_session(session_id, status="FILLED", fill_plan=fill_plan)
    store.insert_event(
        new_event(session_id, "AUTOFILL_DONE", fill_plan.model_dump(mode="json"))
    )
    logger.info(
        f"Autofill for session {session_id}: {len(candidate_fields)} fields, "
        f"{len(fill_plan.filled)} filled, {len(fill_plan.blocked)} blocked"
    )

    wire_fields = [f.to_wire() for f in page_fields]
    return AutofillResponse(
        fill_plan=fill_plan,
        page_fields=wire_fields,
        candidate_fields=[f.to_wire() for f in candidate_fields],
        executed=executed,
    )


async def mark_submitted(store, registry: SessionRegistry, session_id: str) -> ApplicationSession:
    require_session(store, session_id)
    session = store.update_session(session_id, status="SUBMITTED", ended_at=utcnow())
    await registry.stop_session(session_id)
    store.insert_event(new_event(session_id, "SUBMITTED"))
    return session


async def stop(store, registry: SessionRegistry, session_id: str) -> ApplicationSession:
    session = require_session(store, session_id)
    if session.status not in ("SUBMITTED", "ABANDONED"):
        session = store.update_session(session_id, status="ABANDONED", ended_at=utcnow())
    await registry.stop_session(session_id)
    store.insert_event(new_event(session_id, "STOPPED"))
    return session


# --- Label aliases ---


def create_label_alias(store, canonical_key: str, alias: str) -> LabelAlias:
    key, normalized = validate_alias(canonical_key, alias)
    if store.find_label_alias_by_normalized(normalized):
        raise AliasConflict("Alias already exists")

    now = utcnow()
    record = LabelAlias(
        id=str(uuid.uuid4()),
        canonical_key=key,
        alias=alias.strip(),
        normalized_alias=normalized,
        created_at=now,
        updated_at=now,
    )
    return store.insert_label_alias(record)


def update_label_alias(store, alias_id: str, params: LabelAliasUpdate) -> Optional[LabelAlias]:
    existing = store.find_label_alias(alias_id)
    if existing is None:
        return None

    alias_text = (params.alias if params.alias is not None else existing.alias).strip()
    key, normalized = validate_alias(
        (params.canonical_key or "").strip() or existing.canonical_key, alias_text
    )
    conflict = store.find_label_alias_by_normalized(normalized)
    if conflict and conflict.id != alias_id:
        raise AliasConflict("Alias already exists")

    updated = existing.model_copy(
        update={
            "canonical_key": key,
            "alias": alias_text,
            "normalized_alias": normalized,
            "updated_at": utcnow(),
        }
    )
    return store.update_label_alias(updated)


def application_success_phrases(store) -> list[str]:
    return build_application_success_phrases(load_custom_aliases(store))
