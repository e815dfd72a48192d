import asyncio
import logging
import json

from typing import Optional
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from autofill.logging import get_logger
from autofill.application_handlers import (
    application_success_phrases,
    create_label_alias,
    create_session,
    go,
    mark_submitted,
    require_session,
    run_autofill,
    stop,
    update_label_alias,
)
from autofill.env import ALLOWED_ORIGINS
from autofill.errors import AliasConflict, AutofillError, NoLivePage, ProfileNotFound, SessionNotFound
from autofill.label_aliases import DEFAULT_LABEL_ALIASES
from autofill.models import (
    ApplicationSession,
    AutofillRequest,
    AutofillResponse,
    CreateSessionParams,
    LabelAlias,
    LabelAliasParams,
    LabelAliasUpdate,
    Profile,
    SessionEvent,
)
from autofill.services.db import default_store
from autofill.sse import SSEManager
from autofill.browser_manager import SessionRegistry

get_logger()
logger = logging.getLogger(__name__)

app = FastAPI(title="Autofill Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances for stores, SSE and browser sessions
store = default_store()
sse_manager = SSEManager()
session_registry = SessionRegistry()

ERROR_STATUS = {
    NoLivePage: 400,
    SessionNotFound: 404,
    ProfileNotFound: 404,
}


def get_store():
    return store


def get_registry() -> SessionRegistry:
    return session_registry


@app.exception_handler(AutofillError)
async def autofill_error_handler(request: Request, exc: AutofillError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code == 500:
        logger.error(f"Unhandled autofill error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.on_event("startup")
async def startup():
    logger.info(f"Autofill engine starting, allowed origins: {ALLOWED_ORIGINS or 'none'}")


@app.on_event("shutdown")
async def shutdown():
    """Close every live browser session on application shutdown"""
    logger.info("Shutting down session registry...")
    try:
        await session_registry.shutdown()
        logger.info("Session registry shutdown complete")
    except Exception as e:
        logger.error(f"Error during session registry shutdown: {e}")


async def close_viewer_streams(session_id: str):
    for stream_id in sse_manager.streams_for(session_id):
        await sse_manager.remove_stream(stream_id)


@app.get("/health")
async def health():
    return {"status": "ok"}


# Profiles

@app.post("/profiles")
async def save_profile(profile: Profile, store=Depends(get_store)) -> Profile:
    return store.upsert_profile(profile)


@app.get("/profiles/{profile_id}")
async def get_profile(profile_id: str, store=Depends(get_store)) -> Profile:
    profile = store.get_profile(profile_id)
    if profile is None:
        raise ProfileNotFound(profile_id)
    return profile


# Sessions

@app.post("/sessions")
async def new_session(params: CreateSessionParams, store=Depends(get_store)) -> ApplicationSession:
    return await create_session(store, params)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str, store=Depends(get_store)) -> ApplicationSession:
    return require_session(store, session_id)


@app.get("/sessions/{session_id}/events")
async def get_session_events(session_id: str, store=Depends(get_store)) -> list[SessionEvent]:
    require_session(store, session_id)
    return store.list_events(session_id)


@app.post("/sessions/{session_id}/go")
async def go_session(
    session_id: str,
    store=Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
):
    result = await go(store, registry, session_id)
    if result["ok"]:
        notice = {"type": "ready", "data": {"url": store.get_session(session_id).url}}
    else:
        notice = {"type": "error", "data": {"message": "Could not load the application page"}}
    await sse_manager.broadcast(session_id, notice)
    return result


@app.post("/sessions/{session_id}/autofill")
async def autofill_session(
    session_id: str,
    params: Optional[AutofillRequest] = None,
    store=Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
) -> AutofillResponse:
    return await run_autofill(store, registry, session_id, params or AutofillRequest())


@app.post("/sessions/{session_id}/mark-submitted")
async def submit_session(
    session_id: str,
    store=Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
):
    session = await mark_submitted(store, registry, session_id)
    await close_viewer_streams(session_id)
    return {"status": session.status}


@app.post("/sessions/{session_id}/stop")
async def stop_session(
    session_id: str,
    store=Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
):
    session = await stop(store, registry, session_id)
    await close_viewer_streams(session_id)
    return {"status": session.status}


@app.get("/sessions/{session_id}/stream")
async def stream_session(
    session_id: str,
    store=Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    SSE endpoint mirroring the live page.

    Streams events:
    - frame: base64 PNG screenshot of the page
    - error: a frame could not be captured, or navigation failed
    - ready: the page finished loading after go
    """
    require_session(store, session_id)
    if registry.get_page(session_id) is None:
        raise NoLivePage(session_id)

    stream_id, queue = await sse_manager.add_stream(session_id)
    try:
        viewer_id = await registry.attach_viewer(
            session_id, lambda event: sse_manager.send_event(stream_id, event)
        )
    except Exception:
        await sse_manager.remove_stream(stream_id)
        raise

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                if event is None:  # End signal
                    break

                yield {
                    "event": event.get("type", "message"),
                    "data": json.dumps(event.get("data", {})),
                }
        except asyncio.CancelledError:
            logger.info(f"Viewer disconnected from session {session_id}")
        finally:
            await registry.detach_viewer(session_id, viewer_id)
            await sse_manager.remove_stream(stream_id)

    return EventSourceResponse(event_generator())


# Label aliases

@app.get("/label-aliases")
async def list_label_aliases(store=Depends(get_store)):
    return {"defaults": DEFAULT_LABEL_ALIASES, "custom": store.list_label_aliases()}


@app.post("/label-aliases")
async def add_label_alias(params: LabelAliasParams, store=Depends(get_store)) -> LabelAlias:
    try:
        return create_label_alias(store, params.canonical_key, params.alias)
    except AliasConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/label-aliases/{alias_id}")
async def edit_label_alias(
    alias_id: str, params: LabelAliasUpdate, store=Depends(get_store)
) -> LabelAlias:
    try:
        updated = update_label_alias(store, alias_id, params)
    except AliasConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail="Alias not found")
    return updated


@app.delete("/label-aliases/{alias_id}")
async def remove_label_alias(alias_id: str, store=Depends(get_store)):
    if not store.delete_label_alias(alias_id):
        raise HTTPException(status_code=404, detail="Alias not found")
    return {"status": "deleted", "id": alias_id}


@app.get("/application-phrases")
async def get_application_phrases(store=Depends(get_store)):
    return {"phrases": application_success_phrases(store)}
