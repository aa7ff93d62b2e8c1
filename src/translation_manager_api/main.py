from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .activity import build_activity_logger
from .config import configure_logging, get_settings
from .database import LocalCache, build_store
from .errors import NotFoundError, TranslationTreeError
from .manager import TranslationStateManager
from .models import (
    ActivityLog,
    Actor,
    ChildRename,
    EntityType,
    ImportReport,
    ImportRequest,
    KeyCreate,
    KeyRename,
    OrderChange,
    SearchHit,
    SpaceCreate,
    TranslationCreate,
    TranslationDocument,
    TranslationValueUpdate,
)

router = APIRouter(prefix="/api")


def get_manager(request: Request) -> TranslationStateManager:
    return request.app.state.manager


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> Actor:
    if not x_user_id:
        return Actor()
    email = x_user_email or "unknown@unknown.com"
    return Actor(user_id=x_user_id, user_email=email, user_name=x_user_name or email.split("@")[0])


## Export endpoints, consumed by client applications


@router.get("/translations")
async def list_languages(manager: TranslationStateManager = Depends(get_manager)):
    return {"languages": manager.languages}


@router.get("/translations/all")
async def get_all_translations(manager: TranslationStateManager = Depends(get_manager)):
    return manager.export_all()


@router.get("/translations/page/{page_key}")
async def get_page_translations(
    page_key: str,
    lang: Optional[str] = None,
    manager: TranslationStateManager = Depends(get_manager),
):
    try:
        return manager.export_page(page_key, lang.lower() if lang else None)
    except NotFoundError:
        return JSONResponse(
            status_code=404,
            content={"error": f"Page '{page_key}' not found", "available_pages": list(manager.tree.pages)},
        )


@router.get("/translations/{lang}")
async def get_language_translations(lang: str, manager: TranslationStateManager = Depends(get_manager)):
    return manager.export_language(lang.lower())


## Management endpoints


@router.get("/tree", response_model=TranslationDocument)
async def get_tree(manager: TranslationStateManager = Depends(get_manager)):
    return manager.tree.to_document()


@router.post("/languages", status_code=201)
async def add_language(
    body: KeyCreate,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    code = body.key.lower()
    manager.add_language(code, actor)
    return {"message": f"Language '{code}' added", "languages": manager.languages}


@router.patch("/languages/{code}")
async def rename_language(
    code: str,
    body: KeyRename,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    code, new_code = code.lower(), body.new_key.lower()
    manager.rename_language(code, new_code, actor)
    return {"message": f"Language '{code}' renamed to '{new_code}'", "languages": manager.languages}


@router.delete("/languages/{code}", status_code=204)
async def delete_language(
    code: str,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.delete_language(code.lower(), actor)


@router.post("/pages", status_code=201)
async def add_page(
    body: KeyCreate,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.add_page(body.key, actor)
    return {"message": f"Page '{body.key}' created"}


@router.patch("/pages/{page_key}")
async def rename_page(
    page_key: str,
    body: KeyRename,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.rename_page(page_key, body.new_key, actor)
    return {"message": f"Page '{page_key}' renamed to '{body.new_key}'"}


@router.delete("/pages/{page_key}", status_code=204)
async def delete_page(
    page_key: str,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.delete_page(page_key, actor)


@router.post("/pages/{page_key}/spaces", status_code=201)
async def add_space(
    page_key: str,
    body: SpaceCreate,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.add_space(page_key, body.path, body.key, body.is_array, actor)
    return {"message": f"Space '{body.key}' created"}


@router.patch("/pages/{page_key}/spaces")
async def rename_space(
    page_key: str,
    body: ChildRename,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.rename_space(page_key, body.path, body.old_key, body.new_key, actor)
    return {"message": f"Space '{body.old_key}' renamed to '{body.new_key}'"}


@router.delete("/pages/{page_key}/spaces", status_code=204)
async def delete_space(
    page_key: str,
    key: str,
    path: List[str] = Query(default=[]),
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.delete_space(page_key, path, key, actor)


@router.post("/pages/{page_key}/order")
async def change_order(
    page_key: str,
    body: OrderChange,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.change_order(page_key, body.path, body.key, body.new_index, actor)
    return {"message": "Order changed successfully"}


@router.post("/pages/{page_key}/translations", status_code=201)
async def add_translation(
    page_key: str,
    body: TranslationCreate,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    entry = manager.add_translation(page_key, body.path, body.key, body.values, actor)
    return {"key": body.key, "values": entry}


@router.patch("/pages/{page_key}/translations")
async def rename_translation_key(
    page_key: str,
    body: ChildRename,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.rename_translation_key(page_key, body.path, body.old_key, body.new_key, actor)
    return {"message": f"Translation key '{body.old_key}' renamed to '{body.new_key}'"}


@router.put("/pages/{page_key}/translations/value")
async def update_translation_value(
    page_key: str,
    body: TranslationValueUpdate,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    updated = manager.update_translation_value(page_key, body.path, body.key, body.lang, body.value, actor)
    return {"updated": updated}


@router.delete("/pages/{page_key}/translations", status_code=204)
async def delete_translation(
    page_key: str,
    key: str,
    path: List[str] = Query(default=[]),
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    manager.delete_translation(page_key, path, key, actor)


@router.post("/import", response_model=ImportReport)
async def import_translations(
    body: ImportRequest,
    manager: TranslationStateManager = Depends(get_manager),
    actor: Actor = Depends(get_actor),
):
    return manager.import_translations(body.lang.lower(), body.data, actor)


@router.post("/import/preview", response_model=ImportReport)
async def preview_import(body: ImportRequest, manager: TranslationStateManager = Depends(get_manager)):
    return manager.preview_import(body.lang.lower(), body.data)


@router.get("/search", response_model=List[SearchHit])
async def search(q: str = Query(min_length=1), manager: TranslationStateManager = Depends(get_manager)):
    return manager.search(q)


@router.get("/activity", response_model=List[ActivityLog])
async def list_activity(
    limit: int = Query(default=50, ge=1, le=200),
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[str] = None,
    manager: TranslationStateManager = Depends(get_manager),
):
    return await manager.recent_activity(limit, entity_type, entity_id)


@router.post("/backups", status_code=201)
async def create_backup(manager: TranslationStateManager = Depends(get_manager)) -> Dict[str, str]:
    backup_id = await manager.create_backup()
    return {"backup_id": backup_id}


async def translation_tree_error_handler(request: Request, exc: TranslationTreeError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def create_app(manager: Optional[TranslationStateManager] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = manager or TranslationStateManager(
            build_store(settings),
            build_activity_logger(settings),
            debounce_seconds=settings.SAVE_DEBOUNCE_SECONDS,
            cache=LocalCache(settings.LOCAL_CACHE_PATH),
        )
        app.state.manager = state
        await state.load()
        state.start_sync()

        yield

        await state.close()

    app = FastAPI(title="Translation Manager API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TranslationTreeError, translation_tree_error_handler)
    app.include_router(router)
    return app


app = create_app()
