from functools import partial
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from screencast.api.routes import router as api_router, page_router
from screencast.api.endpoints.comments import router as comments_router
from screencast.core.config import Settings, settings
from screencast.core.tunnel import TunnelManager
from screencast.services.persistence import build_persistence
from screencast.services.storage import LocalStorage, build_storage
from screencast.services.thumbnails import generate_thumbnail
from screencast.services.uploads import UploadService
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s:     %(name)s - %(message)s'
)
logging.getLogger("screencast").setLevel(logging.INFO)


def create_app(config: Settings = None, storage=None, persistence=None) -> FastAPI:
    """
    Build the application. Storage and persistence are created at startup
    unless injected (tests pass their own).
    """
    config = config or settings
    app = FastAPI(title="ScreenCast Server")
    app.state.config = config
    app.state.base_url = partial(TunnelManager.get_base_url, config)

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Lifecycle Events
    @app.on_event("startup")
    async def startup_event():
        base_url = TunnelManager.start(config)
        logging.info(f"Share links: {base_url}/v/<share_id>")

        if storage is not None:
            app.state.storage = storage
        elif persistence is not None:
            app.state.storage = persistence.storage
        else:
            app.state.storage = build_storage(config, base_url=app.state.base_url)
        app.state.persistence = persistence or build_persistence(config, app.state.storage)
        app.state.uploads = UploadService(
            app.state.persistence,
            base_url=app.state.base_url,
            thumbnailer=partial(
                generate_thumbnail,
                offset=config.THUMBNAIL_OFFSET,
                size=(config.THUMBNAIL_WIDTH, config.THUMBNAIL_HEIGHT),
            ),
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        if getattr(app.state, "persistence", None) is not None:
            app.state.persistence.close()
        TunnelManager.stop()

    # Include Routes
    app.include_router(api_router, prefix="/api")
    app.include_router(comments_router, prefix="/api")
    app.include_router(page_router)

    # Local backend objects are public under /media
    injected = storage if storage is not None else getattr(persistence, "storage", None)
    if isinstance(injected, LocalStorage):
        media_root = injected.root
    elif injected is None and config.STORAGE_BACKEND.lower() == "local":
        media_root = Path(config.LOCAL_STORAGE_DIR) / config.STORAGE_BUCKET
    else:
        media_root = None
    if media_root is not None:
        app.mount("/media", StaticFiles(directory=str(media_root), check_dir=False), name="media")

    return app

app = create_app()
