"""
Community Hub - Main FastAPI Application
Cached reads and optimistic writes over the managed remote store
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from community_hub import __version__
from community_hub.cache import (
    MemoryMedium,
    SQLiteMedium,
    StaleWhileRevalidateRefresher,
    TTLCacheStore,
)
from community_hub.errors import NotFoundError, RejectedError, RemoteError
from community_hub.features import FeedFeature, MarketplaceFeature, MessagingFeature
from community_hub.remote import InMemoryRemoteSource, RestRemoteSource
from community_hub.schemas import (
    ItemResponse,
    ListingCreate,
    ListingUpdate,
    ListResponse,
    MessageCreate,
    PostCreate,
)
from config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("community_hub")

# Version tracking
APP_VERSION = __version__
APP_NAME = "Community Hub"
APP_STAGE = "Alpha"


class AppServices:
    """
    Everything the endpoints need, constructed once per application.

    One cache store (namespaced) and one refresher are shared by all
    features; nothing here is a module-level singleton.
    """

    def __init__(self, store: TTLCacheStore, remote, user_id: Optional[str] = None):
        self.store = store
        self.remote = remote
        self.refresher = StaleWhileRevalidateRefresher(
            store,
            refresh_window=settings.cache_refresh_window,
            coalesce_timeout=settings.coalesce_timeout_seconds,
        )
        self.marketplace = MarketplaceFeature(store, remote, self.refresher, user_id=user_id)
        self.feed = FeedFeature(store, remote, self.refresher, user_id=user_id)
        self.messaging = MessagingFeature(store, remote, self.refresher, user_id=user_id)

    @classmethod
    def from_settings(cls) -> "AppServices":
        if settings.cache_backend == "sqlite":
            medium = SQLiteMedium(settings.cache_db_url)
        else:
            medium = MemoryMedium()
        store = TTLCacheStore(
            namespace=settings.cache_namespace,
            medium=medium,
            default_ttl=settings.cache_default_ttl_seconds,
        )

        if settings.remote_backend == "rest":
            remote = RestRemoteSource()
        else:
            remote = InMemoryRemoteSource()

        logger.info(
            f"Services ready (cache={settings.cache_backend}, remote={settings.remote_backend})"
        )
        return cls(store, remote, user_id=settings.current_user_id)

    @property
    def features(self):
        return [self.marketplace, self.feed, self.messaging]

    def clear_cache(self) -> int:
        return self.store.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "store": self.store.get_stats(),
            "refresher": self.refresher.get_stats(),
            "features": {f.collection: f.get_stats() for f in self.features},
        }

    async def start_realtime(self) -> None:
        """Follow the shared collections; conversations subscribe when opened."""
        await self.marketplace.start_realtime()
        await self.feed.start_realtime()

    async def shutdown(self) -> None:
        for feature in self.features:
            await feature.stop_realtime()
        await self.refresher.drain()


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = AppServices.from_settings()
    app.state.services = services
    if settings.realtime_on_startup:
        await services.start_realtime()
    yield
    await app.state.services.shutdown()


app = FastAPI(
    title=f"{APP_NAME} ({APP_STAGE})",
    description="Cached, optimistic access to marketplace, feed and messages",
    version=APP_VERSION,
    lifespan=lifespan,
)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


@app.exception_handler(RemoteError)
async def remote_error_handler(request: Request, exc: RemoteError):
    """Map remote failures to HTTP status codes."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, RejectedError):
        status = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 409
    else:
        status = 502  # NetworkError
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "remote": settings.remote_backend, "cache": settings.cache_backend}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "stage": APP_STAGE,
        "full": f"{APP_NAME} {APP_VERSION} ({APP_STAGE})"
    }


@app.get("/cache/stats")
def cache_stats(request: Request):
    """Get cache statistics."""
    return get_services(request).get_stats()


@app.delete("/cache")
def clear_cache(request: Request):
    """Remove every entry of this app's cache namespace."""
    removed = get_services(request).clear_cache()
    return {"cleared": removed}


# ===== LISTINGS =====

@app.get("/listings", response_model=ListResponse)
async def list_listings(
    request: Request,
    category: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    forceRefresh: bool = Query(False, description="Bypass the cache"),
):
    """Get marketplace listings."""
    filters = {"category": category, "condition": condition, "status": status}
    listings, meta = await get_services(request).marketplace.get_listings(
        filters, force_refresh=forceRefresh
    )
    return {"data": listings, "count": len(listings), "meta": meta.to_dict()}


@app.get("/listings/{listing_id}", response_model=ItemResponse)
async def get_listing(
    request: Request,
    listing_id: str,
    forceRefresh: bool = Query(False, description="Bypass the cache"),
):
    """Get one listing."""
    listing, meta = await get_services(request).marketplace.get_listing(
        listing_id, force_refresh=forceRefresh
    )
    return {"data": listing, "meta": meta.to_dict()}


@app.post("/listings", response_model=ItemResponse, status_code=201)
async def create_listing(request: Request, body: ListingCreate):
    """Create a listing."""
    listing = await get_services(request).marketplace.create_listing(body.model_dump())
    return {"data": listing}


@app.patch("/listings/{listing_id}", response_model=ItemResponse)
async def update_listing(request: Request, listing_id: str, body: ListingUpdate):
    """Update fields of a listing."""
    patch = body.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    listing = await get_services(request).marketplace.update_listing(listing_id, patch)
    return {"data": listing}


@app.post("/listings/{listing_id}/sold", response_model=ItemResponse)
async def mark_listing_sold(request: Request, listing_id: str):
    """Mark a listing as sold."""
    listing = await get_services(request).marketplace.mark_sold(listing_id)
    return {"data": listing}


@app.post("/listings/{listing_id}/favorite", response_model=ItemResponse)
async def toggle_listing_favorite(request: Request, listing_id: str):
    """Favorite or unfavorite a listing."""
    listing = await get_services(request).marketplace.toggle_favorite(listing_id)
    return {"data": listing}


@app.delete("/listings/{listing_id}", status_code=204)
async def delete_listing(request: Request, listing_id: str):
    """Delete a listing."""
    try:
        await get_services(request).marketplace.delete_listing(listing_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ===== FEED =====

@app.get("/posts", response_model=ListResponse)
async def list_posts(
    request: Request,
    author_id: Optional[str] = Query(None),
    forceRefresh: bool = Query(False, description="Bypass the cache"),
):
    """Get feed posts, newest first."""
    posts, meta = await get_services(request).feed.get_posts(
        {"author_id": author_id}, force_refresh=forceRefresh
    )
    return {"data": posts, "count": len(posts), "meta": meta.to_dict()}


@app.post("/posts", response_model=ItemResponse, status_code=201)
async def create_post(request: Request, body: PostCreate):
    """Create a post."""
    post = await get_services(request).feed.create_post(body.content, image_url=body.image_url)
    return {"data": post}


@app.post("/posts/{post_id}/like", response_model=ItemResponse)
async def toggle_post_like(request: Request, post_id: str):
    """Like or unlike a post."""
    post = await get_services(request).feed.toggle_like(post_id)
    return {"data": post}


# ===== MESSAGES =====

@app.get("/conversations/{conversation_id}/messages", response_model=ListResponse)
async def list_messages(
    request: Request,
    conversation_id: str,
    forceRefresh: bool = Query(False, description="Bypass the cache"),
):
    """Get the messages of a conversation, oldest first, and follow it in realtime."""
    messages, meta = await get_services(request).messaging.open_conversation(
        conversation_id, force_refresh=forceRefresh
    )
    return {"data": messages, "count": len(messages), "meta": meta.to_dict()}


@app.post("/conversations/{conversation_id}/messages", response_model=ItemResponse, status_code=201)
async def send_message(request: Request, conversation_id: str, body: MessageCreate):
    """Send a message to a conversation."""
    try:
        message = await get_services(request).messaging.send_message(conversation_id, body.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"data": message}
