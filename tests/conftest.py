"""pytest fixtures for wardrobe backend tests.

Provides:
- db_engine: Function-scoped async engine with the schema in place
  (SQLite temp file by default, PostgreSQL testcontainer with
  TEST_DATABASE=postgres)
- clock: Controllable naive-UTC clock shared by queue and leases
- uow_factory / session: Record store access
- queue / leases / gateway / dispatcher / sweep: Wired job subsystem
- fake_provider: Scripted GenerationProvider (no network)
- wardrobe_data: Seeded items, images on disk and outfits
- test_client: httpx AsyncClient against the FastAPI app
"""

import asyncio
import os
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncGenerator, Sequence

# Must be set before the app module builds its Settings
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RUN_WORKERS", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlmodel import SQLModel

import wardrobe.models  # noqa: F401  # registers all tables
from wardrobe.core.config import Settings
from wardrobe.core.database import create_db_engine, create_session_factory
from wardrobe.core.timezone import utcnow
from wardrobe.models.wardrobe import ImageKind, Item, ItemImage, Outfit, OutfitItem
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.services.jobs.reconciliation import ReconciliationSweep
from wardrobe.services.jobs.submission import ModelNames, SubmissionGateway
from wardrobe.services.provider.base import (
    EncodedImage,
    ItemSummary,
    OutfitContext,
    OutfitItemImage,
)
from wardrobe.services.queue.job_queue import JobQueue, RetryPolicy
from wardrobe.services.queue.lease import LeaseManager
from wardrobe.uow import create_uow_factory
from wardrobe.workers.dispatcher import WorkerDispatcher

BACKEND_DIR = Path(__file__).resolve().parent.parent
USE_POSTGRES = os.environ.get("TEST_DATABASE") == "postgres"

# Child tables first
TABLES = (
    "ai_job_leases",
    "ai_job_queue",
    "ai_jobs",
    "outfit_items",
    "item_images",
    "outfits",
    "items",
)

# Smallest valid JPEG header is enough: the fake provider never decodes it
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture(scope="session")
def postgres_url():
    """Provide a session-scoped PostgreSQL URL with migrations applied.

    Only started when TEST_DATABASE=postgres. Migrations run in a subprocess
    to avoid asyncio event loop conflicts with alembic's env.py.
    """
    if not USE_POSTGRES:
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_wardrobe",
    ).with_bind_ports(5432, None) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=BACKEND_DIR,
        )

        yield db_url


@pytest_asyncio.fixture
async def db_engine(postgres_url, tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a function-scoped engine on an empty schema."""
    if postgres_url is not None:
        engine = create_db_engine(postgres_url, pool_size=5)
        yield engine
        async with engine.begin() as conn:
            for table in TABLES:
                await conn.execute(text(f"DELETE FROM {table}"))
        await engine.dispose()
        return

    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a function-scoped database session."""
    session_factory = create_session_factory(db_engine)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def uow_factory(session_factory):
    """Provide a function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, backoff_base_seconds=2.0, stall_timeout_seconds=90.0)


@pytest.fixture
def queue(db_engine, retry_policy, clock):
    """Job queue sharing the test engine (the fixture owns disposal)."""
    return JobQueue(db_engine, retry_policy, clock=clock)


@pytest.fixture
def leases(db_engine, clock):
    return LeaseManager(db_engine, ttl_seconds=90.0, owner="worker-a", clock=clock)


MODEL_NAMES = ModelNames(image="test/image-model", vision="test/vision-model", text="test/text-model")


@pytest.fixture
def gateway(uow_factory, queue):
    return SubmissionGateway(uow_factory, queue, ai_enabled=True, models=MODEL_NAMES)


@dataclass
class ProviderCall:
    method: str
    args: tuple
    kwargs: dict[str, Any]


class FakeProvider:
    """Scripted GenerationProvider.

    ``errors`` are raised one per call, in order, before any call succeeds.
    ``delay`` makes every call sleep first (for time budget tests).
    """

    image_model = "test/image-model"
    vision_model = "test/vision-model"
    text_model = "test/text-model"

    def __init__(self):
        self.errors: list[Exception] = []
        self.delay: float = 0.0
        self.calls: list[ProviderCall] = []
        self.item_details: dict[str, Any] = {
            "category": "top",
            "colors": ["navy"],
            "tags": ["casual"],
            "brand": "Acme",
            "sizeText": "M",
            "materials": ["cotton"],
        }
        self.outfits: dict[str, Any] = {
            "outfits": [{"items": [{"itemId": "x", "role": "top"}], "explanation": "Easy layers"}]
        }

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append(ProviderCall(method, args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)

    def called(self, method: str) -> list[ProviderCall]:
        return [call for call in self.calls if call.method == method]

    async def generate_catalog_image(self, image: EncodedImage) -> str:
        await self._call("generate_catalog_image", image)
        return "https://cdn.test/catalog.png"

    async def infer_item_details(
        self, image: EncodedImage, label_image: EncodedImage | None = None
    ) -> dict[str, Any]:
        await self._call("infer_item_details", image, label_image)
        return dict(self.item_details)

    async def generate_outfits(
        self, items: Sequence[ItemSummary], constraints: dict[str, Any]
    ) -> dict[str, Any]:
        await self._call("generate_outfits", items, constraints)
        return dict(self.outfits)

    async def generate_matching_item(
        self, reference: EncodedImage, target_category: str, style_notes: str | None = None
    ) -> str:
        await self._call("generate_matching_item", reference, target_category, style_notes)
        return "https://cdn.test/matching.png"

    async def generate_coordinated_set(self, anchor: EncodedImage, set_type: str) -> str:
        await self._call("generate_coordinated_set", anchor, set_type)
        return "https://cdn.test/set.png"

    async def generate_outfit_context_variation(
        self,
        items: Sequence[OutfitItemImage],
        target_context: str,
        maintain_pieces: Sequence[str] | None = None,
    ) -> str:
        await self._call("generate_outfit_context_variation", items, target_context, maintain_pieces)
        return "https://cdn.test/context.png"

    async def apply_style_transfer(
        self, item: EncodedImage, style_reference: EncodedImage, strength: float = 0.6
    ) -> str:
        await self._call("apply_style_transfer", item, style_reference, strength)
        return "https://cdn.test/styled.png"

    async def generate_outfit_visualization(
        self,
        items: Sequence[OutfitItemImage],
        visualization_type: str,
        context: OutfitContext | None = None,
    ) -> str:
        await self._call("generate_outfit_visualization", items, visualization_type, context)
        return "https://cdn.test/board.png"


@pytest.fixture
def fake_provider():
    return FakeProvider()


@dataclass
class WardrobeData:
    data_dir: Path
    top: Item
    bottom: Item
    top_main: ItemImage
    top_label: ItemImage
    bottom_main: ItemImage
    bottom_catalog: ItemImage
    outfit: Outfit
    empty_outfit: Outfit
    imageless_outfit: Outfit
    bare_item: Item


@pytest_asyncio.fixture
async def wardrobe_data(session_factory, tmp_path) -> WardrobeData:
    """Seed two items with images on disk, a two-piece outfit and edge-case outfits."""
    data_dir = tmp_path / "data"
    (data_dir / "items").mkdir(parents=True)
    for name in ("top.jpg", "top-label.jpg", "bottom.jpg", "bottom-catalog.jpg"):
        (data_dir / "items" / name).write_bytes(JPEG_BYTES)

    top = Item(category="top", color_palette=["navy"], attributes={"tags": ["casual"], "fit": "relaxed"})
    bottom = Item(category="bottom", color_palette=["khaki"], attributes={"tags": ["smart"]})
    bare_item = Item(category="shoes")

    top_main = ItemImage(item_id=top.id, kind=ImageKind.ORIGINAL_MAIN, file_path="items/top.jpg")
    top_label = ItemImage(
        item_id=top.id, kind=ImageKind.LABEL_BRAND, file_path="items/top-label.jpg"
    )
    bottom_main = ItemImage(
        item_id=bottom.id, kind=ImageKind.ORIGINAL_MAIN, file_path="items/bottom.jpg"
    )
    bottom_catalog = ItemImage(
        item_id=bottom.id,
        kind=ImageKind.AI_CATALOG,
        file_path="items/bottom-catalog.jpg",
        mime_type="image/png",
    )

    outfit = Outfit(weather="mild", vibe="neutral", occasion="office")
    empty_outfit = Outfit(occasion="nothing yet")
    imageless_outfit = Outfit(occasion="no photos")

    async with session_factory() as session:
        session.add_all([top, bottom, bare_item])
        await session.flush()
        session.add_all([top_main, top_label, bottom_main, bottom_catalog])
        session.add_all([outfit, empty_outfit, imageless_outfit])
        await session.flush()
        session.add_all(
            [
                OutfitItem(outfit_id=outfit.id, item_id=top.id, role="top"),
                OutfitItem(outfit_id=outfit.id, item_id=bottom.id, role="bottom"),
                OutfitItem(outfit_id=imageless_outfit.id, item_id=bare_item.id, role="shoes"),
            ]
        )
        await session.commit()

    return WardrobeData(
        data_dir=data_dir,
        top=top,
        bottom=bottom,
        top_main=top_main,
        top_label=top_label,
        bottom_main=bottom_main,
        bottom_catalog=bottom_catalog,
        outfit=outfit,
        empty_outfit=empty_outfit,
        imageless_outfit=imageless_outfit,
        bare_item=bare_item,
    )


@pytest.fixture
def assets(wardrobe_data):
    return ImageAssetStore(wardrobe_data.data_dir)


@pytest.fixture
def dispatcher(queue, leases, uow_factory, fake_provider, assets):
    return WorkerDispatcher(
        queue=queue,
        leases=leases,
        uow_factory=uow_factory,
        provider=fake_provider,
        assets=assets,
        handler_timeout=1.0,
        batch_size=1,
    )


@pytest.fixture
def sweep(uow_factory, queue, clock):
    return ReconciliationSweep(uow_factory, queue, grace_seconds=300.0, clock=clock)


@pytest_asyncio.fixture
async def test_client(session_factory, uow_factory, queue, gateway):
    """Provide AsyncClient for testing API endpoints with database access."""
    from wardrobe.app import app

    # Lifespan does not run under ASGITransport; inject process-wide services directly
    app.state.settings = Settings()  # type: ignore[call-arg]
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.queue = queue
    app.state.gateway = gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

