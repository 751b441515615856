# app.py
# =============================================================================
# AthletiQ API — Workout Log, Import & AI Coaching (FastAPI + SQLAlchemy 2.x async)
# One row per logged session. Gemini-backed summary with model fallback.
# v1.2.0 — CSV import/export, 4-tier analysis, idempotent delete
# =============================================================================

from __future__ import annotations

import csv
import io
import json
import logging
import os
import re
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path as OSPath
from typing import AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Sequence

from dotenv import load_dotenv
from fastapi import Body, FastAPI, File, HTTPException, Request, UploadFile
from fastapi import Path as FPath
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from google import genai
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator
from sqlalchemy import Float, Integer, String, desc, select, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

load_dotenv()

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(message)s",
)
log = logging.getLogger("athletiq-api")

# -----------------------------------------------------------------------------
# DB connection
# Priority:
#   1) DATABASE_URL (any SQLAlchemy async URL, e.g. postgresql+asyncpg://...)
#   2) env ATHLETIQ_DB (path to athletiq.db)
#   3) ./data/athletiq.db
#   4) ./athletiq.db  (fallback)
# -----------------------------------------------------------------------------
_database_url = os.getenv("DATABASE_URL")

if _database_url:
    DB_PATH = _database_url
    engine = create_async_engine(DB_PATH, echo=False, pool_pre_ping=True)
    log.info("Using external database (async)")
else:
    env_db = os.getenv("ATHLETIQ_DB")
    candidates = [
        env_db,
        str((OSPath(__file__).parent / "data" / "athletiq.db").resolve()),
        str((OSPath(__file__).parent / "athletiq.db").resolve()),
    ]
    DB_PATH = env_db or next(
        (p for p in candidates if p and OSPath(p).exists()), candidates[-1]
    )
    engine = create_async_engine(f"sqlite+aiosqlite:///{DB_PATH}", echo=False)
    log.info(f"Using SQLite (async): {DB_PATH}")

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

UPLOAD_DIR = OSPath(os.getenv("UPLOAD_DIR", "uploads"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


# -----------------------------------------------------------------------------
# SQLAlchemy models
# -----------------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


class Workout(Base):
    __tablename__ = "workout"
    __table_args__ = {"extend_existing": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[str] = mapped_column(String, nullable=False, index=True)  # YYYY-MM-DD
    type: Mapped[Optional[str]] = mapped_column(String, nullable=True)     # Run, Lift, ...
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # minutes
    distance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # km
    intensity: Mapped[Optional[str]] = mapped_column(String, nullable=True)  # Low / Medium / High


async def _init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# -----------------------------------------------------------------------------
# Pydantic schemas
# -----------------------------------------------------------------------------
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _whole_minutes(v: Optional[float]) -> Optional[float]:
    """30.0 -> 30; fractional minutes stay floats."""
    if v is not None and float(v).is_integer():
        return int(v)
    return v


def _validate_date_str(v: str) -> str:
    """Accept an ISO date or ISO timestamp; keep only the calendar date."""
    v = v.strip()
    if not _DATE_RE.match(v):
        raise ValueError("date must start with YYYY-MM-DD")
    try:
        parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("date is not a valid ISO date or timestamp")
    return parsed.date().isoformat()


class HealthOut(BaseModel):
    ok: bool = True
    db_connected: bool = True
    db_type: str
    timestamp: str


class GenericResponse(BaseModel):
    message: str


class WorkoutIn(BaseModel):
    """A logged session. Every field is optional; only types are coerced."""
    date: Optional[str] = None
    type: Optional[str] = None
    duration: Optional[float] = None
    distance: Optional[float] = None
    intensity: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return _validate_date_str(v)


class WorkoutOut(BaseModel):
    id: int
    date: str
    type: Optional[str] = None
    duration: Optional[float] = None
    distance: Optional[float] = None
    intensity: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

    @field_serializer("duration")
    def serialize_duration(self, v: Optional[float]):
        return _whole_minutes(v)


class AnalysisOut(BaseModel):
    today: str
    weekly: str
    monthly: str
    yearly: str
    plan: List[str] = Field(min_length=3, max_length=3)
    score: int


class CsvExportOut(BaseModel):
    filename: str
    rows: int
    csv: str


FALLBACK_ANALYSIS = AnalysisOut(
    today="No data available.",
    weekly="Keep pushing.",
    monthly="Maintain consistency.",
    yearly="Long term growth.",
    plan=["Rest", "Train", "Recover"],
    score=0,
)


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    await _init_db()
    yield
    await engine.dispose()


app = FastAPI(
    title="AthletiQ API",
    description="Personal workout log with CSV import/export and AI coaching summaries.",
    version="1.2.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------------------------------------------------------
# Global exception handler — every unhandled fault becomes a 500 with its message
# -----------------------------------------------------------------------------
@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{tb}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {type(exc).__name__}: {exc}"},
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _row_to_out(w: Workout) -> WorkoutOut:
    return WorkoutOut.model_validate(w)


def _db_type() -> str:
    """Return a safe description of the DB type (no credentials)."""
    if _database_url:
        return _database_url.split("://", 1)[0]
    return "SQLite"


# -----------------------------------------------------------------------------
# Record store
# -----------------------------------------------------------------------------
async def list_workouts(session: AsyncSession, limit: Optional[int] = None) -> List[Workout]:
    stmt = select(Workout).order_by(desc(Workout.date), desc(Workout.id))
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_workout(session: AsyncSession, w: WorkoutIn) -> Workout:
    data = w.model_dump()
    data["date"] = data["date"] or _today()
    obj = Workout(**data)
    session.add(obj)
    await session.commit()
    await session.refresh(obj)
    return obj


async def bulk_create_workouts(session: AsyncSession, rows: Sequence[dict]) -> int:
    session.add_all([Workout(**row) for row in rows])
    await session.commit()
    return len(rows)


async def update_workout(
    session: AsyncSession, workout_id: int, w: WorkoutIn
) -> Optional[Workout]:
    obj = await session.get(Workout, workout_id)
    if obj is None:
        return None
    for k, v in w.model_dump(exclude_unset=True).items():
        if k == "date" and v is None:
            continue
        setattr(obj, k, v)
    await session.commit()
    await session.refresh(obj)
    return obj


async def delete_workout_by_id(session: AsyncSession, workout_id: int) -> bool:
    """Delete a workout. Returns False when it was already gone."""
    obj = await session.get(Workout, workout_id)
    if obj is None:
        return False
    await session.delete(obj)
    await session.commit()
    return True


# -----------------------------------------------------------------------------
# CSV import — "never block an import": bad cells fall back to defaults
# -----------------------------------------------------------------------------
_LEADING_INT_RE = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_IMPORT_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y")


def _parse_leading_int(raw: Optional[str]) -> Optional[int]:
    """'45' -> 45, '45.7' -> 45, '12min' -> 12, 'abc' -> None."""
    if not raw:
        return None
    m = _LEADING_INT_RE.match(raw)
    return int(m.group(0)) if m else None


def _parse_leading_float(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    m = _LEADING_FLOAT_RE.match(raw)
    return float(m.group(0)) if m else None


def _parse_loose_date(raw: Optional[str]) -> Optional[str]:
    if not raw or not raw.strip():
        return None
    raw = raw.strip()
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _IMPORT_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def normalize_import_row(row: Dict[str, Optional[str]], today: Optional[str] = None) -> dict:
    """Turn one CSV row into Workout fields, defaulting anything missing or bad."""
    def cell(name: str) -> str:
        return (row.get(name) or "").strip()

    duration = _parse_leading_int(cell("duration"))
    distance = _parse_leading_float(cell("distance"))
    return {
        "type": cell("type") or "Run",
        "duration": float(duration if duration is not None else 30),
        "distance": distance if distance is not None else 0.0,
        "intensity": cell("intensity") or "Medium",
        "date": _parse_loose_date(cell("date")) or today or _today(),
    }


def parse_import_file(path: OSPath) -> List[dict]:
    """Read a CSV from disk. Raises if the file itself is unreadable."""
    today = _today()
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames:
            reader.fieldnames = [(h or "").strip().lower() for h in reader.fieldnames]
        return [normalize_import_row(row, today) for row in reader]


def import_via_scratch(contents: bytes, upload_dir: OSPath) -> List[dict]:
    """Write the upload to a scratch file, parse it, and always remove the file."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    scratch = upload_dir / uuid.uuid4().hex
    try:
        scratch.write_bytes(contents)
        return parse_import_file(scratch)
    finally:
        scratch.unlink(missing_ok=True)


# -----------------------------------------------------------------------------
# AI coaching summary — Gemini with sequential model fallback
# -----------------------------------------------------------------------------
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
MODEL_NAMES = ["gemini-2.5-flash", "gemini-2.5-pro", "gemini-pro"]
ANALYSIS_WINDOW = 50

_genai_client = None


class AIUnavailableError(RuntimeError):
    """Raised when every candidate model failed."""


def _get_genai_client():
    global _genai_client
    if _genai_client is None:
        _genai_client = genai.Client(api_key=GEMINI_API_KEY)
    return _genai_client


async def _call_model(model_name: str, prompt: str) -> str:
    client = _get_genai_client()
    response = await client.aio.models.generate_content(model=model_name, contents=prompt)
    if not response.text:
        raise ValueError(f"{model_name} returned an empty response")
    return response.text


async def first_success(
    candidates: Sequence[str],
    attempt: Callable[[str], Awaitable[str]],
) -> str:
    """Try each candidate in order; the first one that doesn't raise wins."""
    for name in candidates:
        try:
            return await attempt(name)
        except Exception as e:
            log.warning(f"Model {name} failed: {type(e).__name__}: {e}")
            continue
    raise AIUnavailableError("AI Unavailable")


async def generate_with_fallback(prompt: str, models: Sequence[str] = MODEL_NAMES) -> str:
    return await first_success(models, lambda name: _call_model(name, prompt))


def build_analysis_prompt(records: Sequence[WorkoutOut], today: str) -> str:
    data = json.dumps([r.model_dump(mode="json") for r in records])
    return f"""
Current Date: {today}.
Data: {data}.

Task: Analyze performance across 4 timelines.
1. TODAY: Specific feedback on today's session (if any), one sentence.
2. WEEKLY: Summary of the last 7 days (volume/intensity).
3. MONTHLY: Trend over the last 30 days.
4. YEARLY: High-level progress note.
5. PLAN: 3-day future plan.

Return JSON (No Markdown):
{{
  "today": "Great effort on the 5k run today...",
  "weekly": "Volume is up 10% this week. Good consistency.",
  "monthly": "You logged 12 runs this month. Average pace improved.",
  "yearly": "Consistent year-round. Focus on strength in Q4.",
  "plan": ["Tomorrow: Rest", "Day 2: Intervals", "Day 3: Long Run"],
  "score": 88
}}
"""


def strip_code_fences(raw: str) -> str:
    return raw.replace("```json", "").replace("```", "").strip()


def parse_analysis(raw: str) -> AnalysisOut:
    """Raises ValueError (JSONDecodeError) or ValidationError on bad output."""
    return AnalysisOut.model_validate(json.loads(strip_code_fences(raw)))


# -----------------------------------------------------------------------------
# Health / Root
# -----------------------------------------------------------------------------
@app.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
    db_connected = False
    try:
        async with async_session() as s:
            await s.execute(text("SELECT 1"))
            db_connected = True
    except Exception as e:
        log.error(f"Health check DB query failed: {e}")
    return HealthOut(
        ok=db_connected,
        db_connected=db_connected,
        db_type=_db_type(),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/", response_model=GenericResponse)
async def root() -> GenericResponse:
    return GenericResponse(message="AthletiQ API v1 is running")


# -----------------------------------------------------------------------------
# Workouts — CRUD
# -----------------------------------------------------------------------------
@app.get("/api/workouts", response_model=List[WorkoutOut])
async def get_workouts() -> List[WorkoutOut]:
    async with async_session() as s:
        rows = await list_workouts(s)
    return [_row_to_out(w) for w in rows]


@app.post("/api/workouts", response_model=WorkoutOut)
async def add_workout(w: WorkoutIn) -> WorkoutOut:
    async with async_session() as s:
        obj = await create_workout(s, w)
    return _row_to_out(obj)


@app.put("/api/workouts/{workout_id}", response_model=WorkoutOut)
async def edit_workout(
    workout_id: int = FPath(...), body: WorkoutIn = Body(...)
) -> WorkoutOut:
    async with async_session() as s:
        obj = await update_workout(s, workout_id, body)
        if obj is None:
            raise HTTPException(404, "Workout not found")
    return _row_to_out(obj)


@app.delete("/api/workouts/{workout_id}", response_model=GenericResponse)
async def delete_workout(workout_id: int = FPath(...)) -> GenericResponse:
    async with async_session() as s:
        removed = await delete_workout_by_id(s, workout_id)
    if not removed:
        log.info(f"Delete of workout {workout_id}: already absent")
    return GenericResponse(message="Deleted")


# -----------------------------------------------------------------------------
# Import CSV (multipart, field "file")
# -----------------------------------------------------------------------------
@app.post("/api/upload", response_model=GenericResponse)
async def upload_workouts(file: UploadFile = File(...)) -> GenericResponse:
    contents = await file.read()
    rows = await run_in_threadpool(import_via_scratch, contents, UPLOAD_DIR)

    async with async_session() as s:
        saved = await bulk_create_workouts(s, rows)
    log.info(f"Imported {saved} workouts from {file.filename or 'upload'}")
    return GenericResponse(message="Success")


# -----------------------------------------------------------------------------
# AI analysis — never fails over HTTP; faults degrade to FALLBACK_ANALYSIS
# -----------------------------------------------------------------------------
@app.get("/api/analyze", response_model=AnalysisOut)
async def analyze() -> AnalysisOut:
    try:
        async with async_session() as s:
            rows = await list_workouts(s, limit=ANALYSIS_WINDOW)
        prompt = build_analysis_prompt([_row_to_out(w) for w in rows], _today())
        raw = await generate_with_fallback(prompt)
        return parse_analysis(raw)
    except (AIUnavailableError, ValueError, ValidationError) as e:
        log.warning(f"Analysis degraded to fallback: {type(e).__name__}: {e}")
    except Exception as e:
        log.error(f"Analysis failed, serving fallback: {type(e).__name__}: {e}")
    return FALLBACK_ANALYSIS


# -----------------------------------------------------------------------------
# Export CSV
# -----------------------------------------------------------------------------
@app.get("/api/export/csv", response_model=CsvExportOut)
async def export_csv() -> CsvExportOut:
    async with async_session() as s:
        rows = await list_workouts(s)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["id", "date", "type", "duration", "distance", "intensity"])
    for w in rows:
        writer.writerow([w.id, w.date, w.type, _whole_minutes(w.duration), w.distance, w.intensity])

    return CsvExportOut(filename="workouts.csv", rows=len(rows), csv=buf.getvalue())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
