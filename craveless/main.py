from fastapi import FastAPI

from craveless.api.coach import router as coach_router
from craveless.api.cravings import router as cravings_router
from craveless.api.profile import router as profile_router
from craveless.db.session import create_tables

app = FastAPI(title="CraveLess Coach")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "CraveLess Coach API", "status": "ok"}


app.include_router(coach_router)
app.include_router(profile_router)
app.include_router(cravings_router)
