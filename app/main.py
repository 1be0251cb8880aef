from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import boundaries, boundary_version, live, notifications, regions
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready

app = FastAPI(
    title="gis-boundary-platform",
    description="Versioned region boundaries with impact analysis, publish and rollback.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(boundary_version.router, prefix="/api", tags=["boundary-versions"])
app.include_router(boundaries.router, prefix="/api/boundaries", tags=["boundaries"])
app.include_router(regions.router, prefix="/api/regions", tags=["regions"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(live.ws_router, tags=["live-ws"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
