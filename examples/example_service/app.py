from __future__ import annotations

import os
import random
import time

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse

VERSION = os.getenv("VERSION", "dev")
SLOW_RATE = float(os.getenv("SLOW_RATE", "0"))  # 0..1, sleeps past typical probe timeouts
BROKEN_TENANTS = {t for t in os.getenv("BROKEN_TENANTS", "").split(",") if t}

app = FastAPI(title=f"Example Service {VERSION}")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/{tenant}/{env}/version")
def version(tenant: str, env: str):
    # Optional fault injection to demo probe failure classification.
    if SLOW_RATE > 0 and random.random() < SLOW_RATE:
        time.sleep(10)
    if tenant in BROKEN_TENANTS:
        return HTMLResponse("<html><body>502 Bad Gateway</body></html>", status_code=502)
    if env == "maintenance":
        return JSONResponse({"statusCode": 503, "message": "maintenance"}, status_code=503)
    return {"version": VERSION, "tenant": tenant, "environment": env}
