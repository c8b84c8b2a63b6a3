# app/main.py: only app wiring, no endpoints here.
from fastapi import FastAPI

# import routers
from app.api.routes import placements

app = FastAPI(title="linkarr status API", version="0.1")

# API routers (read-only views over the state database)
app.include_router(placements.api_router, prefix="/api")
