from fastapi import FastAPI

from app.cadence.router import router as cadence_router
from app.config import settings
from app.logging_config import configure_logging

configure_logging(log_level=settings.log_level)

app = FastAPI(title="GoalCadence", version="0.1.0")
app.include_router(cadence_router)


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "cadence": {
            "normalize": "/cadence/normalize",
            "assemble": "/cadence/assemble",
            "slots": "/cadence/slots",
            "occurrences": "/cadence/occurrences",
            "occurrences_preview": "/cadence/occurrences/preview",
            "occurrences_validate": "/cadence/occurrences/validate",
            "quests": "/cadence/quests",
            "quests_validate": "/cadence/quests/validate",
            "weeks": "/cadence/weeks",
            "validate": "/cadence/validate",
            "verification_plan": "/cadence/verification/plan",
            "verification_validate": "/cadence/verification/validate",
            "frequency": "/cadence/frequency",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
