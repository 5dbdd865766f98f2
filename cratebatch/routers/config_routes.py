"""Config routes: read, partial update and reset of config.json, plus scheduler presets."""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from cratebatch.config import DEFAULT_CONFIG, load_config, save_config
from cratebatch.models.config import AppConfig, ConfigUpdate
from cratebatch.scheduler import SchedulerProfile

router = APIRouter(prefix="/api", tags=["config"])


@router.get("/config", response_model=AppConfig)
async def get_config():
    return load_config()


@router.put("/config", response_model=AppConfig)
async def put_config(body: ConfigUpdate):
    updates = body.model_dump(exclude_none=True)
    profile = updates.get("scheduler_profile")
    if profile is not None and profile not in SchedulerProfile.PRESETS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown scheduler profile {profile!r}; expected one of "
                   f"{', '.join(SchedulerProfile.PRESETS)}",
        )
    config = {**load_config(), **updates}
    save_config(config)
    return config


@router.post("/config/reset", response_model=AppConfig)
async def reset_config():
    save_config(dict(DEFAULT_CONFIG))
    return DEFAULT_CONFIG


@router.get("/config/scheduler")
async def scheduler_settings():
    """Preset names and the profile the next enrichment job will run with."""
    return {
        "presets": SchedulerProfile.PRESETS,
        "effective": asdict(SchedulerProfile.from_config(load_config())),
    }
