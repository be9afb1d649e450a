"""
Episode endpoints.

Start assembly of an episode and read its composition state.
"""

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, status

from shared.errors import PipelineError
from shared.logging import get_logger
from shared.models.episode import EpisodeComposition, Shot
from api_gateway.dependencies import get_assembler, get_shot_source
from modules.episode_assembler import EpisodeAssembler, InMemoryShotSource, ShotSource

logger = get_logger("api_gateway.routes.episodes")

router = APIRouter()


async def _assemble_in_background(assembler: EpisodeAssembler, episode_id: str) -> None:
    try:
        await assembler.assemble_episode(episode_id)
    except PipelineError as e:
        # Failure state is already persisted by the assembler
        logger.warning(
            f"Background assembly of {episode_id} failed: {e.message}",
            extra={"episode_id": episode_id, "phase": e.phase, "kind": e.kind}
        )


@router.put("/episodes/{episode_id}/shots", status_code=status.HTTP_204_NO_CONTENT)
async def put_episode_shots(
    shots: List[Shot],
    episode_id: str = Path(...),
    shot_source: ShotSource = Depends(get_shot_source),
):
    """Register an episode's shots (upstream image pipeline hand-off)."""
    if not isinstance(shot_source, InMemoryShotSource):
        raise HTTPException(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            detail="Configured shot source does not accept uploads"
        )
    shot_source.put_shots(episode_id, shots)
    logger.info(f"Registered {len(shots)} shots for episode {episode_id}", extra={"episode_id": episode_id})


@router.post("/episodes/{episode_id}/assemble", status_code=status.HTTP_202_ACCEPTED)
async def assemble_episode(
    background_tasks: BackgroundTasks,
    episode_id: str = Path(...),
    assembler: EpisodeAssembler = Depends(get_assembler),
):
    """
    Start (or resume) assembly of an episode.

    Only an assembly running in this process conflicts. A stored "running"
    state without one was left by a process that died, and is resumed.

    Returns:
        Accepted marker and the composition state before the run starts
    """
    if assembler.is_assembling(episode_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Episode {episode_id} is already being assembled"
        )
    composition = await assembler.get_composition(episode_id)
    background_tasks.add_task(_assemble_in_background, assembler, episode_id)
    return {
        "episode_id": episode_id,
        "accepted": True,
        "previous_state": composition.state.value if composition else None,
    }


@router.get("/episodes/{episode_id}/composition", response_model=EpisodeComposition)
async def get_composition(
    episode_id: str = Path(...),
    assembler: EpisodeAssembler = Depends(get_assembler),
):
    composition = await assembler.get_composition(episode_id)
    if composition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Episode not found")
    return composition
