"""Story type (arc template) endpoints."""

from fastapi import APIRouter, HTTPException, Request

from taleweaver.models import StoryType

router = APIRouter()


@router.get("/story-types")
async def list_story_types(request: Request):
    """List all story types."""
    return request.app.state.engine.storage.list_story_types()


@router.get("/story-types/{story_type_id}")
async def get_story_type(story_type_id: str, request: Request):
    """Get a single story type."""
    story_type = request.app.state.engine.storage.get_story_type(story_type_id)
    if story_type is None:
        raise HTTPException(404, "Story type not found")
    return story_type


@router.put("/story-types/{story_type_id}")
async def put_story_type(story_type_id: str, body: StoryType, request: Request):
    """Create or replace a story type."""
    if body.id != story_type_id:
        raise HTTPException(400, "Story type id does not match the URL")
    return request.app.state.engine.storage.save_story_type(body)
