"""Create demo story types for development/testing."""

import shutil

from taleweaver.models import ArcTemplate, StoryType
from taleweaver.storage import Storage

DEMO_STORY_TYPES = [
    StoryType(
        id="animal-adventure",
        name="Animal Adventure",
        default_phase_id="story_beat_phase_v1",
        ending_phase_id="ending_phase_v1",
        arc_template=ArcTemplate(steps=[
            "introduce_character",
            "explore_world",
            "meet_friend",
            "problem_appears",
            "solve_problem",
            "celebrate",
        ]),
        tags=["animals", "friendship", "outdoors"],
        age_range="3-6",
    ),
    StoryType(
        id="bedtime-journey",
        name="Bedtime Journey",
        default_phase_id="story_beat_phase_v1",
        ending_phase_id="ending_phase_v1",
        arc_template=ArcTemplate(steps=[
            "cosy_start",
            "gentle_journey",
            "sleepy_discovery",
            "return_home",
        ]),
        tags=["calm", "bedtime"],
        age_range="2-5",
    ),
]


def create_demo_data(storage: Storage) -> None:
    """Replace all story types with the demo set."""
    story_types_dir = storage.base_path / "story-types"
    if story_types_dir.exists():
        shutil.rmtree(story_types_dir)
    story_types_dir.mkdir(parents=True, exist_ok=True)

    for story_type in DEMO_STORY_TYPES:
        storage.save_story_type(story_type)
