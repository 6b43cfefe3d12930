"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field


class CreateSession(BaseModel):
    child_id: str = Field(min_length=1)
    story_title: str | None = None


class SendMessageBody(BaseModel):
    text: str = Field(min_length=1)


class SelectStoryTypeBody(BaseModel):
    story_type_id: str


class ChooseBody(BaseModel):
    options_message_id: str
    choice_id: str


class RegenerateOptionsBody(BaseModel):
    options_message_id: str | None = None


class EndingsBody(BaseModel):
    preview: bool = False


class ChooseEndingBody(BaseModel):
    options_message_id: str
    ending_id: str
