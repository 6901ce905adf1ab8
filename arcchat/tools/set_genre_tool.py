# Actions that change the story's genre selection.
# Date: 2025-10-02
# Version: 0.1.0

from pydantic import BaseModel, Field
from typing import Type, TYPE_CHECKING
from .base_tool import BaseTool
from arcchat.core.errors import ToolExecutionError
from arcchat.utils.logger import console

if TYPE_CHECKING:
    from arcchat.models.common import Conversation


class SetGenreInput(BaseModel):
    """Input model for the setGenre action."""
    genre: str = Field(..., description="The genre key to switch to, e.g. 'noir' or 'romance'.")


class SetSubgenreInput(BaseModel):
    """Input model for the setSubgenre action."""
    subgenre: str = Field(..., description="The subgenre key within the current genre.")


class SetGenreTool(BaseTool):
    """Switches the story to a different genre."""
    name: str = "setGenre"
    description: str = "Change the primary genre of the story. Resets the subgenre."
    args_schema: Type[BaseModel] = SetGenreInput

    async def execute(self, conversation: "Conversation", genre: str) -> str:
        genre = genre.strip()
        if not genre:
            raise ToolExecutionError("Genre must not be empty.")
        conversation.settings.genre = genre
        conversation.settings.subgenre = None
        console.info(f"Genre set to '{genre}' for session '{conversation.session_id}'.")
        return f"Changed genre to {genre}"


class SetSubgenreTool(BaseTool):
    """Chooses a subgenre inside the current genre."""
    name: str = "setSubgenre"
    description: str = "Change the subgenre. A genre must already be selected."
    args_schema: Type[BaseModel] = SetSubgenreInput

    async def execute(self, conversation: "Conversation", subgenre: str) -> str:
        if not conversation.settings.genre:
            raise ToolExecutionError("Select a genre before choosing a subgenre.")
        conversation.settings.subgenre = subgenre
        return f"Changed subgenre to {subgenre}"
