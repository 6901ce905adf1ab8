# Actions that read or adjust the remaining story settings.
# Date: 2025-10-02
# Version: 0.1.0

from pydantic import BaseModel, Field
from typing import Literal, Optional, Type, TYPE_CHECKING
from .base_tool import BaseTool

if TYPE_CHECKING:
    from arcchat.models.common import Conversation


class SetModifierInput(BaseModel):
    modifier: Optional[str] = Field(default=None, description="Genre modifier to apply; omit or null to clear it.")


class SetPacingInput(BaseModel):
    pacing: Literal["slow", "moderate", "fast"] = Field(..., description="Overall pacing of the story.")


class GetGenreConfigTool(BaseTool):
    """Reports the current story settings as JSON."""
    name: str = "getGenreConfig"
    description: str = "Get the current genre configuration: genre, subgenre, modifier and pacing."

    async def execute(self, conversation: "Conversation") -> str:
        return conversation.settings.model_dump_json()


class SetModifierTool(BaseTool):
    name: str = "setModifier"
    description: str = "Apply a genre modifier (e.g. 'dark', 'comedic'), or clear it."
    args_schema: Type[BaseModel] = SetModifierInput

    async def execute(self, conversation: "Conversation", modifier: Optional[str] = None) -> str:
        conversation.settings.modifier = modifier or None
        return f"Set modifier to {modifier}" if modifier else "Cleared modifier"


class SetPacingTool(BaseTool):
    name: str = "setPacing"
    description: str = "Set the overall pacing of the story."
    args_schema: Type[BaseModel] = SetPacingInput

    async def execute(self, conversation: "Conversation", pacing: str) -> str:
        conversation.settings.pacing = pacing
        return f"Set pacing to {pacing}"
