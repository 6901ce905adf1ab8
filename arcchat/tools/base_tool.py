# The module is to define the base class for all tools in the application.
# Date: 2025-10-02
# Version: 0.2.0

from abc import ABC, abstractmethod
from pydantic import BaseModel
from typing import Dict, Any, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from arcchat.models.common import Conversation


class EmptyInput(BaseModel):
    """Input model for tools that take no arguments."""


class BaseTool(ABC):
    """
    Abstract Base Class for all tools.

    This class defines the call contract the agentic loop relies on.
    Attributes:
        name (str): The action name the model uses to call the tool.
        description (str): A brief description of what the tool does.
        args_schema (Type[BaseModel]): A Pydantic model defining the arguments
            that the tool accepts, validated before execution.
    """
    name: str
    description: str
    args_schema: Type[BaseModel] = EmptyInput

    @abstractmethod
    async def execute(self, conversation: "Conversation", **kwargs) -> str:
        """
        The core logic of the tool. It receives the conversation so it can
        read and change the session's application state.

        Args:
            conversation: The current conversation object.
            **kwargs: The arguments for the tool, validated against args_schema.

        Returns:
            A human-readable description of what the tool did.

        Raises:
            Any exception; its message is reported back as a failed action.
        """

    def get_definition(self) -> Dict[str, Any]:
        """
        Returns the tool's definition in a format compliant with OpenAI's
        function-calling format.
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_schema.model_json_schema()
            }
        }
