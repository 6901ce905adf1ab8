# Discovers and manages all available actions automatically.
# Date: 2025-10-02
# Version: 0.2.0

import importlib
import inspect
import pkgutil
from typing import Dict, List, Any, Optional, TYPE_CHECKING
from pydantic import ValidationError
from arcchat import tools as tools_package
from arcchat.core.errors import ToolExecutionError, UnknownToolError
from arcchat.tools.base_tool import BaseTool
from arcchat.utils.logger import console

if TYPE_CHECKING:
    from arcchat.models.common import Conversation

class ToolRegistry:
    """
    A `name -> handler` map of the actions the model may call.
    Handlers are discovered from the arcchat.tools package; more can be
    added with `register()`.
    """
    def __init__(self, discover: bool = True):
        self.tools: Dict[str, BaseTool] = {}
        if discover:
            self._discover_tools()
            console.success(f"Tool discovery complete. Found {len(self.tools)} tools: {list(self.tools.keys())}")

    def _discover_tools(self):
        """
        Scans the arcchat.tools package, imports all modules, finds classes that
        inherit from BaseTool, and registers an instance of each.
        """
        for _, modname, _ in pkgutil.iter_modules(tools_package.__path__, f"{tools_package.__name__}."):
            if modname.endswith(".base_tool"):
                continue
            try:
                module = importlib.import_module(modname)
            except ImportError as e:
                console.error(f"Failed to import tool module {modname}: {e}")
                continue
            for _, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, BaseTool) and obj is not BaseTool and not inspect.isabstract(obj) \
                        and obj.__module__ == module.__name__:
                    self.register(obj())

    def register(self, tool: BaseTool):
        self.tools[tool.name] = tool
        console.info(f"Successfully registered tool: '{tool.name}'")

    def get(self, name: str) -> Optional[BaseTool]:
        return self.tools.get(name)

    def get_definitions(self) -> List[Dict[str, Any]]:
        """Returns the list of all tool definitions for the LLM."""
        return [tool.get_definition() for tool in self.tools.values()]

    async def execute(self, name: str, args: Dict[str, Any], conversation: "Conversation") -> str:
        """
        Executes an action by name and returns its description.

        Raises:
            UnknownToolError: If no handler is registered under `name`.
            ToolExecutionError: If the arguments do not match the tool's schema.
            Exception: Whatever the handler itself raises.
        """
        tool = self.tools.get(name)
        if tool is None:
            console.error(f"Attempted to execute unknown tool: {name}")
            raise UnknownToolError(name)

        try:
            validated = tool.args_schema.model_validate(args or {})
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(map(str, err['loc'])) or 'arguments'}: {err['msg']}" for err in e.errors())
            raise ToolExecutionError(f"Invalid arguments for {name}: {problems}") from e

        return await tool.execute(conversation=conversation, **validated.model_dump())

# Create a singleton instance for global use throughout the application.
tool_registry = ToolRegistry()
