"""
Tools the model may call while it writes a roast.

A tool bundles a name, a description, an input model, an output type and an
async handler. The registry is handed to the generation client, which
dispatches the model's function calls by name; nothing else calls handlers.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, TypeAdapter, ValidationError

from .github import fetch_user_commits, fetch_user_repos
from .schemas import RepositorySummary, UsernameInput, error_paths

logger = logging.getLogger(__name__)


class ToolError(Exception):
    pass


class ToolNotFound(ToolError):
    pass


class ToolInputError(ToolError):
    pass


class ToolOutputError(ToolError):
    pass


@dataclass
class Tool:
    name: str
    description: str
    input_model: Type[BaseModel]
    output_type: Any
    handler: Callable[..., Awaitable[Any]]
    _output: TypeAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._output = TypeAdapter(self.output_type)

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        # Gemini rejects pydantic's extra keywords (title, minLength...).
        properties = {
            name: {k: v for k, v in prop.items() if k in ("type", "description", "enum")}
            for name, prop in schema.get("properties", {}).items()
        }
        return {"type": "object", "properties": properties, "required": schema.get("required", [])}

    @property
    def output_schema(self) -> Dict[str, Any]:
        return self._output.json_schema()

    def declaration(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.input_schema}

    async def invoke(self, arguments: Optional[Dict[str, Any]]) -> Any:
        try:
            args = self.input_model.model_validate(arguments or {})
        except ValidationError as e:
            raise ToolInputError(f"Invalid arguments for {self.name}: {', '.join(error_paths(e))}") from e

        result = await self.handler(**args.model_dump())

        try:
            checked = self._output.validate_python(result)
        except ValidationError as e:
            raise ToolOutputError(f"{self.name} returned unexpected output: {', '.join(error_paths(e))}") from e
        return self._output.dump_python(checked, mode="json")


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ToolError(f"Tool {tool.name!r} is already registered.")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFound(f"Model requested unknown tool {name!r}.") from None

    def names(self) -> List[str]:
        return list(self._tools)

    def declarations(self) -> List[Dict[str, Any]]:
        return [t.declaration() for t in self._tools.values()]

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]]) -> Any:
        tool = self.get(name)
        logger.info("Executing tool %s with args %s", name, json.dumps(arguments or {}, ensure_ascii=False)[:500])
        result = await tool.invoke(arguments)
        logger.info("Tool %s returned %d items", name, len(result) if isinstance(result, list) else 1)
        return result

    def __len__(self) -> int:
        return len(self._tools)


GITHUB_REPOS_TOOL = Tool(
    name="get_github_repos",
    description=(
        "Get a GitHub user's 15 most recently pushed public repositories with "
        "name, primary language, last push time, star count and fork count."
    ),
    input_model=UsernameInput,
    output_type=List[RepositorySummary],
    handler=fetch_user_repos,
)

GITHUB_COMMITS_TOOL = Tool(
    name="get_github_commits",
    description="Get the commit messages from a GitHub user's recent public push events.",
    input_model=UsernameInput,
    output_type=List[str],
    handler=fetch_user_commits,
)


def default_registry() -> ToolRegistry:
    return ToolRegistry([GITHUB_REPOS_TOOL, GITHUB_COMMITS_TOOL])
