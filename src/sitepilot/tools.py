import asyncio
import inspect
import logging
import re
import typing
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from sitepilot.message import ToolInvocation

logger = logging.getLogger(__name__)

ParameterType = Literal["string", "number", "boolean", "array"]
ToolHandler = Callable[..., None | Awaitable[None]]

_TYPE_MAPPING: dict[type, str] = {
    str: "string",
    int: "number",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
}


class ToolParameterProperty(BaseModel):
    type: ParameterType
    description: str = ""
    enum: list[str] | None = None
    items: dict[str, str] | None = None


class ToolParameters(BaseModel):
    type: Literal["object"] = "object"
    properties: dict[str, ToolParameterProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    """A page-defined tool the model may call.

    The schema is sent to the provider; ``handler`` only ever runs on
    the client and is never serialized.

    Args:
        name: Unique tool name.
        description: Shown to the model. Be specific about when to use it.
        parameters: JSON-schema style parameter declaration.
        handler: Sync or async callable invoked as ``handler(args)`` with
            the parsed arguments dict.
    """

    name: str
    description: str
    parameters: ToolParameters = Field(default_factory=ToolParameters)
    handler: ToolHandler | None = Field(default=None, exclude=True)

    model_config = {"arbitrary_types_allowed": True}

    def schema_dict(self) -> dict:
        return self.parameters.model_dump(exclude_none=True)

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema_dict(),
            },
        }

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.schema_dict(),
        }

    def to_gemini(self) -> dict:
        properties = {}
        for key, prop in self.parameters.properties.items():
            entry: dict[str, Any] = {
                "type": prop.type.upper(),
                "description": prop.description,
            }
            if prop.enum:
                entry["enum"] = prop.enum
            if prop.items:
                entry["items"] = {
                    k: v.upper() if k == "type" else v
                    for k, v in prop.items.items()
                }
            properties[key] = entry
        parameters: dict[str, Any] = {"type": "OBJECT", "properties": properties}
        if self.parameters.required:
            parameters["required"] = self.parameters.required
        declaration: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
        }
        # Gemini rejects an OBJECT schema with no properties
        if properties:
            declaration["parameters"] = parameters
        return declaration

    def missing_required(self, args: dict[str, Any]) -> list[str]:
        return [name for name in self.parameters.required if name not in args]


def define_tool(
    name: str,
    description: str,
    properties: dict[str, dict] | None = None,
    required: list[str] | None = None,
    handler: ToolHandler | None = None,
) -> ToolDefinition:
    """Build a ToolDefinition from plain dictionaries."""
    return ToolDefinition(
        name=name,
        description=description,
        parameters=ToolParameters(
            properties={
                key: ToolParameterProperty.model_validate(value)
                for key, value in (properties or {}).items()
            },
            required=required or [],
        ),
        handler=handler,
    )


def define_simple_tool(
    name: str,
    description: str,
    handler: Callable[[], None | Awaitable[None]] | None = None,
) -> ToolDefinition:
    """Create a tool that takes no parameters."""
    def wrapped(args: dict[str, Any]):
        return handler()

    return ToolDefinition(
        name=name,
        description=description,
        handler=wrapped if handler is not None else None,
    )


def _normalize_to_json_type(annotation: Any) -> tuple[str, dict[str, str] | None]:
    origin = typing.get_origin(annotation) or annotation
    json_type = _TYPE_MAPPING.get(origin, "string")
    items = None
    if json_type == "array":
        item_args = typing.get_args(annotation)
        item_type = _TYPE_MAPPING.get(item_args[0], "string") if item_args else "string"
        items = {"type": item_type}
    return json_type, items


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read parameter descriptions from a Google-style ``Args:`` section."""
    doc = inspect.getdoc(func) or ""
    descriptions: dict[str, str] = {}
    in_args = False
    current = None
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not stripped:
            current = None
            continue
        if not line.startswith((" ", "\t")):
            break
        match = re.match(r"^(\w+)(?:\s*\([^)]*\))?:\s*(.*)$", stripped)
        if match:
            current = match.group(1)
            descriptions[current] = match.group(2)
        elif current is not None:
            descriptions[current] = f"{descriptions[current]} {stripped}".strip()
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[ToolParameters, list[str]]:
    signature = inspect.signature(func)
    try:
        hints = typing.get_type_hints(func)
    except (NameError, TypeError):
        hints = {}
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for param_name, param in signature.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param_name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = str
        json_type, items = _normalize_to_json_type(annotation)
        properties[param_name] = ToolParameterProperty(
            type=json_type,
            description=descriptions.get(param_name, ""),
            items=items,
        )
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    return ToolParameters(properties=properties, required=required), required


def _summary(func: Callable) -> str:
    doc = inspect.getdoc(func) or ""
    summary = []
    for line in doc.splitlines():
        if not line.strip() or line.strip() in ("Args:", "Returns:"):
            break
        summary.append(line.strip())
    return " ".join(summary)


def tool(func: Callable) -> ToolDefinition:
    """Decorate a function to turn it into a ToolDefinition.

    The function's keyword parameters become the tool's parameters and
    its docstring supplies the descriptions. The handler is called with
    the parsed arguments spread as keywords.

    Example::

        @tool
        def navigate(section: str):
            \"\"\"Scroll the page to a section.

            Args:
                section: Id of the section to show.
            \"\"\"
            ...
    """
    parameters, _ = _build_parameters_schema(func)

    if inspect.iscoroutinefunction(func):
        async def handler(args: dict[str, Any]):
            return await func(**args)
    else:
        def handler(args: dict[str, Any]):
            return func(**args)

    return ToolDefinition(
        name=func.__name__,
        description=_summary(func),
        parameters=parameters,
        handler=handler,
    )


class ToolRegistry:
    """Tools available to one handler or one chat session.

    Construct one per handler or session and pass it where it is
    needed. There is no process-wide registry.
    """

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        for t in tools or []:
            self.register(t)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Duplicate tool name: '{definition.name}'")
        self._tools[definition.name] = definition

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def call(self, invocation: ToolInvocation) -> Any:
        """Start the handler for one invocation and return its result.

        An async handler's awaitable is returned unawaited. Unknown tools
        are logged and skipped. The declared schema is not enforced:
        missing required arguments are only logged.
        """
        definition = self._tools.get(invocation.name)
        if definition is None:
            logger.warning(f"Tool not found: {invocation.name}")
            return None
        missing = definition.missing_required(invocation.args)
        if missing:
            logger.debug(
                f"Tool {invocation.name} called without required args {missing}"
            )
        if definition.handler is None:
            return None
        return definition.handler(invocation.args)

    async def execute(self, invocation: ToolInvocation) -> None:
        """Run the handler for one invocation, awaiting async handlers."""
        result = self.call(invocation)
        if inspect.isawaitable(result):
            await result

    async def execute_all(
        self, invocations: list[ToolInvocation], delay: float = 0.3,
    ) -> None:
        """Execute invocations in order, pausing ``delay`` seconds between them."""
        for i, invocation in enumerate(invocations):
            await self.execute(invocation)
            if delay > 0 and i < len(invocations) - 1:
                await asyncio.sleep(delay)

    def to_openai(self) -> list[dict]:
        return [t.to_openai() for t in self._tools.values()]

    def to_anthropic(self) -> list[dict]:
        return [t.to_anthropic() for t in self._tools.values()]

    def to_gemini(self) -> list[dict]:
        return [t.to_gemini() for t in self._tools.values()]
