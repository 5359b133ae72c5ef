"""Base implementation shared by the tools exposed over HTTP and the CLI."""

from __future__ import annotations

from typing import Any, TypedDict

from bolso.errors import ValidationError


class ToolParameter(TypedDict, total=False):
    """JSON Schema for a single parameter."""

    type: str
    description: str
    enum: list[str] | None


class ToolInputSchema(TypedDict):
    """JSON Schema for tool input parameters."""

    type: str  # Always "object"
    properties: dict[str, ToolParameter]
    required: list[str]


class StandardTool:
    """
    Base class for tools invoked on behalf of one user.

    Subclasses must override:
    - _name: Tool name
    - _description: Tool description
    - _input_schema: Parameter schema
    - _execute_impl: Core execution logic

    ``execute`` checks required parameters, then delegates. Errors from
    ``bolso.errors`` propagate unchanged so each frontend can map them to
    its own envelope (HTTP status, CLI exit code).

    Example:
        class EchoTool(StandardTool):
            _name = "echo"
            _description = "Returns its input"
            _input_schema: ToolInputSchema = {
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            }

            def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
                return {"success": True, "text": kwargs["text"]}
    """

    _name: str
    _description: str
    _input_schema: ToolInputSchema

    @property
    def name(self) -> str:
        """Return the tool name."""
        return self._name

    @property
    def description(self) -> str:
        """Return the tool description."""
        return self._description

    @property
    def input_schema(self) -> ToolInputSchema:
        """Return the input schema."""
        return self._input_schema

    def missing_parameters(self, kwargs: dict[str, Any]) -> list[str]:
        return [
            name
            for name in self._input_schema["required"]
            if kwargs.get(name) in (None, "")
        ]

    def execute(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        """
        Validate and execute tool logic.

        Args:
            user_id: The caller the tool acts for
            **kwargs: Parameters matching input_schema

        Returns:
            JSON-serializable dict with results

        Raises:
            ValidationError: If a required parameter is missing
        """
        missing = self.missing_parameters(kwargs)
        if missing:
            raise ValidationError(f"{missing[0]} is required")
        return self._execute_impl(user_id=user_id, **kwargs)

    def _execute_impl(self, *, user_id: str, **kwargs: Any) -> dict[str, Any]:
        """
        Override in subclass to implement tool logic.

        Raises:
            NotImplementedError: If subclass doesn't implement this method
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} must implement _execute_impl"
        )
