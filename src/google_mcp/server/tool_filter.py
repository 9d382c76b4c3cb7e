"""Tool filtering for the MCP server.

Operators can narrow the exposed tool set with ``--read-only``,
``--enable`` (whitelist) or ``--disable`` (blacklist). A tool counts as
read-only when its annotations carry ``readOnlyHint``.
"""

from mcp.types import Tool
from pydantic import BaseModel, Field

from google_mcp.errors import ConfigurationError


def is_read_only(tool: Tool) -> bool:
    """True if the tool is annotated as not modifying anything."""
    return bool(tool.annotations and tool.annotations.readOnlyHint)


class ToolFilter(BaseModel):
    """Which tools an MCP server exposes.

    Attributes:
        read_only: Expose only read-only tools.
        enable: Tool names to expose. Mutually exclusive with disable.
        disable: Tool names to hide. Mutually exclusive with enable.
    """

    read_only: bool = False
    enable: list[str] = Field(default_factory=list)
    disable: list[str] = Field(default_factory=list)

    def apply(self, tools: list[Tool]) -> list[Tool]:
        """Filter tools, keeping their order.

        Raises:
            ConfigurationError: If enable and disable are both set, or a
                named tool is unknown or (with read_only) not read-only.
        """
        if self.enable and self.disable:
            raise ConfigurationError("--enable and --disable are mutually exclusive")

        all_names = {tool.name for tool in tools}
        base = [tool for tool in tools if not self.read_only or is_read_only(tool)]
        base_names = {tool.name for tool in base}

        for name in [*self.enable, *self.disable]:
            if name not in base_names:
                if name in all_names:
                    raise ConfigurationError(f"tool {name!r} is not a read-only tool")
                raise ConfigurationError(f"unknown tool {name!r}")

        if self.enable:
            return [tool for tool in base if tool.name in self.enable]
        return [tool for tool in base if tool.name not in self.disable]
