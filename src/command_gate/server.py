"""MCP tool surface exposing the gateway operations."""

from __future__ import annotations

from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from command_gate.errors import CommandGateError
from command_gate.services import GatewayService

SERVER_NAME = "Command Gate"
INSTRUCTIONS = (
    "Use run_command to enqueue shell jobs for operator approval. "
    "Use get_job_status to inspect jobs. "
    "Use proxy_call to reach other MCP servers."
)


def build_server(service: GatewayService) -> FastMCP:
    """Create the FastMCP server with the three gateway tools registered."""

    server = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS)

    @server.tool(
        name="run_command",
        title="Queue command for approval",
        description="Queues a shell command for manual approval and later execution.",
    )
    async def run_command(
        command: Annotated[str, Field(min_length=1, description="Shell command to run.")],
    ) -> dict[str, Any]:
        try:
            job = await service.run_command(command)
        except CommandGateError as error:
            raise ToolError(str(error)) from error
        return job.to_payload()

    @server.tool(
        name="get_job_status",
        title="Lookup job status",
        description="Retrieves status and output for a queued job by id or command.",
    )
    async def get_job_status(
        id: Annotated[int | None, Field(gt=0, description="Job id.")] = None,  # noqa: A002
        command: Annotated[
            str | None,
            Field(min_length=1, description="Exact command; the latest job wins."),
        ] = None,
    ) -> dict[str, Any]:
        try:
            job = await service.get_job_status(job_id=id, command=command)
        except CommandGateError as error:
            raise ToolError(str(error)) from error
        if job is None:
            raise ToolError("Job not found.")
        return job.to_payload()

    @server.tool(
        name="proxy_call",
        title="Call a tool on another MCP server",
        description=(
            "Proxies a tool call to another MCP server given by configured name, "
            "http(s) URL, or 'stdio:<command> [args...]'."
        ),
    )
    async def proxy_call(
        server: Annotated[str, Field(min_length=1, description="Peer specification.")],
        tool: Annotated[str, Field(min_length=1, description="Tool name on the peer.")],
        args: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            payload = await service.proxy_call(
                server=server,
                tool=tool,
                args=args,
                options=options,
            )
        except CommandGateError as error:
            raise ToolError(str(error)) from error
        response = payload["response"]
        if isinstance(response, dict) and response.get("isError"):
            raise ToolError(_error_text(response) or f"Proxy call to {tool} on {server} failed.")
        return payload

    return server


def _error_text(response: dict[str, Any]) -> str:
    parts = [
        str(item.get("text"))
        for item in response.get("content") or []
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text")
    ]
    return "\n".join(parts)
