"""Repository mirror MCP server."""

import asyncio
import json
import logging
import os
import pathlib
import signal
import uuid
from typing import Annotated, Any, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.prompts import Prompt
from fastmcp.server.dependencies import get_http_request
from fastmcp.tools import Tool
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from pydantic import Field
from starlette.requests import Request

from backends.errors import RepositoryError
from core import MirrorConfig, PromptManager, RepositoryService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()


class ServerConfig:
    """Server configuration."""

    def __init__(self) -> None:
        """Initialize server configuration."""
        self.transport = os.getenv("MCP_TRANSPORT", "http").lower()
        if self.transport not in ("http", "stdio"):
            raise ValueError("Invalid option for MCP_TRANSPORT. Valid options are [http|stdio] ")

        self.host = os.getenv("MCP_HOST", "0.0.0.0")
        self.streamable_http_port = self._get_int("MCP_STREAMABLE_HTTP_PORT", 8080)
        self.sse_port = self._get_int("MCP_SSE_PORT")

        self.default_max_results = self._get_int("DEFAULT_MAX_RESULTS", 50)

        # OpenTelemetry export (optional)
        self.telemetry_enabled = os.getenv("TELEMETRY_ENABLED", "false").lower() == "true"
        if self.telemetry_enabled:
            self.otlp_endpoint = self._get_required_env("OTEL_EXPORTER_OTLP_ENDPOINT")
        else:
            self.otlp_endpoint = ""

    @staticmethod
    def _get_required_env(key: str) -> str:
        """Get required environment variable or raise descriptive error."""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable {key} is not set")
        return value

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> Optional[int]:
        """Get an integer environment variable, naming the variable when it is invalid."""
        value = os.getenv(key)
        if not value:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable {key} must be an integer, got {value!r}")


class TelemetryManager:
    """Telemetry manager for OTLP trace export."""

    def __init__(self, cfg: ServerConfig) -> None:
        """Initialize telemetry manager."""
        self.cfg = cfg
        self.enabled = cfg.telemetry_enabled
        if self.enabled:
            self._setup()

    def _setup(self) -> None:
        """Install an SDK tracer provider exporting to the configured endpoint."""
        provider = TracerProvider()
        provider.add_span_processor(
            SimpleSpanProcessor(OTLPSpanExporter(endpoint=f"{self.cfg.otlp_endpoint}/v1/traces"))
        )
        trace.set_tracer_provider(provider)

    @staticmethod
    def get_tracer(name: str) -> trace.Tracer:
        """Get tracer instance."""
        return trace.get_tracer(name)


config = ServerConfig()
mirror_config = MirrorConfig()
telemetry = TelemetryManager(config)
tracer = telemetry.get_tracer("repo-mirror-mcp")

server = FastMCP("repo-mirror")

repository = RepositoryService.from_config(mirror_config)
logger.info(f"Mirroring {mirror_config.repository_url}")

prompt_manager = PromptManager(
    file_path=pathlib.Path(__file__).parent.parent.parent / "prompts" / "prompts.yaml"
)

_shutdown_requested = False


def signal_handler(sig: int, frame: Any) -> None:
    """Handle termination signals for graceful shutdown."""
    global _shutdown_requested
    logger.info(f"Received signal {sig}, initiating graceful shutdown...")
    _shutdown_requested = True


def _trace_id() -> str:
    """Trace id from the X-TRACE-ID header, or a fresh one outside HTTP requests."""
    try:
        request: Request = get_http_request()
        return str(request.headers.get("X-TRACE-ID", uuid.uuid4()))
    except Exception:
        return str(uuid.uuid4())


def _set_span_attributes(
    span: trace.Span,
    input_data: Dict[str, Any],
    output_data: Dict[str, Any],
    session_id: str,
) -> None:
    """Attach common attributes to a tool span."""
    if not telemetry.enabled:
        return
    try:
        span.set_attribute("session.id", session_id)
        span.set_attribute("tags", ["repo-mirror-mcp"])
        span.set_attribute("input", json.dumps(input_data))
        span.set_attribute("output", json.dumps(output_data))
    except Exception as exc:
        logger.error(f"Error setting span attributes: {exc}")


async def read(
    path: Annotated[str, Field(description="The path to the file to read, relative to the root of the repository")],
    start_line: Annotated[
        Optional[int], Field(description="The line number to start reading from (inclusive)")
    ] = None,
    end_line: Annotated[
        Optional[int], Field(description="The line number to stop reading at (exclusive)")
    ] = None,
) -> str:
    """Read a file from the repository."""
    if _shutdown_requested:
        logger.info("Shutdown in progress, declining new requests")
        return ""

    with tracer.start_as_current_span("RepoMirrorMcp:read") as span:
        try:
            result = await repository.read_file_range(path, start_line=start_line, end_line=end_line)
        except RepositoryError as exc:
            logger.warning(f"Error reading {path}: {exc}")
            return f"error: {exc}"

        _set_span_attributes(
            span,
            {"path": path, "start_line": start_line, "end_line": end_line},
            {"characters": len(result)},
            _trace_id(),
        )
        return result


async def rg(
    pattern: Annotated[str, Field(description="The pattern to pass to rg.")],
    max_lines: Annotated[
        Optional[int],
        Field(description="The total maximum number of lines to return across all files", ge=1),
    ] = None,
    glob: Annotated[Optional[str], Field(description="The --glob option to rg")] = None,
) -> str:
    """Search the repository with rg."""
    if _shutdown_requested:
        logger.info("Shutdown in progress, declining new requests")
        return ""

    max_results = max_lines or config.default_max_results
    logger.info(f"Search pattern: {pattern!r} glob: {glob!r}")

    with tracer.start_as_current_span("RepoMirrorMcp:rg") as span:
        try:
            matches = await repository.search(pattern, glob=glob, max_results=max_results)
        except RepositoryError as exc:
            logger.error(f"Search failed: {exc}")
            return f"error: {exc}"

        _set_span_attributes(
            span,
            {"pattern": pattern, "glob": glob, "max_lines": max_results},
            {"matches": len(matches)},
            _trace_id(),
        )
        return "\n".join(str(match) for match in matches)


async def glob(
    pattern: Annotated[
        str, Field(description="The glob pattern to match files against (e.g. '**/*.py')")
    ],
) -> str:
    """Find files in the repository matching a glob pattern."""
    if _shutdown_requested:
        logger.info("Shutdown in progress, declining new requests")
        return ""

    with tracer.start_as_current_span("RepoMirrorMcp:glob") as span:
        try:
            files = await repository.glob(pattern)
        except RepositoryError as exc:
            logger.warning(f"Error matching {pattern!r}: {exc}")
            return f"error: {exc}"

        _set_span_attributes(span, {"pattern": pattern}, {"files": len(files)}, _trace_id())
        return "\n".join(files)


async def context_document() -> str:
    """Return the cached context document of the repository."""
    if _shutdown_requested:
        logger.info("Shutdown in progress, declining new requests")
        return ""

    try:
        return await repository.cached_file()
    except RepositoryError as exc:
        logger.warning(f"Error loading {repository.context_file}: {exc}")
        return f"error: {exc}"


async def assistant_system_prompt() -> str:
    """System prompt for an assistant working with the mirrored repository."""
    try:
        document = await repository.cached_file()
    except RepositoryError as exc:
        logger.warning(f"Context document unavailable, rendering prompt without it: {exc}")
        document = ""

    return prompt_manager.render_prompt(
        "prompts.system_prompt",
        repository_url=mirror_config.repository_url,
        context_file=repository.context_file,
        context_document=document,
    )


def _register_tools() -> None:
    """Register MCP tools and prompts with the server."""
    for fn in (read, rg, glob, context_document):
        server.add_tool(
            Tool.from_function(fn, description=prompt_manager.get_text(f"tools.{fn.__name__}"))
        )
    server.add_prompt(Prompt.from_function(assistant_system_prompt))
    logger.info("Tools registered")


async def _run_server() -> None:
    """Start the mirror and serve MCP until shutdown.

    A failed clone makes ``wait_ready`` raise, which stops the server.
    """
    async with repository:
        if config.transport == "stdio":
            tasks = [server.run_stdio_async()]
        else:
            tasks = [
                server.run_http_async(
                    transport="streamable-http",
                    host=config.host,
                    path="/codesearch/mcp",
                    port=config.streamable_http_port,
                )
            ]
            if config.sse_port is not None:
                tasks.append(
                    server.run_http_async(transport="sse", host=config.host, port=config.sse_port)
                )
        await asyncio.gather(repository.wait_ready(), *tasks)


def main() -> None:
    """Main entry point."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    _register_tools()

    try:
        logger.info("Starting Repository Mirror MCP server...")
        asyncio.run(_run_server())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt (CTRL+C)")
    except Exception as exc:
        logger.error(f"Server error: {exc}")
        raise
    finally:
        logger.info("Server has shut down.")


if __name__ == "__main__":
    main()
