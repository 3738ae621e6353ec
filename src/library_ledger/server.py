"""Library Ledger server entry point.

Two transports share the same ledger, database and authenticator:

- ``rest``: the FastAPI application served by uvicorn
- ``stdio``: an MCP server (FastMCP) exposing circulation tools and catalog
  resources

Logs go to stderr so stdout stays clean for the stdio transport.
"""

import logging
import signal
import sys
from typing import Any

import uvicorn
from fastmcp import FastMCP

from .api import create_app
from .config import get_config
from .database.session import get_db_manager
from .observability import ObservabilityConfig, initialize_observability
from .resources import all_resources
from .tools import all_tools

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

config = get_config()

mcp = FastMCP(
    name=config.service_name,
    version=config.service_version,
    instructions=(
        "Library Ledger - a library catalog and lending tracker. Use resources to "
        "browse the catalog and tools to borrow and return books. Every tool needs "
        "the caller's access_token; librarian tokens can also adjust quantities and "
        "list overdue loans."
    ),
)

for resource in all_resources:
    uri = resource.get("uri_template", resource.get("uri"))
    logger.debug("Registering resource: %s with URI: %s", resource["name"], uri)
    mcp.resource(
        uri=uri,
        name=resource["name"],
        description=resource["description"],
        mime_type=resource["mime_type"],
    )(resource["handler"])

logger.info("Registered %d resources", len(all_resources))

for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    mcp.tool(
        name=tool["name"],
        description=tool["description"],
    )(tool["handler"])

logger.info("Registered %d tools", len(all_tools))


def configure_logging() -> None:
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level)
    logging.getLogger().setLevel(level)
    if not config.debug:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)


def prepare_database() -> None:
    """Create missing tables before serving."""
    get_db_manager().init_database()


def run_stdio_server() -> None:
    """Run the MCP server using stdio transport."""
    logger.info("Starting %s v%s on stdio transport", config.service_name, config.service_version)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, initiating shutdown...", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    mcp.run(transport="stdio")


def run_rest_server() -> None:
    """Run the REST API with uvicorn."""
    logger.info(
        "Starting %s v%s on http://%s:%d",
        config.service_name,
        config.service_version,
        config.http_host,
        config.http_port,
    )
    uvicorn.run(
        create_app(),
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )


def main() -> None:
    """Main entry point, installed as the ``library-ledger`` command."""
    configure_logging()

    logger.info("=" * 60)
    logger.info("Library Ledger")
    logger.info("Version: %s", config.service_version)
    logger.info("Transport: %s", config.transport)
    logger.info("Debug Mode: %s", config.debug)
    logger.info("=" * 60)

    if config.observability_enabled:
        initialize_observability(ObservabilityConfig(service_name=config.service_name))

    try:
        prepare_database()

        if config.transport == "stdio":
            run_stdio_server()
        else:
            run_rest_server()

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start server")
        sys.exit(1)
    finally:
        get_db_manager().close()


if __name__ == "__main__":
    main()
