import os

from visual_sync.logger import get_logger

logger = get_logger()


def main() -> None:
    host = os.getenv("VISUAL_SYNC_HOST", "127.0.0.1")
    port = int(os.getenv("VISUAL_SYNC_PORT", "8000"))
    display_url = f"http://localhost:{port}"

    logger.info(
        "Starting visual tests sync panel on {display_url} (binding to {host}:{port})",
        display_url=display_url,
        host=host,
        port=port,
    )

    import uvicorn

    uvicorn.run(
        app="visual_sync.main:app",
        host=host,
        port=port,
        reload=False,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
