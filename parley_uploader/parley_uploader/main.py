import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import httpx

from parley_uploader.client import ParleyClient
from parley_uploader.config import UploaderSettings
from parley_uploader.scanner import UploadState, scan_folder

logger = logging.getLogger(__name__)


class Uploader:
    """Pushes new and changed documents from local folders to Parley."""

    def __init__(self, settings: UploaderSettings, client: ParleyClient | None = None):
        self.settings = settings
        self.client = client or ParleyClient(settings)
        self.state = UploadState(settings.state_file).load()
        self.running = False

    async def scan_and_upload(self) -> tuple[int, int]:
        """
        Scan every configured folder and upload files whose content changed.

        Returns:
            Tuple of (uploaded, failed)
        """
        logger.info("Starting scan cycle")
        uploaded = 0
        failed = 0

        for folder in self.settings.folders:
            files = scan_folder(folder)
            pending = self.state.pending(files)

            if not pending:
                logger.info(f"No new or changed files in folder {folder.name}")
                continue

            folder_uploaded = 0
            for file in pending:
                try:
                    document = await self.client.upload_file(file)
                except httpx.HTTPStatusError as e:
                    logger.error(
                        f"Failed to upload {file.relative_path}: "
                        f"{e.response.status_code} - {e.response.text}"
                    )
                    failed += 1
                    continue
                except (httpx.HTTPError, OSError) as e:
                    logger.exception(f"Error uploading {file.relative_path}: {e}")
                    failed += 1
                    continue

                self.state.record(file, document["id"])
                self.state.save()
                folder_uploaded += 1

            uploaded += folder_uploaded
            logger.info(
                f"Folder {folder.name}: {len(pending)} pending, {folder_uploaded} uploaded"
            )

        logger.info(f"Scan cycle complete: uploaded={uploaded}, failed={failed}")
        return uploaded, failed

    async def run(self) -> None:
        """Run the uploader continuously."""
        self.running = True
        logger.info(f"Starting Parley uploader (scan interval: {self.settings.scan_interval_seconds}s)")

        while self.running:
            try:
                await self.scan_and_upload()
            except Exception as e:
                logger.exception(f"Error in scan cycle: {e}")

            if self.running:
                logger.info(f"Sleeping for {self.settings.scan_interval_seconds} seconds")
                await asyncio.sleep(self.settings.scan_interval_seconds)

    def stop(self) -> None:
        """Stop the uploader."""
        self.running = False
        logger.info("Uploader stopping")


async def run_once(settings: UploaderSettings) -> int:
    """Run a single scan cycle; returns the number of failed uploads."""
    uploader = Uploader(settings)
    _, failed = await uploader.scan_and_upload()
    return failed


async def run_continuous(settings: UploaderSettings) -> None:
    """Run the uploader continuously."""
    uploader = Uploader(settings)

    # Handle shutdown signals
    def handle_shutdown(sig, frame):  # noqa: ARG001
        logger.info(f"Received signal {sig}")
        uploader.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    await uploader.run()


def main() -> None:
    """Main entry point for the uploader."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Parley document uploader")
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan cycle and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load configuration
    config_path = Path(args.config)
    if config_path.exists():
        logger.info(f"Loading configuration from {config_path}")
        settings = UploaderSettings.from_yaml(str(config_path))
    else:
        logger.warning(f"Config file not found: {config_path}, using defaults")
        settings = UploaderSettings()

    # Validate configuration
    if not settings.identity:
        logger.error("No identity configured. Set PARLEY_UPLOADER_IDENTITY or add to config file.")
        sys.exit(1)

    if not settings.folders:
        logger.error("No folders configured. Add folders to config file.")
        sys.exit(1)

    # Run uploader
    if args.once:
        failed = asyncio.run(run_once(settings))
        sys.exit(1 if failed else 0)
    else:
        asyncio.run(run_continuous(settings))


if __name__ == "__main__":
    main()
