import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

__version__ = "0.4.0"

# Load environment variables early so STOCKSIM_* overrides apply to local runs
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _detect_build_version() -> str:
    explicit = os.getenv("APP_VERSION")
    if explicit:
        return explicit
    build_file = Path(__file__).resolve().parents[1] / "_build_version.txt"
    if build_file.exists():
        try:
            return build_file.read_text(encoding="utf-8").strip()
        except OSError:
            logger.debug("unable to read {}", build_file)
    return __version__


APP_VERSION = _detect_build_version()

logger.debug("startup: stocksim {} ready", APP_VERSION)
