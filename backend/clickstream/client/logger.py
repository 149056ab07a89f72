"""Client-side logger, a child of the application logger."""
from clickstream.utils.logger import logger as _root_logger

logger = _root_logger.getChild("client")

__all__ = ["logger"]
