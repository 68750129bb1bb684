import logging
import sys
from pathlib import Path

from creditdesk.core.config import settings

handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
if settings.log_dir:
    log_path = Path(settings.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    handlers.append(logging.FileHandler(log_path / "server.log", encoding="utf-8"))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
    handlers=handlers,
)

logger = logging.getLogger('creditdesk')
