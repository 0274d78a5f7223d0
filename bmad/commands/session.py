"""Per-invocation wiring: config, run directory, logging and the AI client."""

import logging
from dataclasses import dataclass
from typing import Optional

from bmad.agents import create_client
from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config, find_config, load_config
from bmad.lib.logs import configure_logging
from bmad.lib.rundir import RunDirectory
from bmad.story.docs import ReferenceDocs

logger = logging.getLogger(__name__)


@dataclass
class Session:
    config: Config
    run_dir: RunDirectory
    client: object
    docs: ReferenceDocs
    cancel: CancelToken


def open_session(config_path: Optional[str], cancel: CancelToken) -> Session:
    config = load_config(find_config(config_path))
    run_dir = RunDirectory.create(config.run_dir_base)
    configure_logging(run_dir.path)
    logger.info(f"Run directory: {run_dir}")
    return Session(
        config=config,
        run_dir=run_dir,
        client=create_client(config),
        docs=ReferenceDocs(config.documents),
        cancel=cancel,
    )
