"""
Entry point for `python -m procrunner` and the `procrunner` console script.

Sets the supervisor's process title before handing over to the command-line
front end, so it is easy to tell apart from the child it supervises.
"""
import setproctitle

from procrunner.config import effective_settings as config
from procrunner.main import main


def run() -> None:
    setproctitle.setproctitle(config.PROCESS_TITLE)
    raise SystemExit(main())


if __name__ == "__main__":
    run()
