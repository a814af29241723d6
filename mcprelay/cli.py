# -*- coding: utf-8 -*-
"""Location: ./mcprelay/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

``mcprelay`` console script.

Runs the relay under Uvicorn. Arguments are passed through to Uvicorn's own
CLI after two adjustments:

* the application path ``mcprelay.main:app`` is prepended unless one is given,
  and ``--host``/``--port`` default to ``MCR_HOST``/``MCR_PORT``
  (127.0.0.1:3000) unless a bind option is given;
* the worker count is pinned to one. Open channels and the response cache
  live in process memory, so a request landing on a second worker would not
  find the channel its reply belongs to. ``--workers`` (or
  ``WEB_CONCURRENCY``) above 1 is refused.

```console
$ mcprelay --reload
$ mcprelay --host 0.0.0.0 --port 8080
```
"""

# Future
from __future__ import annotations

# Standard
import os
import sys
from typing import List, Optional

# Third-Party
import uvicorn

# First-Party
from mcprelay import __version__

DEFAULT_APP = "mcprelay.main:app"
DEFAULT_HOST = os.getenv("MCR_HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("MCR_PORT", "3000"))


class SingleWorkerError(ValueError):
    """Raised when more than one worker process is requested."""


def _worker_count(args: List[str]) -> Optional[str]:
    """Find the worker count given on the command line.

    Args:
        args: Uvicorn arguments

    Returns:
        The raw ``--workers`` value, or None when absent

    Examples:
        >>> _worker_count(["--workers", "4"]), _worker_count(["--workers=2"]), _worker_count(["--reload"])
        ('4', '2', None)
    """
    for i, arg in enumerate(args):
        if arg == "--workers" and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith("--workers="):
            return arg.split("=", 1)[1]
    return None


def _check_single_worker(args: List[str], env: Optional[dict] = None) -> None:
    """Refuse worker counts above one.

    Args:
        args: Uvicorn arguments
        env: Environment to read ``WEB_CONCURRENCY`` from, ``os.environ`` by default

    Raises:
        SingleWorkerError: If more than one worker is requested.

    Examples:
        >>> _check_single_worker(["--workers", "1"], env={})
        >>> _check_single_worker(["--workers", "3"], env={})
        Traceback (most recent call last):
            ...
        mcprelay.cli.SingleWorkerError: mcprelay keeps sessions in memory and must run a single worker (got --workers 3)
        >>> _check_single_worker([], env={"WEB_CONCURRENCY": "2"})
        Traceback (most recent call last):
            ...
        mcprelay.cli.SingleWorkerError: mcprelay keeps sessions in memory and must run a single worker (got WEB_CONCURRENCY 2)
    """
    env = os.environ if env is None else env
    for source, value in (("--workers", _worker_count(args)), ("WEB_CONCURRENCY", env.get("WEB_CONCURRENCY"))):
        if value is None:
            continue
        try:
            count = int(value)
        except ValueError as e:
            raise SingleWorkerError(f"Invalid worker count for {source}: {value}") from e
        if count > 1:
            raise SingleWorkerError(f"mcprelay keeps sessions in memory and must run a single worker (got {source} {value})")


def build_uvicorn_args(raw_args: List[str]) -> List[str]:
    """Turn ``mcprelay`` arguments into Uvicorn arguments.

    Args:
        raw_args: Arguments after the program name

    Returns:
        List[str]: a new argument list

    Examples:
        >>> build_uvicorn_args(["--reload"])[:2]
        ['mcprelay.main:app', '--reload']
        >>> build_uvicorn_args(["other:app", "--uds", "/tmp/relay.sock"])
        ['other:app', '--uds', '/tmp/relay.sock']
    """
    args = list(raw_args)
    if not args or args[0].startswith("-"):
        args.insert(0, DEFAULT_APP)

    given = {a.split("=", 1)[0] for a in args}
    if not given.intersection(("--uds", "--fd")):
        if "--host" not in given:
            args.extend(["--host", DEFAULT_HOST])
        if "--port" not in given:
            args.extend(["--port", str(DEFAULT_PORT)])
    return args


def main() -> None:
    """Entry point for the ``mcprelay`` console script.

    Environment Variables:
        MCR_HOST: Default host (default: "127.0.0.1")
        MCR_PORT: Default port (default: "3000")
    """
    if "--version" in sys.argv or "-V" in sys.argv:
        print(f"mcprelay {__version__}")
        return

    uvicorn_argv = build_uvicorn_args(sys.argv[1:])
    try:
        _check_single_worker(uvicorn_argv)
    except SingleWorkerError as e:
        print(f"mcprelay: {e}", file=sys.stderr)
        sys.exit(2)

    # Uvicorn's `main()` reads sys.argv
    sys.argv = ["mcprelay", *uvicorn_argv]
    uvicorn.main()  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":  # pragma: no cover
    main()
