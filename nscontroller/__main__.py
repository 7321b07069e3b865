"""Entry point for `python -m nscontroller`.

Usage:
    python -m nscontroller
    NSCONTROLLER_CONTROLLERS=network python -m nscontroller
"""

from __future__ import annotations

import asyncio

from nscontroller.app import main

asyncio.run(main())
