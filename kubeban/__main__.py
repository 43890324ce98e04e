"""``python -m kubeban`` runs the invalidation daemon.

Equivalent to ``kubeban run``; one-shot commands (``invalidate``, ``reload``,
``targets``) are only available through the ``kubeban`` script.
"""

from __future__ import annotations

import asyncio

from kubeban.app import main

if __name__ == "__main__":
    asyncio.run(main())
