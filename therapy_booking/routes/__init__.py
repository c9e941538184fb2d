"""HTTP routers. Versioned endpoints live in ``v1``; ``prometheus`` is unversioned."""
