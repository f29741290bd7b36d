import sys

from synchub.core.logging import configure_logging
from synchub.services.factory import get_discovery

if __name__ == "__main__":
    configure_logging()
    actor = sys.argv[1] if len(sys.argv) > 1 else "cli"
    created = get_discovery().discover(actor=actor)
    print(f"created {created} product(s)")


# 手工跑一次新品发现（不经过 Celery beat）
# PYTHONPATH=backend python scripts/run_discovery.py ops@shop
