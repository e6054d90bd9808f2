"""mnemo — local-first memory bridge for coding-assistant hooks.

Layout:
    ~/.honcho/
    ├── config.json             # Host-segmented configuration
    ├── cache.json              # workspace / peer / session → remote ID
    ├── context-cache.json      # Cached remote context + activity counters
    ├── message-queue.jsonl     # Outbound messages not yet confirmed
    ├── git-state.json          # Last captured git state per directory
    ├── work-context.md         # Durable work log (survives `clear`)
    └── activity.log            # JSON-lines activity log

Every hook invocation is a fresh process; all continuity lives in these files.
"""

__version__ = "0.1.0"
