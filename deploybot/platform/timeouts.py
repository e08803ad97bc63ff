from __future__ import annotations

# gh api calls
GH_TIMEOUT_SECONDS = 60.0

# Local git operations (checkout, add, commit, rev-parse, reset)
GIT_TIMEOUT_SECONDS = 30.0

# Network-bound git operations (clone, fetch, pull, push)
GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
