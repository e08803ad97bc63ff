"""Pull-request host access (GitHub via ``gh api``, or in memory)."""
