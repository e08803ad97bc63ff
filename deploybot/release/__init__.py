"""Release orchestration: sagas, validation, merging, resume."""
