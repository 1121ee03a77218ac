"""Poll-cycle orchestration: scheduling, dispatch, cursor and stats."""
