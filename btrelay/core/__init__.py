"""Link lifecycle, state tracking and the command facade."""
