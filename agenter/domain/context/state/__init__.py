# Cognitive state = the four-field summary an agent needs to act right now:
#
# The current goal
#
# Plan status, step by step, done or todo
#
# Key facts worth keeping in view
#
# The result of the last action taken
#
# It is never stored. Each recall rebuilds it from the fact log.
from .state_deriver import derive_cognitive_state

__all__ = ["derive_cognitive_state"]
