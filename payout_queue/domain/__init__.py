"""Pure queue types: job states, policies, payload variants, DTOs."""
