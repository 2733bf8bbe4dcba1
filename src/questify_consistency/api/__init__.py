"""HTTP API for the Questify consistency layer."""
