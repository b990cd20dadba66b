"""Read-only access to the SolPlay on-chain program."""
