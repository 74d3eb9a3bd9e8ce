"""SupportHub: support tickets with a saga-maintained customer open ticket counter."""
